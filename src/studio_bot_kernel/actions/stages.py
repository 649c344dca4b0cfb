from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..errors import UserInputError


@dataclass(frozen=True)
class Stage:
    key: str
    name: str


@dataclass(frozen=True)
class StageCatalog:
    """Canonical CRM pipeline stages plus a human alias table.

    ``aliases`` maps an exact user-entered label to a stage key.
    """

    stages: tuple[Stage, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)

    def by_key(self, key: str) -> Stage | None:
        for stage in self.stages:
            if stage.key == key:
                return stage
        return None

    def resolve(self, label: str) -> Stage:
        text = (label or "").strip()
        if not text:
            raise UserInputError("stage label is empty", code="stage_not_found")

        alias_key = self.aliases.get(text)
        if alias_key is not None:
            stage = self.by_key(alias_key)
            if stage is not None:
                return stage

        folded = text.casefold()
        for stage in self.stages:
            if stage.name.casefold() == folded:
                return stage

        raise UserInputError(
            f"Unknown stage \"{text}\"",
            code="stage_not_found",
            details={"label": text, "known": [stage.name for stage in self.stages]},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [{"key": stage.key, "name": stage.name} for stage in self.stages],
            "aliases": dict(self.aliases),
        }

    @classmethod
    def from_raw(cls, stages: Any, aliases: Any = None) -> StageCatalog:
        if isinstance(stages, str):
            stages = json.loads(stages) if stages.strip() else []
        if isinstance(aliases, str):
            aliases = json.loads(aliases) if aliases.strip() else {}

        parsed: list[Stage] = []
        for item in stages or []:
            if isinstance(item, dict):
                key = str(item.get("key") or item.get("id") or "").strip()
                name = str(item.get("name") or item.get("label") or "").strip()
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                key, name = str(item[0]).strip(), str(item[1]).strip()
            else:
                raise ValueError(f"invalid stage entry: {item!r}")
            if not key or not name:
                raise ValueError(f"stage entry needs key and name: {item!r}")
            parsed.append(Stage(key=key, name=name))

        alias_map: dict[str, str] = {}
        if aliases is not None:
            if not isinstance(aliases, dict):
                raise ValueError("stage aliases must be an object")
            for alias, key in aliases.items():
                alias_text = str(alias).strip()
                if alias_text:
                    alias_map[alias_text] = str(key).strip()
        return cls(stages=tuple(parsed), aliases=alias_map)
