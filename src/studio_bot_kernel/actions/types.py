from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, get_args

from ..errors import UserInputError

if TYPE_CHECKING:
    from ..config import EngineConfig
    from ..ledger.store import TemplateTaskStore
    from ..tools import ToolInvoker


@dataclass(frozen=True)
class SetRecordStage:
    kind: ClassVar[str] = "record.stage.set"

    record_id: str
    stage_label: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "record_id": self.record_id, "stage_label": self.stage_label}

    def preview(self) -> str:
        return f"Move record {self.record_id} to stage \"{self.stage_label}\""


@dataclass(frozen=True)
class RecordWon:
    kind: ClassVar[str] = "record.won"

    record_id: str
    project_key: str | None = None
    project_name: str | None = None

    @property
    def resolved_project_key(self) -> str:
        return self.project_key or self.record_id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind, "record_id": self.record_id}
        if self.project_key:
            data["project_key"] = self.project_key
        if self.project_name:
            data["project_name"] = self.project_name
        return data

    def preview(self) -> str:
        label = self.project_name or self.record_id
        return f"Mark record {self.record_id} as won and create kickoff issues for \"{label}\""


Action = SetRecordStage | RecordWon

ACTION_TYPES: tuple[type, ...] = get_args(Action)
_BY_KIND: dict[str, type] = {cls.kind: cls for cls in ACTION_TYPES}


def action_from_dict(data: Any) -> Action:
    if not isinstance(data, dict):
        raise UserInputError("action must be an object", code="invalid_action")
    kind = str(data.get("type") or "").strip()
    cls = _BY_KIND.get(kind)
    if cls is None:
        raise UserInputError(
            f"unsupported action type: {kind or '<missing>'}",
            code="unsupported_action",
            details={"allowed": sorted(_BY_KIND)},
        )
    record_id = _required_text(data, "record_id")
    if cls is SetRecordStage:
        return SetRecordStage(record_id=record_id, stage_label=_required_text(data, "stage_label"))
    return RecordWon(
        record_id=record_id,
        project_key=_optional_text(data, "project_key"),
        project_name=_optional_text(data, "project_name"),
    )


def actions_from_json(value: Any) -> tuple[Action, ...]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise UserInputError("actions must be a list", code="invalid_action")
    return tuple(action_from_dict(item) for item in value)


def actions_to_json(actions: tuple[Action, ...] | list[Action]) -> list[dict[str, Any]]:
    return [action.to_dict() for action in actions]


def _required_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, (str, int)) or isinstance(value, bool) or str(value).strip() == "":
        raise UserInputError(f"{key} is required", code="invalid_action")
    return str(value).strip()


def _optional_text(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ExecutionContext:
    draft_id: uuid.UUID
    actor_id: str
    config: EngineConfig
    tools: ToolInvoker
    template_tasks: TemplateTaskStore
    attempt_id: uuid.UUID | None = None


@dataclass
class ExecutionMetrics:
    latency_ms: int
    tool_calls: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"latency_ms": int(self.latency_ms), "tool_calls": int(self.tool_calls)}


@dataclass
class ExecutionResult:
    action_type: str
    result: dict[str, Any]
    metrics: ExecutionMetrics
    external_ids: dict[str, Any] = field(default_factory=dict)
    status: str = "succeeded"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action_type": self.action_type,
            "status": self.status,
            "result": self.result,
            "metrics": self.metrics.to_dict(),
        }
        if self.external_ids:
            data["external_ids"] = self.external_ids
        return data
