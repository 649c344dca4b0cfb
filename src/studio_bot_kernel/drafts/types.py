from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..actions.types import Action, actions_to_json


class DraftStatus(str, Enum):
    DRAFT = "DRAFT"
    APPLIED = "APPLIED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not DraftStatus.DRAFT


# The only transitions a draft may take; terminal states have no exits.
ALLOWED_TRANSITIONS: frozenset[tuple[DraftStatus, DraftStatus]] = frozenset(
    {
        (DraftStatus.DRAFT, DraftStatus.APPLIED),
        (DraftStatus.DRAFT, DraftStatus.CANCELLED),
    }
)


def check_transition(from_status: DraftStatus, to_status: DraftStatus) -> None:
    if (from_status, to_status) not in ALLOWED_TRANSITIONS:
        raise ValueError(f"invalid draft transition {from_status.value} -> {to_status.value}")


@dataclass(frozen=True)
class Draft:
    id: uuid.UUID
    author_id: str
    origin_channel_id: str
    status: DraftStatus
    actions: tuple[Action, ...]
    created_at: datetime
    expires_at: datetime
    updated_at: datetime | None = None
    source_text: str | None = None
    summary: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current >= self.expires_at

    def preview_lines(self) -> list[str]:
        return [action.preview() for action in self.actions]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "author_id": self.author_id,
            "origin_channel_id": self.origin_channel_id,
            "status": self.status.value,
            "actions": actions_to_json(self.actions),
            "source_text": self.source_text,
            "summary": self.summary,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "expires_at": self.expires_at.isoformat(),
        }
