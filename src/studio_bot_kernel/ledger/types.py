from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerEntry:
    token: str
    draft_id: uuid.UUID | None
    status: ClaimStatus
    attempt_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ApplyAttempt:
    id: uuid.UUID
    draft_id: uuid.UUID
    idempotency_token: str
    attempt_no: int
    started_at: datetime
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_summary: str | None = None

    @property
    def in_flight(self) -> bool:
        return self.finished_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "draft_id": str(self.draft_id),
            "idempotency_token": self.idempotency_token,
            "attempt_no": self.attempt_no,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
            "error_summary": self.error_summary,
            "in_flight": self.in_flight,
        }


class TemplateTaskStatus(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    FAILED = "failed"


@dataclass(frozen=True)
class TemplateTaskRecord:
    """
    One kickoff item for one project.

    A run claims the row as ``pending`` before calling the tracker and flips it
    to ``created`` once the issue exists. ``failed`` rows and ``pending`` rows
    older than the claim lease may be claimed again.
    """

    project_key: str
    template_task_key: str
    template_version: str
    status: TemplateTaskStatus = TemplateTaskStatus.CREATED
    external_issue_id: str | None = None
    draft_id: uuid.UUID | None = None
    attempt_id: uuid.UUID | None = None
    claimed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_created(self) -> bool:
        return self.status is TemplateTaskStatus.CREATED
