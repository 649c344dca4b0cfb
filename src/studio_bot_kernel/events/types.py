from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

AuditLevel = Literal["info", "warning", "error"]


@dataclass(frozen=True)
class AuditEntry:
    event_type: str
    level: AuditLevel = "info"
    draft_id: uuid.UUID | None = None
    actor_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
