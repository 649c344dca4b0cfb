from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..errors import NormalizedError
from ..ids import confirm_token

ConfirmationAction = Literal["apply", "cancel"]


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    FAILED = "failed"


_NOT_OK = frozenset({OutcomeStatus.REJECTED, OutcomeStatus.NOT_FOUND, OutcomeStatus.EXPIRED, OutcomeStatus.FAILED})

_ERROR_CODES = {
    OutcomeStatus.REJECTED: "forbidden",
    OutcomeStatus.NOT_FOUND: "draft_not_found",
    OutcomeStatus.EXPIRED: "draft_expired",
}


@dataclass(frozen=True)
class ConfirmationEvent:
    draft_id: uuid.UUID
    actor_id: str
    action: ConfirmationAction
    confirmation_event_id: str
    token: str | None = None

    @property
    def idempotency_token(self) -> str:
        return self.token or confirm_token(self.draft_id, self.confirmation_event_id)


@dataclass
class ApplyOutcome:
    status: OutcomeStatus
    draft_id: uuid.UUID
    token: str | None = None
    draft_status: str | None = None
    attempt_id: uuid.UUID | None = None
    attempt_no: int | None = None
    result: dict[str, Any] | None = None
    error: NormalizedError | None = None
    draft_transitioned: bool = True
    action: ConfirmationAction = "apply"
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        if self.status is OutcomeStatus.CANCELLED:
            # Cancelling succeeds; applying a cancelled draft does not.
            return self.action == "cancel"
        return self.status not in _NOT_OK

    @property
    def error_code(self) -> str | None:
        if self.error is not None:
            return self.error.code
        if self.status is OutcomeStatus.CANCELLED and self.action == "apply":
            return "draft_cancelled"
        return _ERROR_CODES.get(self.status)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": self.ok,
            "outcome": self.status.value,
            "action": self.action,
            "draft_id": str(self.draft_id),
        }
        if self.draft_status is not None:
            data["draft_status"] = self.draft_status
        if self.token is not None:
            data["token"] = self.token
        if self.attempt_id is not None:
            data["attempt_id"] = str(self.attempt_id)
            data["attempt_no"] = self.attempt_no
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error.to_dict()
        elif self.error_code is not None:
            data["error"] = {"code": self.error_code}
        if not self.draft_transitioned:
            data["draft_transitioned"] = False
        return data

    def user_message(self) -> str:
        """Text shown to the confirming user."""
        if self.status is OutcomeStatus.APPLIED:
            return "Applied."
        if self.status is OutcomeStatus.ALREADY_APPLIED:
            return "Already applied."
        if self.status is OutcomeStatus.CANCELLED:
            if self.action == "apply":
                return "This draft was cancelled and can no longer be applied."
            return "Draft cancelled."
        if self.status is OutcomeStatus.REJECTED:
            return "This draft belongs to someone else."
        if self.status is OutcomeStatus.NOT_FOUND:
            return "Draft not found."
        if self.status is OutcomeStatus.EXPIRED:
            return "This draft has expired. Send the command again to create a new one."
        return format_error_message(self.error)


def format_error_message(error: NormalizedError | None) -> str:
    if error is None:
        return "Something went wrong."
    lines = [
        f"Summary: {error.code}",
        f"What happened: {error.message}",
        f"Retry safe?: {'Yes' if error.retryable else 'No'}",
    ]
    hint = error.details.get("hint") if error.details else None
    if hint:
        lines.append(f"Next step: {hint}")
    elif error.retryable:
        lines.append("Next step: press Apply again.")
    else:
        lines.append("Next step: fix the input and send the command again.")
    return "\n".join(lines)
