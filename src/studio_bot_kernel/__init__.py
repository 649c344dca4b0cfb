"""Studio bot kernel: draft/apply engine with exactly-once confirmation handling."""

from .apply import ApplyOrchestrator, ApplyOutcome, ConfirmationEvent, OutcomeStatus
from .config import EngineConfig
from .errors import ErrorCategory, KernelError, NormalizedError, normalize_error
from .ids import apply_token, callback_token, confirm_token

__all__ = [
    "ApplyOrchestrator",
    "ApplyOutcome",
    "ConfirmationEvent",
    "OutcomeStatus",
    "EngineConfig",
    "ErrorCategory",
    "KernelError",
    "NormalizedError",
    "normalize_error",
    "apply_token",
    "callback_token",
    "confirm_token",
]
