from .orchestrator import ApplyOrchestrator
from .types import ApplyOutcome, ConfirmationAction, ConfirmationEvent, OutcomeStatus, format_error_message

__all__ = [
    "ApplyOrchestrator",
    "ApplyOutcome",
    "ConfirmationAction",
    "ConfirmationEvent",
    "OutcomeStatus",
    "format_error_message",
]
