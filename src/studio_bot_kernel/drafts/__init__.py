from .store import DraftStore
from .types import ALLOWED_TRANSITIONS, Draft, DraftStatus, check_transition

__all__ = [
    "DraftStore",
    "Draft",
    "DraftStatus",
    "ALLOWED_TRANSITIONS",
    "check_transition",
]
