from .store import ApplyAttemptStore, IdempotencyLedger, TemplateTaskStore
from .types import ApplyAttempt, ClaimStatus, LedgerEntry, TemplateTaskRecord, TemplateTaskStatus

__all__ = [
    "IdempotencyLedger",
    "ApplyAttemptStore",
    "TemplateTaskStore",
    "ApplyAttempt",
    "ClaimStatus",
    "LedgerEntry",
    "TemplateTaskRecord",
    "TemplateTaskStatus",
]
