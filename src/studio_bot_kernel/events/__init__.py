from .best_effort import AuditAppender, AuditSink, best_effort
from .types import AuditEntry, AuditLevel
from .writer import AuditWriter

__all__ = ["AuditEntry", "AuditLevel", "AuditWriter", "AuditSink", "AuditAppender", "best_effort"]
