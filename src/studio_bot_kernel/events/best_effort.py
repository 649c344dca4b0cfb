from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from ..logging import get_logger
from .types import AuditEntry

logger = get_logger("studio_bot_kernel.audit")

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class AuditAppender(Protocol):
    async def append(self, entry: AuditEntry) -> None: ...


def best_effort(operation: str) -> Callable[[F], F]:
    """Run the wrapped coroutine, logging and discarding any ``Exception`` it raises."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    f"{operation} failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return None

        return wrapper  # type: ignore[return-value]

    return decorator


class AuditSink:
    """Append-only audit trail that never fails its caller."""

    def __init__(self, writer: AuditAppender) -> None:
        self._writer = writer

    @best_effort("audit write")
    async def write(self, entry: AuditEntry) -> None:
        await self._writer.append(entry)

    async def info(self, event_type: str, **kwargs: Any) -> None:
        await self.write(AuditEntry(event_type=event_type, level="info", **kwargs))

    async def warning(self, event_type: str, **kwargs: Any) -> None:
        await self.write(AuditEntry(event_type=event_type, level="warning", **kwargs))

    async def error(self, event_type: str, **kwargs: Any) -> None:
        await self.write(AuditEntry(event_type=event_type, level="error", **kwargs))
