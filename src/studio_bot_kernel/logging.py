"""
Structured logging for the draft/apply engine.

This module provides:
- JSON or text output through a stdlib ``logging`` handler
- A per-logger context (draft, actor, idempotency token) merged into every record
- Small timing and redaction helpers used by executors and clients
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class LogContext:
    """Context information attached to log records."""

    draft_id: str | None = None
    actor_id: str | None = None
    idempotency_token: str | None = None
    event_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs: Any) -> LogContext:
        known = {"draft_id", "actor_id", "idempotency_token", "event_id", "operation"}
        extra = {**self.extra, **kwargs.pop("extra", {})}
        for key in list(kwargs):
            if key not in known:
                extra[key] = kwargs.pop(key)
        return LogContext(
            draft_id=kwargs.get("draft_id", self.draft_id),
            actor_id=kwargs.get("actor_id", self.actor_id),
            idempotency_token=kwargs.get("idempotency_token", self.idempotency_token),
            event_id=kwargs.get("event_id", self.event_id),
            operation=kwargs.get("operation", self.operation),
            extra=extra,
        )


class StructuredLogger:
    """
    Logger with structured output and context tracking.

    Example:
        ```python
        logger = get_logger("studio_bot_kernel.apply")

        with logger.draft_context(draft_id=str(draft.id), actor_id=actor_id):
            logger.info("apply claimed", token=token)
        ```
    """

    def __init__(
        self,
        name: str = "studio_bot",
        level: str = "INFO",
        json_output: bool = True,
    ) -> None:
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._context_var: ContextVar[LogContext] = ContextVar(f"log_context:{name}", default=LogContext())

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
            self._logger.addHandler(handler)

    @property
    def context(self) -> LogContext:
        return self._context_var.get()

    @contextmanager
    def draft_context(self, **kwargs: Any) -> Iterator[LogContext]:
        """Attach draft/actor/token fields to every record logged inside the block."""
        updated = self._context_var.get().with_update(**kwargs)
        token = self._context_var.set(updated)
        try:
            yield updated
        finally:
            self._context_var.reset(token)

    def _log(self, level: int, message: str, data: dict[str, Any] | None = None, exc_info: bool = False) -> None:
        record_data = {"message": message, **self.context.to_dict()}
        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str), exc_info=exc_info)
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip(), exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, data=kwargs, exc_info=True)

    def log_error(self, error: BaseException, message: str | None = None, **kwargs: Any) -> None:
        """Log an error with its code, category and retryability when available."""
        error_data: dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }
        for attr in ("code", "retryable"):
            if hasattr(error, attr):
                error_data[attr] = getattr(error, attr)
        category = getattr(error, "category", None)
        if category is not None:
            error_data["category"] = getattr(category, "value", category)
        self._log(logging.ERROR, message or f"Error: {error}", data=error_data)


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        line = f"{timestamp} {record.levelname:8} {record.name}: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def redact_secret(value: str | None) -> str:
    """Redact a token or API key for safe logging."""
    if not value:
        return "<not set>"
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... ({len(text)} chars total)"


@dataclass
class Timer:
    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


_loggers: dict[str, StructuredLogger] = {}
_defaults: dict[str, Any] = {"level": "INFO", "json_output": True}


def get_logger(name: str = "studio_bot") -> StructuredLogger:
    """Get or create a structured logger using the configured defaults."""
    logger = _loggers.get(name)
    if logger is None:
        logger = StructuredLogger(name, **_defaults)
        _loggers[name] = logger
    return logger


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Set defaults for loggers and reconfigure the ones already created."""
    _defaults["level"] = level
    _defaults["json_output"] = json_output
    for existing in list(_loggers.values()):
        existing._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        existing.json_output = json_output
        for handler in existing._logger.handlers:
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())


__all__ = [
    "LogContext",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "Timer",
    "timed",
    "redact_secret",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
