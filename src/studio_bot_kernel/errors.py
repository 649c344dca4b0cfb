"""
Error taxonomy for the draft/apply engine.

This module provides:
- Five error categories shared by executors, stores and adapters
- A small exception hierarchy carrying code, category and retryability
- ``normalize_error`` which maps any exception to a user-displayable record
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import asyncpg


class ErrorCategory(str, Enum):
    """Coarse error classes surfaced to users and written to attempts."""

    USER_INPUT = "USER_INPUT"
    CONFIG = "CONFIG"
    UPSTREAM = "UPSTREAM"
    DB = "DB"
    CONFLICT = "CONFLICT"
    UNKNOWN = "UNKNOWN"


@dataclass
class NormalizedError:
    category: ErrorCategory
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data

    def summary(self) -> str:
        return f"{self.category.value}/{self.code}: {self.message}"


class KernelError(Exception):
    """
    Base exception for engine errors.

    Attributes:
        code: Stable machine-readable code
        message: Human-readable message, safe to show to the confirming user
        category: One of :class:`ErrorCategory`
        retryable: Whether a fresh confirmation may succeed
        details: Internal context for logs and attempt rows
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    code: str = "internal"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.details = dict(details or {})

    def __str__(self) -> str:
        return f"[{self.category.value}:{self.code}] {self.message}"

    def to_normalized(self) -> NormalizedError:
        return NormalizedError(
            category=self.category,
            code=self.code,
            message=self.message,
            details=dict(self.details),
            retryable=self.retryable,
        )


class UserInputError(KernelError):
    """Input the user can fix (unknown stage label, malformed command). Never retried."""

    category = ErrorCategory.USER_INPUT
    code = "invalid_input"
    retryable = False


class ConfigError(KernelError):
    """A required external-account binding or setting is missing."""

    category = ErrorCategory.CONFIG
    code = "missing_binding"
    retryable = False

    def __init__(self, message: str, *, hint: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.hint = hint
        if hint:
            self.details.setdefault("hint", hint)


class ExternalFailure(KernelError):
    """The tool invoker returned a non-2xx status, a malformed body, or timed out."""

    category = ErrorCategory.UPSTREAM
    code = "upstream_failed"
    retryable = True

    def __init__(
        self,
        tool_name: str,
        status: int | None,
        body: str,
        *,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        text = message or f"{tool_name} failed" + (f" with HTTP {status}" if status is not None else "")
        super().__init__(text, **kwargs)
        self.tool_name = tool_name
        self.status = status
        self.body = body
        self.details.setdefault("tool_name", tool_name)
        self.details.setdefault("status", status)
        self.details.setdefault("body", body[:2000])


class StoreError(KernelError):
    """A store operation failed in a way the engine cannot classify further."""

    category = ErrorCategory.DB
    code = "store_failed"
    retryable = False


class ConflictError(KernelError):
    """Another run holds the claim on the same unit of work. Safe to retry once it finishes."""

    category = ErrorCategory.CONFLICT
    code = "in_progress"
    retryable = True


def normalize_error(exc: BaseException) -> NormalizedError:
    """Map any exception to a :class:`NormalizedError`."""
    if isinstance(exc, KernelError):
        return exc.to_normalized()
    if isinstance(exc, (asyncpg.PostgresError, asyncpg.InterfaceError)):
        return NormalizedError(
            category=ErrorCategory.DB,
            code="db_error",
            message="Internal storage error",
            details={"error_type": type(exc).__name__, "error": str(exc)},
            retryable=False,
        )
    if isinstance(exc, asyncio.TimeoutError):
        return NormalizedError(
            category=ErrorCategory.UPSTREAM,
            code="timeout",
            message="Operation timed out",
            details={"error_type": type(exc).__name__},
            retryable=True,
        )
    return NormalizedError(
        category=ErrorCategory.UNKNOWN,
        code="internal",
        message=str(exc) or type(exc).__name__,
        details={"error_type": type(exc).__name__},
        retryable=False,
    )


__all__ = [
    "ErrorCategory",
    "NormalizedError",
    "KernelError",
    "UserInputError",
    "ConfigError",
    "ExternalFailure",
    "StoreError",
    "ConflictError",
    "normalize_error",
]
