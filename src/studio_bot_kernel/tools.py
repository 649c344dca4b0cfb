from __future__ import annotations

from typing import Any, Protocol


class ToolInvoker(Protocol):
    """Single boundary to external business systems.

    Implementations return the parsed JSON body and raise
    :class:`~studio_bot_kernel.errors.ExternalFailure` on non-2xx responses,
    transport errors, malformed bodies and timeouts. They never retry.
    """

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        account_scope: str | None = None,
    ) -> dict[str, Any]: ...
