"""
Composio tool invoker.

Executes a named external action (CRM stage update, tracker issue creation)
through the Composio actions API and returns the parsed JSON body. Every
failure mode is surfaced as :class:`ExternalFailure`; nothing is retried here.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from studio_bot_kernel.errors import ExternalFailure
from studio_bot_kernel.logging import get_logger, redact_secret, timed, truncate_for_log

logger = get_logger("studio_bot_ops.composio")

DEFAULT_BASE_URL = "https://backend.composio.dev"
EXECUTE_PATH = "/api/v2/actions/execute"


class ComposioToolInvoker:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = float(timeout_seconds)
        self._session = session
        self._owns_session = session is None

    @property
    def url(self) -> str:
        return f"{self._base_url}{EXECUTE_PATH}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        account_scope: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"action": tool_name, "input": arguments}
        if account_scope:
            body["connectedAccountId"] = account_scope
        headers = {
            "content-type": "application/json",
            "authorization": f"Bearer {self._api_key}",
        }

        session = await self._get_session()
        with timed() as timer:
            try:
                async with session.post(
                    self.url,
                    data=json.dumps(body),
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
                ) as response:
                    status = response.status
                    text = await response.text()
            except asyncio.TimeoutError as exc:
                raise ExternalFailure(
                    tool_name,
                    None,
                    "",
                    message=f"{tool_name} timed out after {self._timeout_seconds:g}s",
                    code="timeout",
                ) from exc
            except aiohttp.ClientError as exc:
                raise ExternalFailure(
                    tool_name,
                    None,
                    str(exc),
                    message=f"{tool_name} transport error: {type(exc).__name__}",
                    code="transport_error",
                ) from exc

        logger.info(
            "composio execute",
            tool_name=tool_name,
            status=status,
            latency_ms=int(timer.elapsed_ms),
            account=redact_secret(account_scope),
        )

        if status < 200 or status >= 300:
            logger.warning("composio non-2xx", tool_name=tool_name, status=status, body=truncate_for_log(text))
            raise ExternalFailure(tool_name, status, text, code="upstream_http_error")

        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError as exc:
            raise ExternalFailure(
                tool_name,
                status,
                text,
                message=f"{tool_name} returned a malformed body",
                code="malformed_response",
            ) from exc
        if not isinstance(data, dict):
            raise ExternalFailure(
                tool_name,
                status,
                text,
                message=f"{tool_name} returned a non-object body",
                code="malformed_response",
            )

        if data.get("successful") is False:
            reason = data.get("error") or "action reported unsuccessful"
            raise ExternalFailure(
                tool_name,
                status,
                text,
                message=f"{tool_name} failed: {truncate_for_log(str(reason))}",
                code="action_unsuccessful",
            )
        return data

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
