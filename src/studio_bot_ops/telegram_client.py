from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from studio_bot_kernel.errors import ExternalFailure
from studio_bot_kernel.events.best_effort import best_effort
from studio_bot_kernel.logging import get_logger, truncate_for_log

logger = get_logger("studio_bot_ops.telegram")

DEFAULT_API_BASE = "https://api.telegram.org"


class TelegramClient:
    """Minimal Bot API client: just the calls the webhook adapter needs."""

    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._timeout_seconds = float(timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def call(self, method: str, payload: dict[str, Any]) -> Any:
        if not self._bot_token:
            raise ExternalFailure(
                f"telegram.{method}",
                None,
                "",
                message="TELEGRAM_BOT_TOKEN is not set",
                code="missing_token",
            )
        url = f"{self._api_base}/bot{self._bot_token}/{method}"
        session = await self._get_session()
        try:
            async with session.post(
                url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            ) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as exc:
            raise ExternalFailure(f"telegram.{method}", None, "", code="timeout") from exc
        except aiohttp.ClientError as exc:
            raise ExternalFailure(f"telegram.{method}", None, str(exc), code="transport_error") from exc

        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError:
            data = {}
        ok_flag = data.get("ok") if isinstance(data, dict) else None
        if status >= 300 or ok_flag is False:
            logger.warning("telegram api error", method=method, status=status, body=truncate_for_log(text))
            raise ExternalFailure(f"telegram.{method}", status, text, code="telegram_api_error")
        if ok_flag is True and "result" in data:
            return data["result"]
        return data

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: dict[str, Any] | None = None,
    ) -> Any:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self.call("sendMessage", payload)

    @best_effort("telegram answerCallbackQuery")
    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        await self.call("answerCallbackQuery", payload)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
