from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp
import pytest

from studio_bot_kernel.errors import ErrorCategory, ExternalFailure
from studio_bot_ops import ComposioToolInvoker


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "_FakeResponse":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, status: int = 200, text: str = "{}", raises: BaseException | None = None) -> None:
        self.status = status
        self.text = text
        self.raises = raises
        self.closed = False
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, *, data: str, headers: dict[str, str], timeout: Any) -> _FakeResponse:
        self.posts.append({"url": url, "body": json.loads(data), "headers": headers, "timeout": timeout})
        if self.raises is not None:
            raise self.raises
        return _FakeResponse(self.status, self.text)

    async def close(self) -> None:
        self.closed = True


def _invoker(session: _FakeSession) -> ComposioToolInvoker:
    return ComposioToolInvoker(api_key="ck_test", base_url="https://composio.test/", timeout_seconds=5, session=session)


@pytest.mark.asyncio
async def test_execute_posts_action_with_account_scope() -> None:
    session = _FakeSession(text=json.dumps({"successful": True, "data": {"id": "D1"}}))

    result = await _invoker(session).execute("CRM_UPDATE_DEAL_STAGE", {"record_id": "R1", "stage": "Won"}, "acct-1")

    assert result["data"] == {"id": "D1"}
    [post] = session.posts
    assert post["url"] == "https://composio.test/api/v2/actions/execute"
    assert post["body"] == {
        "action": "CRM_UPDATE_DEAL_STAGE",
        "input": {"record_id": "R1", "stage": "Won"},
        "connectedAccountId": "acct-1",
    }
    assert post["headers"]["authorization"] == "Bearer ck_test"
    assert post["timeout"].total == 5


@pytest.mark.asyncio
async def test_account_scope_is_optional() -> None:
    session = _FakeSession()
    await _invoker(session).execute("TOOL", {})
    assert "connectedAccountId" not in session.posts[0]["body"]


@pytest.mark.asyncio
async def test_non_2xx_is_external_failure() -> None:
    session = _FakeSession(status=503, text="upstream down")

    with pytest.raises(ExternalFailure) as exc_info:
        await _invoker(session).execute("TOOL", {})

    err = exc_info.value
    assert err.code == "upstream_http_error"
    assert err.status == 503
    assert err.retryable is True
    assert err.to_normalized().category is ErrorCategory.UPSTREAM
    assert err.details["body"] == "upstream down"


@pytest.mark.asyncio
async def test_unsuccessful_action_is_external_failure() -> None:
    session = _FakeSession(text=json.dumps({"successful": False, "error": "stage locked"}))
    with pytest.raises(ExternalFailure) as exc_info:
        await _invoker(session).execute("TOOL", {})
    assert exc_info.value.code == "action_unsuccessful"
    assert "stage locked" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["not json", "[1, 2]"])
async def test_malformed_body_is_external_failure(text: str) -> None:
    with pytest.raises(ExternalFailure) as exc_info:
        await _invoker(_FakeSession(text=text)).execute("TOOL", {})
    assert exc_info.value.code == "malformed_response"


@pytest.mark.asyncio
async def test_timeout_and_transport_errors_are_external_failures() -> None:
    with pytest.raises(ExternalFailure) as timeout_info:
        await _invoker(_FakeSession(raises=asyncio.TimeoutError())).execute("TOOL", {})
    assert timeout_info.value.code == "timeout"
    assert timeout_info.value.status is None

    with pytest.raises(ExternalFailure) as transport_info:
        await _invoker(_FakeSession(raises=aiohttp.ClientConnectionError("refused"))).execute("TOOL", {})
    assert transport_info.value.code == "transport_error"


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open() -> None:
    session = _FakeSession()
    await _invoker(session).close()
    assert session.closed is False
