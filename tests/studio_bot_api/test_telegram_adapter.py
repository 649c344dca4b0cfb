from __future__ import annotations

import uuid
from typing import Any

import pytest

pytest.importorskip("pydantic")

from studio_bot_api.telegram import (
    HELP_TEXT,
    TelegramAdapter,
    TelegramUpdate,
    draft_keyboard,
    parse_callback_data,
    parse_command,
)
from studio_bot_kernel.actions.types import RecordWon, SetRecordStage
from studio_bot_kernel.drafts.types import DraftStatus
from studio_bot_kernel.errors import UserInputError
from tests.studio_bot_kernel._draft_testkit import build_harness

ALLOWED = 7


class _Telegram:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.answered: list[str] = []

    async def send_message(self, chat_id, text, reply_markup=None):
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup})

    async def answer_callback_query(self, callback_query_id, text=None):
        self.answered.append(callback_query_id)


def _adapter(allowed: frozenset[int] = frozenset({ALLOWED})):
    h = build_harness()
    telegram = _Telegram()
    adapter = TelegramAdapter(
        orchestrator=h.orchestrator,
        drafts=h.drafts,
        ledger=h.ledger,
        telegram=telegram,
        allowed_user_ids=allowed,
    )
    return adapter, telegram, h


def _message(text: str, user_id: int = ALLOWED) -> TelegramUpdate:
    return TelegramUpdate.model_validate(
        {
            "update_id": 1,
            "message": {"message_id": 1, "chat": {"id": 100}, "from": {"id": user_id}, "text": text},
        }
    )


def _callback(data: str, callback_id: str = "cb-1", user_id: int = ALLOWED) -> TelegramUpdate:
    return TelegramUpdate.model_validate(
        {
            "update_id": 2,
            "callback_query": {
                "id": callback_id,
                "from": {"id": user_id},
                "data": data,
                "message": {"message_id": 2, "chat": {"id": 100}},
            },
        }
    )


def test_parse_command_variants() -> None:
    assert parse_command("/stage R1 Proposal Sent") == [SetRecordStage(record_id="R1", stage_label="Proposal Sent")]
    assert parse_command("/won@studio_bot R2 Acme Site") == [RecordWon(record_id="R2", project_name="Acme Site")]
    assert parse_command("/won R3") == [RecordWon(record_id="R3")]
    assert parse_command("hello") is None
    with pytest.raises(UserInputError):
        parse_command("/stage R1")


def test_callback_data_round_trips_through_keyboard() -> None:
    draft_id = uuid.uuid4()
    [[apply_btn, cancel_btn]] = draft_keyboard(draft_id)["inline_keyboard"]
    assert parse_callback_data(apply_btn["callback_data"]).action == "apply"
    assert parse_callback_data(cancel_btn["callback_data"]).draft_id == draft_id
    assert parse_callback_data("v1:D:X:" + str(draft_id)) is None
    assert parse_callback_data("v2:D:A:" + str(draft_id)) is None
    assert parse_callback_data(None) is None


@pytest.mark.asyncio
async def test_command_creates_draft_with_buttons() -> None:
    adapter, telegram, h = _adapter()

    await adapter.handle_update(_message("/stage R1 Won"))

    [draft] = h.drafts.drafts.values()
    assert draft.author_id == str(ALLOWED)
    assert draft.origin_channel_id == "100"
    assert draft.source_text == "/stage R1 Won"
    [sent] = telegram.sent
    assert sent["text"].startswith(f"Draft #{str(draft.id)[:8]}")
    assert sent["reply_markup"] == draft_keyboard(draft.id)
    assert h.tools.calls == []


@pytest.mark.asyncio
async def test_unknown_text_gets_help_and_bad_usage_gets_message() -> None:
    adapter, telegram, h = _adapter()
    await adapter.handle_update(_message("hi there"))
    await adapter.handle_update(_message("/won"))
    assert telegram.sent[0]["text"] == HELP_TEXT
    assert telegram.sent[1]["text"].startswith("Usage: /won")
    assert h.drafts.drafts == {}


@pytest.mark.asyncio
async def test_empty_allowlist_denies_everyone() -> None:
    adapter, telegram, h = _adapter(allowed=frozenset())
    await adapter.handle_update(_message("/stage R1 Won"))
    assert telegram.sent[0]["text"] == "No access."
    assert h.drafts.drafts == {}


@pytest.mark.asyncio
async def test_apply_button_applies_once_and_redelivery_is_ignored() -> None:
    adapter, telegram, h = _adapter()
    await adapter.handle_update(_message("/stage R1 Won"))
    [draft] = h.drafts.drafts.values()
    telegram.sent.clear()

    update = _callback(f"v1:D:A:{draft.id}")
    await adapter.handle_update(update)
    await adapter.handle_update(update)

    assert telegram.answered == ["cb-1", "cb-1"]
    assert [m["text"] for m in telegram.sent] == ["Applied."]
    assert len(h.tools.calls) == 1
    assert h.drafts.drafts[draft.id].status is DraftStatus.APPLIED

    await adapter.handle_update(_callback(f"v1:D:A:{draft.id}", callback_id="cb-2"))
    assert telegram.sent[-1]["text"] == "Already applied."
    assert len(h.tools.calls) == 1


@pytest.mark.asyncio
async def test_cancel_button_and_foreign_user() -> None:
    adapter, telegram, h = _adapter(allowed=frozenset({ALLOWED, 8}))
    await adapter.handle_update(_message("/stage R1 Won"))
    [draft] = h.drafts.drafts.values()

    await adapter.handle_update(_callback(f"v1:D:A:{draft.id}", callback_id="cb-x", user_id=8))
    assert telegram.sent[-1]["text"] == "This draft belongs to someone else."

    await adapter.handle_update(_callback(f"v1:D:C:{draft.id}", callback_id="cb-y"))
    assert telegram.sent[-1]["text"] == "Draft cancelled."
    assert h.drafts.drafts[draft.id].status is DraftStatus.CANCELLED
    assert h.tools.calls == []


@pytest.mark.asyncio
async def test_unsupported_button_payload() -> None:
    adapter, telegram, _ = _adapter()
    await adapter.handle_update(_callback("garbage"))
    assert telegram.sent[-1]["text"] == "Unsupported button."


@pytest.mark.asyncio
async def test_drafts_command_lists_recent_drafts() -> None:
    adapter, telegram, _ = _adapter()
    await adapter.handle_update(_message("/drafts"))
    assert telegram.sent[-1]["text"] == "No drafts yet."

    await adapter.handle_update(_message("/stage R1 Won"))
    await adapter.handle_update(_message("/drafts"))
    assert telegram.sent[-1]["text"].startswith("Your drafts:")
    assert "DRAFT" in telegram.sent[-1]["text"]
