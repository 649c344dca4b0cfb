"""
Thin Telegram webhook adapter.

Decodes Bot API updates into draft proposals (text commands) and
confirmation events (inline button callbacks), and renders outcomes back
as chat messages. All business decisions live in the orchestrator.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from studio_bot_kernel.actions.types import Action, RecordWon, SetRecordStage
from studio_bot_kernel.apply import ApplyOrchestrator, ConfirmationEvent
from studio_bot_kernel.drafts import Draft
from studio_bot_kernel.errors import UserInputError
from studio_bot_kernel.ids import callback_token, parse_uuid
from studio_bot_kernel.logging import get_logger
from studio_bot_ops import TelegramClient

logger = get_logger("studio_bot_api.telegram")

CALLBACK_PREFIX = "v1"

HELP_TEXT = "\n".join(
    [
        "Help",
        "",
        "/stage <record_id> <stage>  move a record to a pipeline stage",
        "/won <record_id> [project name]  mark a record won and create kickoff issues",
        "/drafts  list your recent drafts",
        "",
        "Every change is proposed as a draft first. Press Apply to run it.",
    ]
)


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    language_code: str | None = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str | None = None
    title: str | None = None
    username: str | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: int
    date: int | None = None
    text: str | None = None
    chat: TelegramChat
    from_: TelegramUser | None = Field(default=None, alias="from")


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    from_: TelegramUser = Field(alias="from")
    message: TelegramMessage | None = None
    data: str | None = None


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: TelegramMessage | None = None
    callback_query: TelegramCallbackQuery | None = None

    def chat_id(self) -> int | None:
        if self.message is not None:
            return self.message.chat.id
        if self.callback_query is not None and self.callback_query.message is not None:
            return self.callback_query.message.chat.id
        return None

    def sender_id(self) -> int | None:
        if self.message is not None and self.message.from_ is not None:
            return self.message.from_.id
        if self.callback_query is not None:
            return self.callback_query.from_.id
        return None


@dataclass(frozen=True)
class DraftCallback:
    action: str  # apply|cancel
    draft_id: uuid.UUID


def parse_callback_data(raw: str | None) -> DraftCallback | None:
    """Parse ``v1:D:A:<draft_id>`` / ``v1:D:C:<draft_id>``; anything else is None."""
    if not raw or not raw.startswith(f"{CALLBACK_PREFIX}:"):
        return None
    parts = raw.split(":")
    if len(parts) != 4 or parts[1] != "D":
        return None
    action = {"A": "apply", "C": "cancel"}.get(parts[2])
    draft_id = parse_uuid(parts[3])
    if action is None or draft_id is None:
        return None
    return DraftCallback(action=action, draft_id=draft_id)


def draft_keyboard(draft_id: uuid.UUID) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": "Apply", "callback_data": f"{CALLBACK_PREFIX}:D:A:{draft_id}"},
                {"text": "Cancel", "callback_data": f"{CALLBACK_PREFIX}:D:C:{draft_id}"},
            ]
        ]
    }


def parse_command(text: str) -> list[Action] | None:
    """Stub intent parser. Returns None for text that is not a draft command."""
    parts = text.strip().split()
    if not parts:
        return None
    command = parts[0].split("@", 1)[0].lower()
    args = parts[1:]

    if command == "/stage":
        if len(args) < 2:
            raise UserInputError("Usage: /stage <record_id> <stage>", code="invalid_command")
        return [SetRecordStage(record_id=args[0], stage_label=" ".join(args[1:]))]
    if command == "/won":
        if not args:
            raise UserInputError("Usage: /won <record_id> [project name]", code="invalid_command")
        name = " ".join(args[1:]) or None
        return [RecordWon(record_id=args[0], project_name=name)]
    return None


def render_draft_preview(draft: Draft) -> str:
    lines = [f"Draft #{str(draft.id)[:8]}", ""]
    if draft.summary:
        lines += ["Summary:", f"- {draft.summary}", ""]
    lines.append("Steps:")
    for index, preview in enumerate(draft.preview_lines(), start=1):
        lines.append(f"{index}) {preview}")
    lines += ["", f"Expires: {draft.expires_at.strftime('%Y-%m-%d %H:%M UTC')}"]
    return "\n".join(lines)


def render_draft_list(drafts: list[Draft]) -> str:
    if not drafts:
        return "No drafts yet."
    lines = ["Your drafts:", ""]
    for draft in drafts:
        first = draft.preview_lines()[0] if draft.actions else ""
        lines.append(f"#{str(draft.id)[:8]} {draft.status.value}  {first}")
    return "\n".join(lines)


class TelegramAdapter:
    def __init__(
        self,
        *,
        orchestrator: ApplyOrchestrator,
        drafts,
        ledger,
        telegram: TelegramClient,
        allowed_user_ids: frozenset[int],
    ) -> None:
        self._orchestrator = orchestrator
        self._drafts = drafts
        self._ledger = ledger
        self._telegram = telegram
        self._allowed_user_ids = allowed_user_ids

    @property
    def telegram(self) -> TelegramClient:
        return self._telegram

    def is_allowed(self, user_id: int | None) -> bool:
        # Empty allowlist denies everyone.
        return user_id is not None and user_id in self._allowed_user_ids

    async def handle_update(self, update: TelegramUpdate) -> None:
        if update.callback_query is not None:
            await self.handle_callback(update.callback_query)
        elif update.message is not None and update.message.text:
            await self.handle_message(update.message)

    async def handle_message(self, message: TelegramMessage) -> None:
        sender = message.from_
        if sender is None:
            return
        chat_id = message.chat.id
        if not self.is_allowed(sender.id):
            logger.info("telegram user not allowed", telegram_user_id=sender.id)
            await self._telegram.send_message(chat_id, "No access.")
            return

        text = message.text or ""
        command = text.strip().split(maxsplit=1)[0].split("@", 1)[0].lower() if text.strip() else ""
        if command == "/drafts":
            drafts = await self._drafts.list_for_author(str(sender.id), limit=10)
            await self._telegram.send_message(chat_id, render_draft_list(drafts))
            return

        try:
            actions = parse_command(text)
        except UserInputError as exc:
            await self._telegram.send_message(chat_id, exc.message)
            return
        if actions is None:
            await self._telegram.send_message(chat_id, HELP_TEXT)
            return

        draft = await self._orchestrator.propose(
            author_id=str(sender.id),
            channel_id=str(chat_id),
            actions=actions,
            source_text=text,
        )
        await self._telegram.send_message(chat_id, render_draft_preview(draft), draft_keyboard(draft.id))

    async def handle_callback(self, callback: TelegramCallbackQuery) -> None:
        await self._telegram.answer_callback_query(callback.id)

        chat_id = callback.message.chat.id if callback.message is not None else None
        if chat_id is None:
            return
        if not self.is_allowed(callback.from_.id):
            logger.info("telegram user not allowed", telegram_user_id=callback.from_.id)
            await self._telegram.send_message(chat_id, "No access.")
            return

        if not await self._ledger.claim(callback_token(callback.id), None):
            logger.info("callback already handled", callback_query_id=callback.id)
            return

        parsed = parse_callback_data(callback.data)
        if parsed is None:
            await self._telegram.send_message(chat_id, "Unsupported button.")
            return

        outcome = await self._orchestrator.handle(
            ConfirmationEvent(
                draft_id=parsed.draft_id,
                actor_id=str(callback.from_.id),
                action=parsed.action,
                confirmation_event_id=callback.id,
            )
        )
        logger.info(
            "confirmation handled",
            draft_id=str(parsed.draft_id),
            action=parsed.action,
            outcome=outcome.status.value,
        )
        await self._telegram.send_message(chat_id, outcome.user_message())
