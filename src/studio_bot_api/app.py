from __future__ import annotations

import hmac
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from studio_bot_kernel.actions.types import action_from_dict
from studio_bot_kernel.apply import ApplyOrchestrator, ConfirmationEvent, format_error_message
from studio_bot_kernel.drafts import DraftStore
from studio_bot_kernel.errors import KernelError, UserInputError, normalize_error
from studio_bot_kernel.ids import parse_uuid
from studio_bot_kernel.logging import configure_logging, get_logger

from .db import close_pool, get_pool
from .engine import EngineContainer, build_engine
from .settings import get_settings
from .telegram import TelegramAdapter, TelegramUpdate

app = FastAPI(title="Studio Bot Draft/Apply API", version="0.1.0")

logger = get_logger("studio_bot_api.app")


class CreateDraftRequest(BaseModel):
    author_id: str = Field(..., min_length=1)
    channel_id: str = Field(..., min_length=1)
    actions: list[dict[str, Any]] = Field(..., min_length=1)
    source_text: str | None = None
    summary: str | None = None


class ConfirmRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    confirmation_event_id: str = Field(..., min_length=1)
    action: Literal["apply", "cancel"] = "apply"


@app.on_event("startup")
async def _startup() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    pool = await get_pool(settings.pg_dsn, min_size=settings.pg_pool_min, max_size=settings.pg_pool_max)
    container = await build_engine(pool=pool, settings=settings)

    app.state.engine = container
    app.state.telegram_adapter = TelegramAdapter(
        orchestrator=container.orchestrator,
        drafts=container.drafts,
        ledger=container.ledger,
        telegram=container.telegram,
        allowed_user_ids=settings.allowed_telegram_user_ids,
    )
    if not settings.allowed_telegram_user_ids:
        logger.warning("BOT_ALLOWED_TELEGRAM_USER_IDS is empty; all Telegram users are denied")
    logger.info("startup complete", schema=settings.pg_schema)


@app.on_event("shutdown")
async def _shutdown() -> None:
    container: EngineContainer | None = getattr(app.state, "engine", None)
    if container is not None:
        await container.close()
    await close_pool()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"ok": "true"}


@app.post("/v1/drafts")
async def create_draft(req: CreateDraftRequest) -> dict[str, Any]:
    orchestrator: ApplyOrchestrator = app.state.engine.orchestrator
    try:
        actions = [action_from_dict(item) for item in req.actions]
        draft = await orchestrator.propose(
            author_id=req.author_id,
            channel_id=req.channel_id,
            actions=actions,
            source_text=req.source_text,
            summary=req.summary,
        )
    except UserInputError as exc:
        raise HTTPException(status_code=400, detail=exc.to_normalized().to_dict())
    return draft.to_dict()


@app.get("/v1/drafts/{draft_id}")
async def get_draft(draft_id: str) -> dict[str, Any]:
    drafts: DraftStore = app.state.engine.drafts
    parsed = parse_uuid(draft_id)
    if parsed is None:
        raise HTTPException(status_code=404, detail="draft not found")
    draft = await drafts.get(parsed)
    if draft is None:
        raise HTTPException(status_code=404, detail="draft not found")
    return draft.to_dict()


@app.get("/v1/drafts/{draft_id}/attempts")
async def list_draft_attempts(draft_id: str) -> dict[str, Any]:
    engine = app.state.engine
    parsed = parse_uuid(draft_id)
    if parsed is None or await engine.drafts.get(parsed) is None:
        raise HTTPException(status_code=404, detail="draft not found")

    attempts = await engine.attempts.list_for_draft(parsed)
    token_status: dict[str, str | None] = {}
    items: list[dict[str, Any]] = []
    for attempt in attempts:
        token = attempt.idempotency_token
        if token not in token_status:
            entry = await engine.ledger.get(token)
            token_status[token] = entry.status.value if entry is not None else None
        item = attempt.to_dict()
        item["token_status"] = token_status[token]
        items.append(item)
    return {"draft_id": str(parsed), "attempts": items}


@app.post("/v1/drafts/{draft_id}/confirm")
async def confirm_draft(draft_id: str, req: ConfirmRequest) -> dict[str, Any]:
    parsed = parse_uuid(draft_id)
    if parsed is None:
        return {"ok": False, "outcome": "not_found", "draft_id": draft_id, "error": {"code": "draft_not_found"}}

    orchestrator: ApplyOrchestrator = app.state.engine.orchestrator
    event = ConfirmationEvent(
        draft_id=parsed,
        actor_id=req.actor_id,
        action=req.action,
        confirmation_event_id=req.confirmation_event_id,
    )
    try:
        outcome = await orchestrator.handle(event)
    except Exception as exc:
        error = normalize_error(exc)
        logger.log_error(exc, "confirm failed", draft_id=str(parsed), action=req.action)
        return {"ok": False, "outcome": "error", "draft_id": str(parsed), "error": error.to_dict()}

    body = outcome.to_dict()
    body["message"] = outcome.user_message()
    return body


@app.post("/telegram/webhook")
async def telegram_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    if settings.telegram_webhook_secret:
        provided = request.headers.get("x-telegram-bot-api-secret-token") or ""
        if not hmac.compare_digest(provided, settings.telegram_webhook_secret):
            return JSONResponse({"ok": False, "error": "unauthorized"}, status_code=401)

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"ok": False, "error": "invalid json"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"ok": False, "error": "invalid json"}, status_code=400)

    try:
        update = TelegramUpdate.model_validate(payload)
    except ValidationError:
        logger.warning("telegram update ignored: unexpected shape")
        return JSONResponse({"ok": True, "error": "invalid_update"})

    adapter: TelegramAdapter = app.state.telegram_adapter
    try:
        await adapter.handle_update(update)
    except Exception as exc:
        error = normalize_error(exc)
        logger.log_error(exc, "telegram update failed", update_id=update.update_id)
        chat_id = update.chat_id()
        if chat_id is not None and adapter.is_allowed(update.sender_id()):
            try:
                await adapter.telegram.send_message(chat_id, "Error\n\n" + format_error_message(error))
            except KernelError as send_exc:
                logger.warning("error reply not delivered", error=str(send_exc))
        # 200 so Telegram does not redeliver the update.
        return JSONResponse({"ok": True, "error": error.code})

    return JSONResponse({"ok": True})
