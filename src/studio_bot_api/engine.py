from __future__ import annotations

from dataclasses import dataclass

import asyncpg

from studio_bot_kernel.actions.registry import default_registry
from studio_bot_kernel.actions.stages import StageCatalog
from studio_bot_kernel.apply import ApplyOrchestrator
from studio_bot_kernel.config import EngineConfig
from studio_bot_kernel.db import SettingsStore, apply_migrations
from studio_bot_kernel.drafts import DraftStore
from studio_bot_kernel.events import AuditSink, AuditWriter
from studio_bot_kernel.ledger import ApplyAttemptStore, IdempotencyLedger, TemplateTaskStore
from studio_bot_kernel.logging import get_logger, redact_secret
from studio_bot_ops import ComposioToolInvoker, TelegramClient

from .settings import Settings

logger = get_logger("studio_bot_api.engine")


@dataclass(frozen=True)
class EngineContainer:
    config: EngineConfig
    orchestrator: ApplyOrchestrator
    drafts: DraftStore
    ledger: IdempotencyLedger
    attempts: ApplyAttemptStore
    tools: ComposioToolInvoker
    telegram: TelegramClient

    async def close(self) -> None:
        await self.tools.close()
        await self.telegram.close()


def engine_config_from_settings(settings: Settings) -> EngineConfig:
    return EngineConfig(
        crm_account_id=settings.crm_connected_account_id,
        tracker_account_id=settings.linear_connected_account_id,
        tracker_team_id=settings.linear_team_id,
        stage_tool=settings.stage_tool,
        issue_tool=settings.issue_tool,
        stage_catalog=StageCatalog.from_raw(settings.crm_stages, settings.crm_stage_aliases),
        won_stage_label=settings.won_stage_label,
        draft_ttl_sec=settings.draft_ttl_sec,
        tool_timeout_sec=settings.tool_timeout_sec,
        enforce_draft_expiry=settings.enforce_draft_expiry,
        reclaim_failed_tokens=settings.reclaim_failed_tokens,
        template_claim_lease_sec=settings.template_claim_lease_sec,
    )


async def build_engine(*, pool: asyncpg.Pool, settings: Settings) -> EngineContainer:
    schema = settings.pg_schema
    if settings.run_migrations:
        applied = await apply_migrations(pool, schema=schema)
        if applied:
            logger.info("migrations applied", migrations=applied)

    overrides = await SettingsStore(pool=pool, schema=schema).load_all()
    config = engine_config_from_settings(settings).with_overrides(overrides)
    logger.info(
        "engine config loaded",
        crm_account=redact_secret(config.crm_account_id),
        tracker_account=redact_secret(config.tracker_account_id),
        stages=len(config.stage_catalog.stages),
        enforce_draft_expiry=config.enforce_draft_expiry,
        reclaim_failed_tokens=config.reclaim_failed_tokens,
    )

    drafts = DraftStore(pool=pool, schema=schema)
    ledger = IdempotencyLedger(pool=pool, schema=schema, reclaim_failed=config.reclaim_failed_tokens)
    attempts = ApplyAttemptStore(pool=pool, schema=schema)
    tools = ComposioToolInvoker(
        api_key=settings.composio_api_key,
        base_url=settings.composio_base_url,
        timeout_seconds=config.tool_timeout_sec,
    )
    orchestrator = ApplyOrchestrator(
        config=config,
        drafts=drafts,
        ledger=ledger,
        attempts=attempts,
        template_tasks=TemplateTaskStore(pool=pool, schema=schema),
        audit=AuditSink(AuditWriter(pool=pool, schema=schema)),
        tools=tools,
        registry=default_registry(),
    )
    return EngineContainer(
        config=config,
        orchestrator=orchestrator,
        drafts=drafts,
        ledger=ledger,
        attempts=attempts,
        tools=tools,
        telegram=TelegramClient(bot_token=settings.telegram_bot_token),
    )
