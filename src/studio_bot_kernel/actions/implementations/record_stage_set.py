from __future__ import annotations

import time
from typing import Any

from ...logging import get_logger
from ..base import ActionExecutor
from ..stages import Stage
from ..types import ExecutionContext, ExecutionMetrics, ExecutionResult, SetRecordStage

logger = get_logger("studio_bot_kernel.actions.record_stage_set")


async def set_record_stage(ctx: ExecutionContext, record_id: str, label: str) -> tuple[Stage, dict[str, Any]]:
    """Resolve ``label`` and push the canonical stage name to the CRM.

    Setting the same stage twice leaves the record unchanged, so no guard row is kept.
    """
    account_id = ctx.config.require_crm_account()
    stage = ctx.config.stage_catalog.resolve(label)
    response = await ctx.tools.execute(
        ctx.config.stage_tool,
        {"record_id": record_id, "stage": stage.name},
        account_id,
    )
    logger.info(
        "record stage set",
        draft_id=str(ctx.draft_id),
        record_id=record_id,
        stage_key=stage.key,
        stage=stage.name,
    )
    return stage, response


class SetRecordStageExecutor(ActionExecutor):
    action_type = SetRecordStage
    name = "Record.Stage.Set"

    async def execute(self, action: SetRecordStage, ctx: ExecutionContext) -> ExecutionResult:
        start = time.monotonic()
        stage, response = await set_record_stage(ctx, action.record_id, action.stage_label)
        return ExecutionResult(
            action_type=action.kind,
            result={
                "record_id": action.record_id,
                "stage_key": stage.key,
                "stage": stage.name,
                "response": response,
            },
            metrics=ExecutionMetrics(latency_ms=int((time.monotonic() - start) * 1000), tool_calls=1),
        )
