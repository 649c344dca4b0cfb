from __future__ import annotations

import time
import uuid
from typing import Any

from ...errors import ConflictError
from ...logging import get_logger
from ..base import ActionExecutor
from ..kickoff_template import DESIGN_STUDIO_KICKOFF, KickoffTemplate, KickoffTemplateTask
from ..types import ExecutionContext, ExecutionMetrics, ExecutionResult, RecordWon
from .record_stage_set import set_record_stage

logger = get_logger("studio_bot_kernel.actions.record_won")


class RecordWonExecutor(ActionExecutor):
    """
    Composite: move the record to the won stage, then create one tracker issue
    per kickoff template item.

    Each item's ``project_template_tasks`` row is claimed as ``pending`` before
    the tracker call and marked ``created`` right after it, so a re-run after a
    failure at item k only creates the items that have no created row yet, and
    two concurrent runs never create the same item twice. A run that finds a
    live claim held by another run fails with a retryable ``ConflictError``.
    """

    action_type = RecordWon
    name = "Record.Won"

    def __init__(self, template: KickoffTemplate = DESIGN_STUDIO_KICKOFF) -> None:
        self._template = template

    async def execute(self, action: RecordWon, ctx: ExecutionContext) -> ExecutionResult:
        start = time.monotonic()
        ctx.config.require_crm_account()
        tracker_account, team_id = ctx.config.require_tracker()

        stage, _ = await set_record_stage(ctx, action.record_id, ctx.config.won_stage_label)
        tool_calls = 1

        project_key = action.resolved_project_key
        created: list[dict[str, Any]] = []
        skipped: list[str] = []
        claim_id = ctx.attempt_id or uuid.uuid4()
        lease_sec = ctx.config.template_claim_lease_sec
        for task in self._template.tasks:
            key = task.template_task_key
            existing = await ctx.template_tasks.get(project_key, key)
            if existing is not None and existing.is_created:
                skipped.append(key)
                continue

            reserved = await ctx.template_tasks.reserve(
                project_key=project_key,
                template_task_key=key,
                template_version=self._template.version,
                draft_id=ctx.draft_id,
                attempt_id=claim_id,
                lease_sec=lease_sec,
            )
            if not reserved:
                current = await ctx.template_tasks.get(project_key, key)
                if current is not None and current.is_created:
                    skipped.append(key)
                    continue
                raise ConflictError(
                    f"kickoff task {key} for project {project_key} is being created by another run",
                    code="template_task_in_progress",
                    details={
                        "project_key": project_key,
                        "template_task_key": key,
                        "hint": "Another confirmation is applying this project. Wait a moment, then press Apply again.",
                    },
                )

            try:
                response = await ctx.tools.execute(
                    ctx.config.issue_tool,
                    {
                        "team_id": team_id,
                        "title": _issue_title(task, action),
                        "description": task.description,
                    },
                    tracker_account,
                )
            except Exception:
                await ctx.template_tasks.release(project_key=project_key, template_task_key=key, attempt_id=claim_id)
                raise
            tool_calls += 1
            issue_id = _extract_issue_id(response)
            if issue_id is None:
                logger.warning(
                    "issue created without a recognizable id",
                    draft_id=str(ctx.draft_id),
                    template_task_key=key,
                )

            completed = await ctx.template_tasks.complete(
                project_key=project_key,
                template_task_key=key,
                attempt_id=claim_id,
                external_issue_id=issue_id,
            )
            if not completed:
                logger.warning(
                    "template task claim expired before the issue was recorded",
                    draft_id=str(ctx.draft_id),
                    project_key=project_key,
                    template_task_key=key,
                )
            created.append({"template_task_key": key, "external_issue_id": issue_id})

        logger.info(
            "kickoff issues ensured",
            draft_id=str(ctx.draft_id),
            project_key=project_key,
            created=len(created),
            skipped=len(skipped),
        )
        return ExecutionResult(
            action_type=action.kind,
            result={
                "record_id": action.record_id,
                "stage_key": stage.key,
                "stage": stage.name,
                "project_key": project_key,
                "template_version": self._template.version,
                "created": created,
                "skipped": skipped,
            },
            metrics=ExecutionMetrics(latency_ms=int((time.monotonic() - start) * 1000), tool_calls=tool_calls),
            external_ids={item["template_task_key"]: item["external_issue_id"] for item in created},
        )


def _issue_title(task: KickoffTemplateTask, action: RecordWon) -> str:
    if action.project_name:
        return f"{action.project_name}: {task.title}"
    return task.title


def _extract_issue_id(response: dict[str, Any]) -> str | None:
    data = response.get("data") if isinstance(response, dict) else None
    candidates: list[Any] = []
    if isinstance(data, dict):
        candidates.append(data.get("id"))
        issue = data.get("issue")
        if isinstance(issue, dict):
            candidates.append(issue.get("id"))
    if isinstance(response, dict):
        candidates.append(response.get("id"))
    for value in candidates:
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value)
    return None
