from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ..actions.registry import ExecutorRegistry
from ..actions.types import Action, ExecutionContext, ExecutionResult
from ..config import EngineConfig
from ..drafts.types import Draft, DraftStatus
from ..errors import NormalizedError, UserInputError, normalize_error
from ..events.best_effort import AuditSink
from ..ledger.types import ApplyAttempt, ClaimStatus
from ..logging import get_logger
from ..tools import ToolInvoker
from .types import ApplyOutcome, ConfirmationEvent, OutcomeStatus

logger = get_logger("studio_bot_kernel.apply")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplyOrchestrator:
    """
    Turns a confirmation event into at most one execution of a draft's actions.

    State machine per event: RECEIVED -> CLAIMED -> EXECUTING ->
    FINALIZED_SUCCESS | FINALIZED_FAILURE. Everything before the claim is
    read-only; once the token is claimed the run is never cancelled and the
    token is not released.
    """

    def __init__(
        self,
        *,
        config: EngineConfig,
        drafts,
        ledger,
        attempts,
        template_tasks,
        audit: AuditSink,
        tools: ToolInvoker,
        registry: ExecutorRegistry,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        registry.ensure_exhaustive()
        self._config = config
        self._drafts = drafts
        self._ledger = ledger
        self._attempts = attempts
        self._template_tasks = template_tasks
        self._audit = audit
        self._tools = tools
        self._registry = registry
        self._clock = clock

    @property
    def config(self) -> EngineConfig:
        return self._config

    async def propose(
        self,
        *,
        author_id: str,
        channel_id: str,
        actions: list[Action] | tuple[Action, ...],
        source_text: str | None = None,
        summary: str | None = None,
    ) -> Draft:
        if not actions:
            raise UserInputError("a draft needs at least one action", code="empty_draft")
        draft = await self._drafts.create(
            author_id=str(author_id),
            channel_id=str(channel_id),
            actions=tuple(actions),
            ttl_sec=self._config.draft_ttl_sec,
            source_text=source_text,
            summary=summary,
        )
        logger.info("draft created", draft_id=str(draft.id), actor_id=draft.author_id, actions=len(draft.actions))
        await self._audit.info(
            "draft.created",
            draft_id=draft.id,
            actor_id=draft.author_id,
            payload={"actions": [action.to_dict() for action in draft.actions]},
        )
        return draft

    async def handle(self, event: ConfirmationEvent) -> ApplyOutcome:
        if event.action == "apply":
            return await self.apply(event)
        if event.action == "cancel":
            return await self.cancel(event)
        raise UserInputError(f"unsupported confirmation action: {event.action}", code="invalid_action")

    async def apply(self, event: ConfirmationEvent) -> ApplyOutcome:
        token = event.idempotency_token
        with logger.draft_context(
            draft_id=str(event.draft_id),
            actor_id=event.actor_id,
            idempotency_token=token,
            event_id=event.confirmation_event_id,
            operation="apply",
        ):
            draft = await self._drafts.get(event.draft_id)
            early = await self._pre_claim_check(event, draft, token)
            if early is not None:
                return early

            claimed = await self._ledger.claim(token, event.draft_id)
            if not claimed:
                logger.info("token already claimed")
                return ApplyOutcome(
                    status=OutcomeStatus.ALREADY_APPLIED,
                    draft_id=event.draft_id,
                    token=token,
                    draft_status=draft.status.value,
                )
            logger.info("token claimed")
            return await self._run_claimed(event, token)

    async def cancel(self, event: ConfirmationEvent) -> ApplyOutcome:
        with logger.draft_context(
            draft_id=str(event.draft_id),
            actor_id=event.actor_id,
            event_id=event.confirmation_event_id,
            operation="cancel",
        ):
            draft = await self._drafts.get(event.draft_id)
            if draft is None:
                return ApplyOutcome(status=OutcomeStatus.NOT_FOUND, draft_id=event.draft_id, action="cancel")
            if draft.author_id != str(event.actor_id):
                return await self._rejected(event, draft, None)

            if await self._drafts.transition(draft.id, DraftStatus.DRAFT, DraftStatus.CANCELLED):
                logger.info("draft cancelled")
                await self._audit.info("draft.cancelled", draft_id=draft.id, actor_id=event.actor_id)
                return ApplyOutcome(
                    status=OutcomeStatus.CANCELLED,
                    draft_id=draft.id,
                    draft_status=DraftStatus.CANCELLED.value,
                    action="cancel",
                )

            current = await self._drafts.get(draft.id)
            current_status = current.status if current is not None else draft.status
            return ApplyOutcome(
                status=_status_outcome(current_status),
                draft_id=draft.id,
                draft_status=current_status.value,
                action="cancel",
            )

    async def _pre_claim_check(
        self,
        event: ConfirmationEvent,
        draft: Draft | None,
        token: str,
    ) -> ApplyOutcome | None:
        if draft is None:
            logger.info("draft not found")
            return ApplyOutcome(status=OutcomeStatus.NOT_FOUND, draft_id=event.draft_id, token=token)
        if draft.author_id != str(event.actor_id):
            return await self._rejected(event, draft, token)
        if draft.status.is_terminal:
            return ApplyOutcome(
                status=_status_outcome(draft.status),
                draft_id=draft.id,
                token=token,
                draft_status=draft.status.value,
            )
        if self._config.enforce_draft_expiry and draft.is_expired(self._clock()):
            logger.info("draft expired", expires_at=draft.expires_at.isoformat())
            await self._audit.warning(
                "draft.apply.expired",
                draft_id=draft.id,
                actor_id=event.actor_id,
                payload={"token": token, "expires_at": draft.expires_at.isoformat()},
            )
            return ApplyOutcome(
                status=OutcomeStatus.EXPIRED,
                draft_id=draft.id,
                token=token,
                draft_status=draft.status.value,
            )
        return None

    async def _rejected(self, event: ConfirmationEvent, draft: Draft, token: str | None) -> ApplyOutcome:
        logger.warning("confirmation rejected: actor is not the draft author")
        await self._audit.warning(
            "draft.confirm.rejected",
            draft_id=draft.id,
            actor_id=event.actor_id,
            payload={"action": event.action, "confirmation_event_id": event.confirmation_event_id},
        )
        return ApplyOutcome(
            status=OutcomeStatus.REJECTED,
            draft_id=draft.id,
            token=token,
            draft_status=draft.status.value,
            action=event.action,
        )

    async def _run_claimed(self, event: ConfirmationEvent, token: str) -> ApplyOutcome:
        draft = await self._drafts.get(event.draft_id)
        if draft is None or draft.status.is_terminal or draft.author_id != str(event.actor_id):
            # Lost a race with a concurrent cancel or apply between the check and the claim.
            await self._ledger.finish(token, ClaimStatus.FAILED)
            if draft is None:
                return ApplyOutcome(status=OutcomeStatus.NOT_FOUND, draft_id=event.draft_id, token=token)
            if draft.author_id != str(event.actor_id):
                return ApplyOutcome(
                    status=OutcomeStatus.REJECTED,
                    draft_id=draft.id,
                    token=token,
                    draft_status=draft.status.value,
                )
            return ApplyOutcome(
                status=_status_outcome(draft.status),
                draft_id=draft.id,
                token=token,
                draft_status=draft.status.value,
            )

        attempt: ApplyAttempt = await self._attempts.start(draft_id=draft.id, idempotency_token=token)
        ctx = ExecutionContext(
            draft_id=draft.id,
            actor_id=str(event.actor_id),
            config=self._config,
            tools=self._tools,
            template_tasks=self._template_tasks,
            attempt_id=attempt.id,
        )

        start = time.monotonic()
        completed: list[ExecutionResult] = []
        try:
            for index, action in enumerate(draft.actions):
                executor = self._registry.get(action)
                logger.debug("executing action", index=index, action_type=action.kind, executor=executor.name)
                completed.append(await executor.execute(action, ctx))
        except Exception as exc:
            error = normalize_error(exc)
            return await self._finalize_failure(event, draft, token, attempt, completed, error, start)

        return await self._finalize_success(event, draft, token, attempt, completed, start)

    async def _finalize_success(
        self,
        event: ConfirmationEvent,
        draft: Draft,
        token: str,
        attempt: ApplyAttempt,
        completed: list[ExecutionResult],
        start: float,
    ) -> ApplyOutcome:
        result: dict[str, Any] = {
            "actions": [item.to_dict() for item in completed],
            "latency_ms": int((time.monotonic() - start) * 1000),
        }
        final_status = DraftStatus.APPLIED
        transitioned = await self._drafts.transition(draft.id, DraftStatus.DRAFT, DraftStatus.APPLIED)
        if not transitioned:
            current = await self._drafts.get(draft.id)
            if current is not None:
                final_status = current.status
            logger.warning("actions applied but draft was no longer in DRAFT")
            await self._audit.warning(
                "draft.apply.transition_lost",
                draft_id=draft.id,
                actor_id=event.actor_id,
                payload={"token": token, "attempt_id": str(attempt.id), "draft_status": final_status.value},
            )
        await self._audit.info(
            "draft.apply.succeeded",
            draft_id=draft.id,
            actor_id=event.actor_id,
            payload={"token": token, "attempt_id": str(attempt.id), "attempt_no": attempt.attempt_no, **result},
        )
        await self._attempts.finish(attempt.id, result=result, error_summary=None)
        await self._ledger.finish(token, ClaimStatus.SUCCEEDED)
        logger.info("draft applied", attempt_no=attempt.attempt_no, latency_ms=result["latency_ms"])
        return ApplyOutcome(
            status=OutcomeStatus.APPLIED,
            draft_id=draft.id,
            token=token,
            draft_status=final_status.value,
            attempt_id=attempt.id,
            attempt_no=attempt.attempt_no,
            result=result,
            draft_transitioned=transitioned,
        )

    async def _finalize_failure(
        self,
        event: ConfirmationEvent,
        draft: Draft,
        token: str,
        attempt: ApplyAttempt,
        completed: list[ExecutionResult],
        error: NormalizedError,
        start: float,
    ) -> ApplyOutcome:
        result: dict[str, Any] = {
            "actions": [item.to_dict() for item in completed],
            "failed_action_index": len(completed),
            "error": error.to_dict(),
            "latency_ms": int((time.monotonic() - start) * 1000),
        }
        logger.error(
            "draft apply failed",
            category=error.category.value,
            code=error.code,
            retryable=error.retryable,
            failed_action_index=len(completed),
        )
        await self._audit.error(
            "draft.apply.failed",
            draft_id=draft.id,
            actor_id=event.actor_id,
            payload={"token": token, "attempt_id": str(attempt.id), "attempt_no": attempt.attempt_no, **result},
        )
        await self._attempts.finish(attempt.id, result=result, error_summary=error.summary())
        await self._ledger.finish(token, ClaimStatus.FAILED)
        return ApplyOutcome(
            status=OutcomeStatus.FAILED,
            draft_id=draft.id,
            token=token,
            draft_status=DraftStatus.DRAFT.value,
            attempt_id=attempt.id,
            attempt_no=attempt.attempt_no,
            result=result,
            error=error,
        )


def _status_outcome(status: DraftStatus) -> OutcomeStatus:
    if status is DraftStatus.APPLIED:
        return OutcomeStatus.ALREADY_APPLIED
    if status is DraftStatus.CANCELLED:
        return OutcomeStatus.CANCELLED
    raise ValueError(f"draft status {status.value} has no terminal outcome")
