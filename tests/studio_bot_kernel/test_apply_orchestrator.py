from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest

from studio_bot_kernel.actions.types import RecordWon, SetRecordStage
from studio_bot_kernel.apply import ConfirmationEvent, OutcomeStatus
from studio_bot_kernel.drafts.types import DraftStatus
from studio_bot_kernel.errors import ErrorCategory, UserInputError
from studio_bot_kernel.ids import apply_token
from studio_bot_kernel.ledger.types import ClaimStatus
from tests.studio_bot_kernel._draft_testkit import FakeToolInvoker, build_config, build_harness, utc_now


def _apply(draft_id: uuid.UUID, actor_id: str = "u1", event_id: str = "evt-1", **kwargs) -> ConfirmationEvent:
    return ConfirmationEvent(
        draft_id=draft_id,
        actor_id=actor_id,
        action="apply",
        confirmation_event_id=event_id,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_first_apply_sets_stage_and_second_is_already_applied() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Won")],
    )
    token = apply_token(draft.id)

    first = await h.orchestrator.apply(_apply(draft.id, token=token))
    assert first.status is OutcomeStatus.APPLIED
    assert first.ok is True
    assert len(h.tools.calls) == 1
    call = h.tools.calls[0]
    assert call.tool_name == h.config.stage_tool
    assert call.arguments == {"record_id": "R1", "stage": "Won"}
    assert call.account_scope == "crm-account-1"
    assert h.drafts.drafts[draft.id].status is DraftStatus.APPLIED

    second = await h.orchestrator.apply(_apply(draft.id, event_id="evt-2", token=token))
    assert second.status is OutcomeStatus.ALREADY_APPLIED
    assert len(h.tools.calls) == 1
    assert len(h.attempts.attempts) == 1
    assert h.ledger.entries[token].status is ClaimStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_concurrent_confirmations_with_same_event_apply_once() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    outcomes = await asyncio.gather(*[h.orchestrator.apply(_apply(draft.id, event_id="evt-same")) for _ in range(10)])

    statuses = [outcome.status for outcome in outcomes]
    assert statuses.count(OutcomeStatus.APPLIED) == 1
    assert statuses.count(OutcomeStatus.ALREADY_APPLIED) == 9
    assert len(h.tools.calls) == 1
    assert len(h.attempts.attempts) == 1


@pytest.mark.asyncio
async def test_foreign_actor_is_rejected_without_claiming() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    outcome = await h.orchestrator.apply(_apply(draft.id, actor_id="intruder"))

    assert outcome.status is OutcomeStatus.REJECTED
    assert outcome.ok is False
    assert outcome.error_code == "forbidden"
    assert h.ledger.claim_calls == []
    assert h.tools.calls == []
    assert h.drafts.drafts[draft.id].status is DraftStatus.DRAFT
    assert "draft.confirm.rejected" in h.audit_writer.event_types()

    cancel = await h.orchestrator.cancel(
        ConfirmationEvent(draft_id=draft.id, actor_id="intruder", action="cancel", confirmation_event_id="c1")
    )
    assert cancel.status is OutcomeStatus.REJECTED
    assert h.drafts.drafts[draft.id].status is DraftStatus.DRAFT


@pytest.mark.asyncio
async def test_missing_draft_is_not_found() -> None:
    h = build_harness()
    outcome = await h.orchestrator.apply(_apply(uuid.uuid4()))
    assert outcome.status is OutcomeStatus.NOT_FOUND
    assert outcome.error_code == "draft_not_found"
    assert h.ledger.claim_calls == []


@pytest.mark.asyncio
async def test_cancelled_draft_cannot_be_applied() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    cancelled = await h.orchestrator.handle(
        ConfirmationEvent(draft_id=draft.id, actor_id="u1", action="cancel", confirmation_event_id="c1")
    )
    assert cancelled.status is OutcomeStatus.CANCELLED
    assert cancelled.ok is True
    assert cancelled.error_code is None
    assert cancelled.user_message() == "Draft cancelled."
    assert "draft.cancelled" in h.audit_writer.event_types()

    outcome = await h.orchestrator.apply(_apply(draft.id))
    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.ok is False
    assert outcome.error_code == "draft_cancelled"
    assert outcome.to_dict()["error"] == {"code": "draft_cancelled"}
    assert outcome.to_dict()["action"] == "apply"
    assert "cancelled" in outcome.user_message()
    assert h.tools.calls == []
    assert h.ledger.claim_calls == []


@pytest.mark.asyncio
async def test_cancel_after_apply_reports_already_applied() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )
    await h.orchestrator.apply(_apply(draft.id))

    outcome = await h.orchestrator.cancel(
        ConfirmationEvent(draft_id=draft.id, actor_id="u1", action="cancel", confirmation_event_id="c1")
    )
    assert outcome.status is OutcomeStatus.ALREADY_APPLIED
    assert h.drafts.drafts[draft.id].status is DraftStatus.APPLIED


@pytest.mark.asyncio
async def test_unknown_stage_fails_as_user_input_and_keeps_draft() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Nonexistent")],
    )

    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.error is not None
    assert outcome.error.category is ErrorCategory.USER_INPUT
    assert outcome.error.code == "stage_not_found"
    assert outcome.error.retryable is False
    assert h.tools.calls == []
    assert h.drafts.drafts[draft.id].status is DraftStatus.DRAFT
    [attempt] = h.attempts.for_draft(draft.id)
    assert attempt.finished_at is not None
    assert attempt.error_summary is not None and "stage_not_found" in attempt.error_summary
    assert (await h.ledger.get(outcome.token)).status is ClaimStatus.FAILED
    assert "draft.apply.failed" in h.audit_writer.event_types()
    assert "Retry safe?: No" in outcome.user_message()


@pytest.mark.asyncio
async def test_upstream_failure_is_retryable_and_token_stays_consumed() -> None:
    tools = FakeToolInvoker(fail_when=lambda call, n: True)
    h = build_harness(tools=tools)
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    failed = await h.orchestrator.apply(_apply(draft.id, event_id="evt-1"))
    assert failed.status is OutcomeStatus.FAILED
    assert failed.error is not None
    assert failed.error.category is ErrorCategory.UPSTREAM
    assert failed.error.retryable is True
    assert failed.error.details["status"] == 502

    tools.fail_when = None
    same_event = await h.orchestrator.apply(_apply(draft.id, event_id="evt-1"))
    assert same_event.status is OutcomeStatus.ALREADY_APPLIED
    assert tools.calls == []

    fresh_event = await h.orchestrator.apply(_apply(draft.id, event_id="evt-2"))
    assert fresh_event.status is OutcomeStatus.APPLIED
    assert len(tools.calls) == 1


@pytest.mark.asyncio
async def test_reclaim_failed_tokens_allows_retry_with_same_event() -> None:
    tools = FakeToolInvoker(fail_when=lambda call, n: True)
    h = build_harness(config=build_config(reclaim_failed_tokens=True), tools=tools)
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    failed = await h.orchestrator.apply(_apply(draft.id))
    assert failed.status is OutcomeStatus.FAILED

    tools.fail_when = None
    retried = await h.orchestrator.apply(_apply(draft.id))
    assert retried.status is OutcomeStatus.APPLIED
    assert retried.attempt_no == 2
    assert h.ledger.entries[retried.token].attempt_count == 2

    again = await h.orchestrator.apply(_apply(draft.id))
    assert again.status is OutcomeStatus.ALREADY_APPLIED
    assert len(tools.calls) == 1


@pytest.mark.asyncio
async def test_expired_draft_is_not_claimed() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )
    h.drafts.backdate(draft.id, seconds=5)

    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.EXPIRED
    assert outcome.error_code == "draft_expired"
    assert h.ledger.claim_calls == []
    assert h.tools.calls == []
    assert "draft.apply.expired" in h.audit_writer.event_types()


@pytest.mark.asyncio
async def test_expiry_uses_the_injected_clock() -> None:
    h = build_harness(clock=lambda: utc_now() + timedelta(hours=2))
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.EXPIRED
    assert h.ledger.claim_calls == []


@pytest.mark.asyncio
async def test_cancel_landing_between_check_and_claim_fails_the_token() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    async def cancel_now(_token: str) -> None:
        await h.drafts.transition(draft.id, DraftStatus.DRAFT, DraftStatus.CANCELLED)

    h.ledger.after_claim = cancel_now
    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.ok is False
    assert outcome.error_code == "draft_cancelled"
    assert (await h.ledger.get(outcome.token)).status is ClaimStatus.FAILED
    assert h.tools.calls == []
    assert h.attempts.for_draft(draft.id) == []


@pytest.mark.asyncio
async def test_apply_landing_between_check_and_claim_reports_already_applied() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    async def apply_now(_token: str) -> None:
        await h.drafts.transition(draft.id, DraftStatus.DRAFT, DraftStatus.APPLIED)

    h.ledger.after_claim = apply_now
    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.ALREADY_APPLIED
    assert outcome.ok is True
    assert (await h.ledger.get(outcome.token)).status is ClaimStatus.FAILED
    assert h.tools.calls == []


@pytest.mark.asyncio
async def test_draft_cancelled_during_execution_keeps_applied_outcome_without_transition() -> None:
    h = build_harness()
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    async def cancel_mid_run(_call) -> None:
        await h.drafts.transition(draft.id, DraftStatus.DRAFT, DraftStatus.CANCELLED)

    h.tools.before_call = cancel_mid_run
    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.APPLIED
    assert outcome.draft_transitioned is False
    assert outcome.draft_status == "CANCELLED"
    assert outcome.to_dict()["draft_transitioned"] is False
    assert len(h.tools.calls) == 1
    assert h.drafts.drafts[draft.id].status is DraftStatus.CANCELLED
    assert "draft.apply.transition_lost" in h.audit_writer.event_types()
    assert (await h.ledger.get(outcome.token)).status is ClaimStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_expiry_can_be_disabled() -> None:
    h = build_harness(config=build_config(enforce_draft_expiry=False))
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )
    h.drafts.backdate(draft.id, seconds=5)

    outcome = await h.orchestrator.apply(_apply(draft.id))
    assert outcome.status is OutcomeStatus.APPLIED


@pytest.mark.asyncio
async def test_audit_failures_never_reach_the_caller() -> None:
    h = build_harness(audit_fails=True)
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[SetRecordStage(record_id="R1", stage_label="Lead")],
    )

    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.APPLIED
    assert h.audit_writer.entries == []


@pytest.mark.asyncio
async def test_propose_rejects_empty_action_list() -> None:
    h = build_harness()
    with pytest.raises(UserInputError) as exc_info:
        await h.orchestrator.propose(author_id="u1", channel_id="chat-1", actions=[])
    assert exc_info.value.code == "empty_draft"
    assert h.drafts.drafts == {}


@pytest.mark.asyncio
async def test_missing_tracker_binding_fails_before_any_external_call() -> None:
    h = build_harness(config=build_config(tracker_team_id=None))
    draft = await h.orchestrator.propose(
        author_id="u1",
        channel_id="chat-1",
        actions=[RecordWon(record_id="R1")],
    )

    outcome = await h.orchestrator.apply(_apply(draft.id))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.error is not None
    assert outcome.error.category is ErrorCategory.CONFIG
    assert outcome.error.code == "tracker_team_missing"
    assert "hint" in outcome.error.details
    assert h.tools.calls == []
