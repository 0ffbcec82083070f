"""
Command orchestrator tests - the end-to-end command and decision paths.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import ScriptedModel, envelope
from sitemind.agents.agent import UpstreamError
from sitemind.agents.orchestrator import CommandOrchestrator
from sitemind.core.approval import (
    ApprovalAlreadyResolved,
    ApprovalExpired,
    ApprovalNotFound,
    ApprovalState,
    ApprovalStateMismatch,
    Decision,
)
from sitemind.core.audit import AuditStatus
from sitemind.core.operations import OperationUnavailable
from sitemind.core.schema import ErrorCode


def run(coro):
    return asyncio.run(coro)


def refund_reply(order_id=456, reason="defective"):
    return envelope(
        "pending_approval", "processRefund", f"Refunding order #{order_id} needs your approval.",
        params={"orderId": order_id, "reason": reason},
        approval={"reason": "Refunds move money", "details": {"orderId": order_id}},
    )


class BlockingModel(ScriptedModel):
    """Holds every call until `release` is set."""

    def __init__(self, *replies):
        super().__init__(*replies)
        self.entered = None
        self.release = None

    async def complete(self, system_prompt, context, command):
        if self.entered is None:
            self.entered, self.release = asyncio.Event(), asyncio.Event()
        self.entered.set()
        await self.release.wait()
        return await super().complete(system_prompt, context, command)


class TestDirectActions:

    def test_success_uses_collaborator_data(self, make_orchestrator, audit, store):
        # Data claimed by the model is replaced by the real result.
        reply = envelope("success", "closeTicket", "I'll close ticket #45.",
                         params={"ticketId": 45, "resolution": "Replacement shipped"})
        orch = make_orchestrator(reply)

        result = run(orch.execute_command("Close ticket #45, replacement shipped"))
        env = result.envelope
        assert env.status == "success"
        assert env.action == "closeTicket"
        assert env.data.ticket.status == "CLOSED"
        assert store.tickets[45]["resolution"] == "Replacement shipped"

        entry = audit.get(result.log_id)
        assert entry.status is AuditStatus.SUCCESS
        assert entry.action == "closeTicket"
        assert [s.step for s in env.logs] == [s.step for s in entry.steps]

    def test_action_without_params(self, make_orchestrator):
        reply = envelope("success", "getOrderStats", "Stats.", params={})
        result = run(make_orchestrator(reply).execute_command("order stats"))
        assert result.envelope.data.stats.total_orders == 5

    def test_unknown_entity_fails_with_suggestion(self, make_orchestrator, audit):
        reply = envelope("success", "closeTicket", "I'll close ticket #999.",
                         params={"ticketId": 999, "resolution": "done"})
        result = run(make_orchestrator(reply).execute_command("Close ticket #999"))

        env = result.envelope
        assert env.status == "error"
        assert env.error_code is ErrorCode.ACTION_NOT_FOUND
        assert env.error.details == "Ticket #999 not found"
        assert env.error.suggestion == "Did you mean ticket #50?"
        assert env.data is None

        entry = audit.get(result.log_id)
        assert entry.status is AuditStatus.FAILED
        assert entry.error_code == "ActionNotFound"

    def test_model_pending_for_direct_action_executes(self, make_orchestrator, registry):
        reply = envelope("pending_approval", "clearCache", "Clearing.", params={},
                         approval={"reason": "just checking"})
        result = run(make_orchestrator(reply).execute_command("clear the cache"))
        assert result.envelope.status == "success"
        assert registry.list_pending() == []

    def test_model_error_surfaced_unchanged(self, make_orchestrator, audit):
        reply = envelope("error", "getTicket", "Which ticket?",
                         error={"code": "VALIDATION_ERROR", "details": "ticket id missing"})
        result = run(make_orchestrator(reply).execute_command("show me the ticket"))

        assert result.envelope.error_code is ErrorCode.VALIDATION_ERROR
        assert result.envelope.message == "Which ticket?"
        assert audit.get(result.log_id).error_code == "ValidationError"


class TestFailures:

    @pytest.mark.parametrize("raw", [
        "Sure! I closed it.",
        '```json\n{"status": "success"}\n```',
        '{"status": "success", "action": "dropDatabase", "message": "x", "logs": []}',
    ])
    def test_malformed_reply(self, make_orchestrator, audit, store, raw):
        result = run(make_orchestrator(raw).execute_command("do something"))
        assert result.envelope.status == "error"
        assert result.envelope.error_code is ErrorCode.MALFORMED_RESPONSE
        assert audit.get(result.log_id).status is AuditStatus.FAILED
        assert store.outbox == []

    def test_upstream_error(self, make_orchestrator, audit):
        result = run(make_orchestrator(UpstreamError("connection refused")).execute_command("x"))
        assert result.envelope.error_code is ErrorCode.UPSTREAM_UNAVAILABLE
        assert audit.get(result.log_id).status is AuditStatus.FAILED

    def test_model_timeout(self, make_orchestrator):
        model = BlockingModel(envelope())
        orch = make_orchestrator(model=model, llm_timeout=0.01)
        result = run(orch.execute_command("ticket 45"))
        assert result.envelope.error_code is ErrorCode.UPSTREAM_UNAVAILABLE
        assert orch.sessions_in_flight == 0

    def test_unexpected_exception_is_internal_error(self, make_orchestrator, audit):
        result = run(make_orchestrator(RuntimeError("kaboom")).execute_command("x"))
        assert result.envelope.error_code is ErrorCode.INTERNAL_ERROR
        assert "kaboom" not in result.envelope.message
        assert audit.get(result.log_id).status is AuditStatus.FAILED

    def test_collaborator_crash_is_internal_error(self, make_orchestrator, store):
        store.get_order = AsyncMock(side_effect=ConnectionError("db down"))
        reply = envelope("success", "getOrder", "Here.", params={"orderId": 455})
        result = run(make_orchestrator(reply).execute_command("order 455"))
        assert result.envelope.error_code is ErrorCode.INTERNAL_ERROR

    def test_collaborator_outage_is_upstream(self, make_orchestrator, store):
        store.get_order = AsyncMock(side_effect=OperationUnavailable("db down"))
        reply = envelope("success", "getOrder", "Here.", params={"orderId": 455})
        result = run(make_orchestrator(reply).execute_command("order 455"))
        assert result.envelope.error_code is ErrorCode.UPSTREAM_UNAVAILABLE

    def test_cancellation_finalizes_abandoned(self, make_orchestrator, audit):
        model = BlockingModel(envelope())
        orch = make_orchestrator(model=model)

        async def scenario():
            task = asyncio.ensure_future(orch.execute_command("ticket 45", session_id="s1"))
            while model.entered is None or not model.entered.is_set():
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        run(scenario())
        entry = audit.list_entries()[0]
        assert entry.status is AuditStatus.FAILED
        assert entry.error_code == "Abandoned"
        assert not orch.is_busy("s1")

    def test_no_entry_left_pending(self, make_orchestrator, audit):
        replies = [
            envelope("success", "getTicket", "Here.", params={"ticketId": 45}),
            "not json",
            UpstreamError("down"),
            envelope("success", "getTicket", "Here.", params={"ticketId": 1}),
            envelope("error", "getTicket", "No.", error={"code": "ActionNotFound", "details": "no"}),
        ]
        orch = make_orchestrator(*replies)
        for i in range(len(replies)):
            run(orch.execute_command(f"command {i}"))
        assert all(e.is_final for e in audit.list_entries())


class TestSessions:

    def test_same_session_is_busy(self, make_orchestrator, audit):
        model = BlockingModel(envelope("success", "getTicket", "Here.", params={"ticketId": 45}))
        orch = make_orchestrator(model=model)

        async def scenario():
            first = asyncio.ensure_future(orch.execute_command("ticket 45", session_id="s1"))
            while model.entered is None or not model.entered.is_set():
                await asyncio.sleep(0)
            assert orch.is_busy("s1")
            second = await orch.execute_command("ticket 46", session_id="s1")
            model.release.set()
            return await first, second

        first, second = run(scenario())
        assert first.envelope.status == "success"
        assert second.envelope.error_code is ErrorCode.BUSY
        assert second.envelope.action is None
        assert audit.get(second.log_id).status is AuditStatus.FAILED
        assert len(model.calls) == 1

    def test_different_sessions_run_concurrently(self, make_orchestrator):
        model = BlockingModel(
            envelope("success", "getTicket", "Here.", params={"ticketId": 45}),
            envelope("success", "getTicket", "Here.", params={"ticketId": 46}),
        )
        orch = make_orchestrator(model=model)

        async def scenario():
            tasks = [asyncio.ensure_future(orch.execute_command(f"ticket {n}", session_id=f"s{n}"))
                     for n in (45, 46)]
            while orch.sessions_in_flight < 2 or model.release is None:
                await asyncio.sleep(0)
            model.release.set()
            return await asyncio.gather(*tasks)

        results = run(scenario())
        assert [r.envelope.status for r in results] == ["success", "success"]
        assert orch.sessions_in_flight == 0

    def test_context_recorded_per_session(self, make_orchestrator):
        replies = [envelope("success", "getTicket", "Here is ticket #45.", params={"ticketId": 45}),
                   envelope("success", "getTicket", "Here is ticket #46.", params={"ticketId": 46})]
        orch = make_orchestrator(*replies)
        run(orch.execute_command("ticket 45", session_id="s1"))
        run(orch.execute_command("and 46?", session_id="s1"))

        context = orch.model.calls[1]["context"]
        assert [(t.role, t.content) for t in context] == [
            ("user", "ticket 45"), ("assistant", "Here is ticket #45.")]

    def test_explicit_history_is_windowed(self, make_orchestrator):
        history = [{"role": "user", "content": f"m{i}"} for i in range(6)]
        orch = make_orchestrator(envelope("success", "getTicket", "Here.", params={"ticketId": 45}))
        run(orch.execute_command("ticket 45", history=history))
        assert [t.content for t in orch.model.calls[0]["context"]] == ["m2", "m3", "m4", "m5"]


class TestApprovalFlow:

    def test_refund_approve_executes_once(self, make_orchestrator, audit, store, registry, clock):
        store.process_refund = AsyncMock(wraps=store.process_refund)
        orch = make_orchestrator(refund_reply())

        result = run(orch.execute_command("Refund order #456 because defective"))
        env = result.envelope
        assert env.status == "pending_approval"
        assert env.approval.expires_at == clock.now + timedelta(hours=1)
        approval_id = env.approval.approval_id
        assert approval_id.startswith("apr_")
        assert audit.get(result.log_id).status is AuditStatus.PENDING
        store.process_refund.assert_not_awaited()

        decision = run(orch.decide(approval_id, Decision.APPROVE, approver="ops"))
        assert decision.log_id == result.log_id
        assert decision.envelope.status == "success"
        assert decision.envelope.data.refund_amount == 199.99
        assert decision.approval.state is ApprovalState.CONSUMED
        store.process_refund.assert_awaited_once_with(order_id=456, reason="defective", approval_id=approval_id)

        entry = audit.get(result.log_id)
        assert entry.status is AuditStatus.SUCCESS
        assert entry.approval_id == approval_id

        with pytest.raises(ApprovalAlreadyResolved):
            run(orch.decide(approval_id, Decision.APPROVE))
        assert store.process_refund.await_count == 1

    def test_deny_never_executes(self, make_orchestrator, audit, store, registry):
        store.process_refund = AsyncMock(wraps=store.process_refund)
        orch = make_orchestrator(refund_reply())
        result = run(orch.execute_command("Refund order #456 because defective"))
        approval_id = result.envelope.approval.approval_id

        decision = run(orch.decide(approval_id, "deny"))
        assert decision.envelope is None
        assert decision.approval.state is ApprovalState.DENIED
        assert audit.get(result.log_id).status is AuditStatus.FAILED

        with pytest.raises(ApprovalStateMismatch):
            registry.consume(approval_id)
        store.process_refund.assert_not_awaited()
        assert store.orders[456]["status"] == "DELIVERED"

    def test_expired_decision(self, make_orchestrator, audit, clock):
        orch = make_orchestrator(refund_reply())
        result = run(orch.execute_command("Refund order #456 because defective"))
        clock.advance(3601)

        with pytest.raises(ApprovalExpired):
            run(orch.decide(result.envelope.approval.approval_id, Decision.APPROVE))
        entry = audit.get(result.log_id)
        assert entry.status is AuditStatus.FAILED
        assert entry.error_code == "Expired"

    def test_sweep_closes_lapsed_requests(self, make_orchestrator, audit, clock):
        orch = make_orchestrator(refund_reply(), refund_reply(455))
        first = run(orch.execute_command("refund 456"))
        clock.advance(1800)
        second = run(orch.execute_command("refund 455"))
        clock.advance(1801)

        assert orch.sweep_expired_approvals() == [first.envelope.approval.approval_id]
        assert audit.get(first.log_id).status is AuditStatus.FAILED
        assert audit.get(second.log_id).status is AuditStatus.PENDING
        assert [r.id for r in orch.list_pending_approvals()] == [second.envelope.approval.approval_id]

    def test_sweep_closes_requests_pruned_on_expiry(self, make_orchestrator, registry, audit, clock):
        registry.retention = timedelta(0)
        orch = make_orchestrator(refund_reply())
        result = run(orch.execute_command("refund 456"))
        approval_id = result.envelope.approval.approval_id
        clock.advance(3601)

        assert orch.sweep_expired_approvals() == [approval_id]
        with pytest.raises(ApprovalNotFound):
            registry.get(approval_id)
        entry = audit.get(result.log_id)
        assert entry.status is AuditStatus.FAILED
        assert entry.error_code == "Expired"

    def test_failed_execution_after_approval(self, make_orchestrator, audit, store):
        orch = make_orchestrator(refund_reply(460))
        result = run(orch.execute_command("refund 460"))
        decision = run(orch.decide(result.envelope.approval.approval_id, Decision.APPROVE))

        assert decision.envelope.error_code is ErrorCode.ALREADY_PROCESSED
        assert decision.approval.state is ApprovalState.CONSUMED
        assert audit.get(result.log_id).status is AuditStatus.FAILED

    def test_unknown_approval(self, make_orchestrator):
        with pytest.raises(ApprovalNotFound):
            run(make_orchestrator().decide("apr_missing", Decision.APPROVE))

    def test_gated_action_never_reaches_router_without_approval(self, make_orchestrator, store):
        # Even a model claiming success cannot run a gated action.
        reply = envelope("success", "processRefund", "Refunded!",
                         params={"orderId": 456, "reason": "defective"})
        store.process_refund = AsyncMock(wraps=store.process_refund)
        result = run(make_orchestrator(reply).execute_command("refund 456"))
        assert result.envelope.status == "pending_approval"
        store.process_refund.assert_not_awaited()


class TestHealth:

    def test_health_snapshot(self, make_orchestrator):
        orch = make_orchestrator(refund_reply())
        run(orch.execute_command("refund 456"))
        health = run(orch.health_check())
        assert health["status"] == "healthy"
        assert health["pending_approvals"] == 1
        assert health["model"]["model_name"] == "scripted-model"

    def test_requires_operations_or_router(self):
        with pytest.raises(ValueError):
            CommandOrchestrator(model=ScriptedModel())
