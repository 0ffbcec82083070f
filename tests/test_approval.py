"""
Approval registry tests - state machine, lazy expiry, atomic consume.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock

import pytest

from sitemind.core.approval import (
    ApprovalAlreadyResolved,
    ApprovalExpired,
    ApprovalNotFound,
    ApprovalRegistry,
    ApprovalRequest,
    ApprovalState,
    ApprovalStateMismatch,
    Decision,
)
from sitemind.core.schema import ErrorCode


def _create(registry, action="processRefund"):
    return registry.create(action, {"orderId": 456, "reason": "defective"}, "Refunds need sign-off")


class TestApprovalRequest:

    def test_to_dict_and_from_dict(self, registry):
        approval_id = _create(registry)
        request = registry.get(approval_id)

        data = request.to_dict()
        assert data["state"] == "pending"
        assert isinstance(data["expires_at"], str)

        restored = ApprovalRequest.from_dict(data)
        assert restored == request


class TestCreate:

    def test_fresh_ids_and_fixed_ttl(self, registry, clock):
        first, second = _create(registry), _create(registry)
        assert first != second

        request = registry.get(first)
        assert request.state is ApprovalState.PENDING
        assert request.created_at == clock.now
        assert request.expires_at == clock.now + timedelta(hours=1)

    def test_params_are_copied(self, registry):
        params = {"orderId": 456}
        approval_id = registry.create("processRefund", params, "reason")
        params["orderId"] = 999
        assert registry.get(approval_id).params == {"orderId": 456}

    def test_snapshots_do_not_leak(self, registry):
        approval_id = _create(registry)
        snapshot = registry.get(approval_id)
        snapshot.state = ApprovalState.APPROVED
        assert registry.get(approval_id).state is ApprovalState.PENDING


class TestResolve:

    def test_approve(self, registry, clock):
        approval_id = _create(registry)
        request = registry.resolve(approval_id, Decision.APPROVE, approver="ops@sitemind.com")
        assert request.state is ApprovalState.APPROVED
        assert request.decided_by == "ops@sitemind.com"
        assert request.decided_at == clock.now

    def test_deny_is_terminal(self, registry):
        approval_id = _create(registry)
        registry.resolve(approval_id, "deny")
        with pytest.raises(ApprovalAlreadyResolved) as exc:
            registry.resolve(approval_id, Decision.APPROVE)
        assert exc.value.code is ErrorCode.ALREADY_RESOLVED

    def test_unknown_id(self, registry):
        with pytest.raises(ApprovalNotFound) as exc:
            registry.resolve("apr_missing", Decision.APPROVE)
        assert exc.value.code is ErrorCode.NOT_FOUND

    def test_expired_transitions_before_failing(self, registry, clock):
        approval_id = _create(registry)
        clock.advance(3601)
        with pytest.raises(ApprovalExpired) as exc:
            registry.resolve(approval_id, Decision.APPROVE)
        assert exc.value.code is ErrorCode.EXPIRED
        assert registry.get(approval_id).state is ApprovalState.EXPIRED

    def test_exactly_at_expiry_still_valid(self, registry, clock):
        approval_id = _create(registry)
        clock.advance(3600)
        assert registry.resolve(approval_id, Decision.APPROVE).state is ApprovalState.APPROVED


class TestConsume:

    def test_consume_once(self, registry, clock):
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.APPROVE)

        consumed = registry.consume(approval_id)
        assert consumed.state is ApprovalState.CONSUMED
        assert consumed.consumed_at == clock.now

        with pytest.raises(ApprovalStateMismatch):
            registry.consume(approval_id)

    def test_consume_pending_fails(self, registry):
        approval_id = _create(registry)
        with pytest.raises(ApprovalStateMismatch) as exc:
            registry.consume(approval_id)
        assert exc.value.state is ApprovalState.PENDING
        assert registry.get(approval_id).state is ApprovalState.PENDING

    def test_consume_denied_fails(self, registry):
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.DENY)
        with pytest.raises(ApprovalStateMismatch) as exc:
            registry.consume(approval_id)
        assert exc.value.code is ErrorCode.STATE_MISMATCH

    def test_approved_but_stale_cannot_be_consumed(self, registry, clock):
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.APPROVE)
        clock.advance(7200)
        with pytest.raises(ApprovalExpired):
            registry.consume(approval_id)
        assert registry.get(approval_id).state is ApprovalState.EXPIRED

    def test_concurrent_consume_has_one_winner(self, registry):
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.APPROVE)
        barrier = threading.Barrier(50)

        def attempt():
            barrier.wait()
            try:
                registry.consume(approval_id)
                return True
            except ApprovalStateMismatch:
                return False

        with ThreadPoolExecutor(max_workers=50) as pool:
            results = list(pool.map(lambda _: attempt(), range(50)))

        assert results.count(True) == 1
        assert registry.get(approval_id).state is ApprovalState.CONSUMED

    def test_concurrent_resolve_has_one_winner(self, registry):
        approval_id = _create(registry)
        barrier = threading.Barrier(20)

        def attempt(i):
            barrier.wait()
            try:
                registry.resolve(approval_id, Decision.APPROVE if i % 2 else Decision.DENY)
                return True
            except ApprovalAlreadyResolved:
                return False

        with ThreadPoolExecutor(max_workers=20) as pool:
            results = list(pool.map(attempt, range(20)))

        assert results.count(True) == 1


class TestExpiryMonotonic:

    @pytest.mark.parametrize("calls", [
        ("resolve", "consume", "resolve"),
        ("consume", "resolve", "consume"),
        ("get", "resolve", "consume"),
    ])
    def test_nothing_succeeds_after_expiry(self, registry, clock, calls):
        approval_id = _create(registry)
        clock.advance(3601)
        for call in calls:
            if call == "get":
                assert registry.get(approval_id).state is ApprovalState.EXPIRED
                continue
            with pytest.raises(ApprovalExpired):
                if call == "resolve":
                    registry.resolve(approval_id, Decision.APPROVE)
                else:
                    registry.consume(approval_id)
            assert registry.get(approval_id).state is ApprovalState.EXPIRED

    def test_terminal_states_do_not_expire(self, registry, clock):
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.DENY)
        clock.advance(7200)
        assert registry.get(approval_id).state is ApprovalState.DENIED


class TestListingAndCleanup:

    def test_list_pending_excludes_lapsed(self, registry, clock):
        old = _create(registry)
        clock.advance(1800)
        fresh = _create(registry)
        clock.advance(1801)

        pending = [r.id for r in registry.list_pending()]
        assert pending == [fresh]
        assert registry.get(old).state is ApprovalState.EXPIRED

    def test_cleanup_returns_newly_expired_once(self, registry, clock):
        approval_id = _create(registry)
        clock.advance(3601)
        assert [r.id for r in registry.cleanup_expired_requests()] == [approval_id]
        assert registry.cleanup_expired_requests() == []

    def test_cleanup_drops_closed_requests_past_retention(self, clock):
        registry = ApprovalRegistry(ttl_seconds=3600, clock=clock, retention_seconds=600)
        denied = _create(registry)
        registry.resolve(denied, Decision.DENY)
        consumed = _create(registry)
        registry.resolve(consumed, Decision.APPROVE)
        registry.consume(consumed)
        live = _create(registry)

        clock.advance(601)
        registry.cleanup_expired_requests()

        assert registry.get(live).state is ApprovalState.PENDING
        for approval_id in (denied, consumed):
            with pytest.raises(ApprovalNotFound):
                registry.get(approval_id)
        with pytest.raises(ApprovalNotFound):
            registry.consume(consumed)

    def test_closed_requests_kept_within_retention(self, clock):
        registry = ApprovalRegistry(ttl_seconds=3600, clock=clock, retention_seconds=600)
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.DENY)
        clock.advance(600)
        registry.cleanup_expired_requests()
        assert registry.get(approval_id).state is ApprovalState.DENIED

    def test_expired_requests_age_from_expiry(self, clock):
        registry = ApprovalRegistry(ttl_seconds=3600, clock=clock, retention_seconds=600)
        approval_id = _create(registry)
        clock.advance(3601)
        assert [r.id for r in registry.cleanup_expired_requests()] == [approval_id]
        assert registry.get(approval_id).state is ApprovalState.EXPIRED

        clock.advance(600)
        registry.cleanup_expired_requests()
        with pytest.raises(ApprovalNotFound):
            registry.resolve(approval_id, Decision.APPROVE)


class TestEventSink:

    def test_transitions_are_emitted(self, clock):
        sink = Mock()
        registry = ApprovalRegistry(ttl_seconds=60, clock=clock, event_sink=sink)
        approval_id = _create(registry)
        registry.resolve(approval_id, Decision.APPROVE)
        registry.consume(approval_id)

        events = [call.args[0] for call in sink.call_args_list]
        assert events == ["approval_created", "approval_granted", "approval_consumed"]
        assert sink.call_args_list[-1].args[1]["state"] == "consumed"

    def test_sink_failure_does_not_break_transition(self, clock):
        sink = Mock(side_effect=RuntimeError("disk full"))
        registry = ApprovalRegistry(ttl_seconds=60, clock=clock, event_sink=sink)
        approval_id = _create(registry)
        assert registry.resolve(approval_id, Decision.DENY).state is ApprovalState.DENIED
