"""
Approval Registry - human sign-off for approval-gated agent actions.

State machine per request:

    pending --approve--> approved --consume--> consumed
    pending --deny-----> denied
    pending/approved --(now > expires_at)--> expired

Expiry is evaluated lazily on every read. All transitions happen under one
lock, so resolve/consume are compare-and-swap on `state`: of any number of
concurrent consume calls for one approved id, exactly one succeeds.

Denied, consumed and expired requests are dropped by
cleanup_expired_requests() once they are older than the retention window.
A dropped id is NotFound, so it can never execute.
"""

import copy
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import APPROVAL_RETENTION_SEC, APPROVAL_TIMEOUT_SEC
from .schema import ErrorCode, PipelineError
from ..util.logging import logger


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class Decision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


class ApprovalError(PipelineError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, approval_id: str, message: str):
        super().__init__(message)
        self.approval_id = approval_id


class ApprovalNotFound(ApprovalError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, approval_id: str):
        super().__init__(approval_id, f"Approval request {approval_id} not found")


class ApprovalAlreadyResolved(ApprovalError):
    code = ErrorCode.ALREADY_RESOLVED

    def __init__(self, approval_id: str, state: "ApprovalState"):
        super().__init__(approval_id, f"Approval request {approval_id} is already {state.value}")
        self.state = state


class ApprovalExpired(ApprovalError):
    code = ErrorCode.EXPIRED

    def __init__(self, approval_id: str):
        super().__init__(approval_id, f"Approval request {approval_id} has expired")


class ApprovalStateMismatch(ApprovalError):
    code = ErrorCode.STATE_MISMATCH

    def __init__(self, approval_id: str, state: "ApprovalState", expected: "ApprovalState"):
        super().__init__(approval_id,
                         f"Approval request {approval_id} is {state.value}, expected {expected.value}")
        self.state = state
        self.expected = expected


@dataclass
class ApprovalRequest:
    id: str
    action: str
    params: Dict[str, Any]
    reason: str
    created_at: datetime
    expires_at: datetime
    state: ApprovalState = ApprovalState.PENDING
    details: Dict[str, Any] = field(default_factory=dict)
    requester: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None

    def is_lapsed(self, now: datetime) -> bool:
        return now > self.expires_at

    def closed_at(self) -> Optional[datetime]:
        """When the request reached a terminal state, or None while it is live."""
        if self.state is ApprovalState.CONSUMED:
            return self.consumed_at
        if self.state is ApprovalState.DENIED:
            return self.decided_at
        if self.state is ApprovalState.EXPIRED:
            return self.expires_at
        return None

    def to_dict(self) -> Dict:
        """Convert to dictionary for storage."""
        data = asdict(self)
        data['state'] = self.state.value
        for key in ('created_at', 'expires_at', 'decided_at', 'consumed_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'ApprovalRequest':
        """Create from dictionary (for loading from storage)."""
        data = dict(data)
        data['state'] = ApprovalState(data['state'])
        for key in ('created_at', 'expires_at', 'decided_at', 'consumed_at'):
            if data.get(key) is not None:
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


class ApprovalRegistry:
    """
    Owns every ApprovalRequest and all of its state transitions.

    Callers only ever receive snapshot copies; mutating one has no effect on
    the registry.
    """

    def __init__(self, ttl_seconds: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 event_sink: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 retention_seconds: Optional[int] = None):
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else APPROVAL_TIMEOUT_SEC)
        self.retention = timedelta(
            seconds=retention_seconds if retention_seconds is not None else APPROVAL_RETENTION_SEC)
        self._clock = clock or utcnow
        self._event_sink = event_sink
        self._requests: Dict[str, ApprovalRequest] = {}
        self._lock = threading.Lock()

    def create(self, action: str, params: Dict[str, Any], reason: str,
               details: Optional[Dict[str, Any]] = None, requester: Optional[str] = None) -> str:
        """Register a new pending request and return its id."""
        approval_id = f"apr_{uuid.uuid4().hex}"
        created_at = self._clock()
        request = ApprovalRequest(
            id=approval_id,
            action=action,
            params=copy.deepcopy(params),
            reason=reason,
            created_at=created_at,
            expires_at=created_at + self.ttl,
            details=copy.deepcopy(details or {}),
            requester=requester,
        )

        with self._lock:
            self._requests[approval_id] = request

        logger.log_approval_request(approval_id, action, request.expires_at.isoformat())
        self._emit('approval_created', request)
        return approval_id

    def get(self, approval_id: str) -> ApprovalRequest:
        """Snapshot of one request, with lazy expiry applied."""
        with self._lock:
            request = self._lookup(approval_id)
            expired = self._expire_if_lapsed(request, self._clock())
            snapshot = copy.deepcopy(request)
        if expired:
            self._on_expired(snapshot)
        return snapshot

    def resolve(self, approval_id: str, decision: Decision, approver: Optional[str] = None) -> ApprovalRequest:
        """Approve or deny a pending request."""
        decision = Decision(decision)
        with self._lock:
            request = self._lookup(approval_id)
            now = self._clock()
            expired_now = self._expire_if_lapsed(request, now)
            if request.state is not ApprovalState.EXPIRED:
                if request.state is not ApprovalState.PENDING:
                    raise ApprovalAlreadyResolved(approval_id, request.state)
                request.state = (ApprovalState.APPROVED if decision is Decision.APPROVE
                                 else ApprovalState.DENIED)
                request.decided_by = approver
                request.decided_at = now
            snapshot = copy.deepcopy(request)

        if snapshot.state is ApprovalState.EXPIRED:
            if expired_now:
                self._on_expired(snapshot)
            raise ApprovalExpired(approval_id)

        logger.log_approval_decision(approval_id, snapshot.state.value, approver)
        self._emit('approval_granted' if decision is Decision.APPROVE else 'approval_denied', snapshot)
        return snapshot

    def consume(self, approval_id: str) -> ApprovalRequest:
        """Claim the single execution slot of an approved request."""
        with self._lock:
            request = self._lookup(approval_id)
            now = self._clock()
            expired_now = self._expire_if_lapsed(request, now)
            if request.state is not ApprovalState.EXPIRED:
                if request.state is not ApprovalState.APPROVED:
                    raise ApprovalStateMismatch(approval_id, request.state, ApprovalState.APPROVED)
                request.state = ApprovalState.CONSUMED
                request.consumed_at = now
            snapshot = copy.deepcopy(request)

        if snapshot.state is ApprovalState.EXPIRED:
            if expired_now:
                self._on_expired(snapshot)
            raise ApprovalExpired(approval_id)

        logger.log_approval_consumed(approval_id, snapshot.action)
        self._emit('approval_consumed', snapshot)
        return snapshot

    def list_pending(self) -> List[ApprovalRequest]:
        """Live pending requests, oldest first."""
        return [r for r in self._snapshot_all() if r.state is ApprovalState.PENDING]

    def cleanup_expired_requests(self) -> List[ApprovalRequest]:
        """
        Expire every lapsed request and drop terminal ones past retention.

        Returns the requests expired by this call.
        """
        expired = self._snapshot_all(collect_expired=True)
        self._prune_closed()
        return expired

    def _prune_closed(self) -> int:
        with self._lock:
            cutoff = self._clock() - self.retention
            stale = [approval_id for approval_id, request in self._requests.items()
                     if request.closed_at() is not None and request.closed_at() < cutoff]
            for approval_id in stale:
                del self._requests[approval_id]
        if stale:
            logger.info(f"Pruned {len(stale)} closed approval requests")
        return len(stale)

    def _snapshot_all(self, collect_expired: bool = False) -> List[ApprovalRequest]:
        expired = []
        snapshots = []
        with self._lock:
            now = self._clock()
            for request in self._requests.values():
                if self._expire_if_lapsed(request, now):
                    expired.append(copy.deepcopy(request))
                snapshots.append(copy.deepcopy(request))
        for request in expired:
            self._on_expired(request)
        return expired if collect_expired else snapshots

    def _lookup(self, approval_id: str) -> ApprovalRequest:
        # caller holds self._lock
        request = self._requests.get(approval_id)
        if request is None:
            raise ApprovalNotFound(approval_id)
        return request

    @staticmethod
    def _expire_if_lapsed(request: ApprovalRequest, now: datetime) -> bool:
        # caller holds self._lock; True only when this call made the transition
        if request.state in (ApprovalState.PENDING, ApprovalState.APPROVED) and request.is_lapsed(now):
            request.state = ApprovalState.EXPIRED
            return True
        return False

    def _on_expired(self, snapshot: ApprovalRequest):
        logger.log_approval_expired(snapshot.id)
        self._emit('approval_expired', snapshot)

    def _emit(self, event: str, request: ApprovalRequest):
        if self._event_sink is None:
            return
        try:
            self._event_sink(event, request.to_dict())
        except Exception as e:
            logger.error(f"Failed to record approval event {event} for {request.id}: {e}")
