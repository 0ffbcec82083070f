"""
Audit Log Writer - ordered, append-only step records for every command.

An entry is created PENDING, grows only by appended steps and receives
exactly one terminal status. Finalized entries are handed to the sink
(SQLite by default). Only entries the sink has accepted may leave the
bounded in-memory window; without a sink nothing is ever dropped.
"""

import copy
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import AUDIT_MEMORY_LIMIT
from .schema import ErrorCode, PipelineError
from ..util.logging import logger


class AuditStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AuditLogError(PipelineError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, log_id: str, message: str):
        super().__init__(message)
        self.log_id = log_id


class AuditLogNotFound(AuditLogError):
    def __init__(self, log_id: str, reason: str = "not started"):
        super().__init__(log_id, f"Audit log {log_id} {reason}")


class AuditLogAlreadyFinalized(AuditLogError):
    code = ErrorCode.ALREADY_RESOLVED

    def __init__(self, log_id: str, status: AuditStatus):
        super().__init__(log_id, f"Audit log {log_id} already finalized as {status.value}")
        self.status = status


@dataclass(frozen=True)
class AuditStep:
    step: str
    status: str  # success, failed, pending
    timestamp: datetime
    details: Optional[str] = None


@dataclass
class AuditLogEntry:
    log_id: str
    task: str
    created_at: datetime
    session_id: Optional[str] = None
    status: AuditStatus = AuditStatus.PENDING
    action: Optional[str] = None
    approval_id: Optional[str] = None
    error_code: Optional[str] = None
    finalized_at: Optional[datetime] = None
    steps: List[AuditStep] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return self.status is not AuditStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["finalized_at"] = self.finalized_at.isoformat() if self.finalized_at else None
        data["steps"] = [
            {**asdict(s), "timestamp": s.timestamp.isoformat()} for s in self.steps
        ]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        data = dict(data)
        data["status"] = AuditStatus(data["status"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        if data.get("finalized_at"):
            data["finalized_at"] = datetime.fromisoformat(data["finalized_at"])
        data["steps"] = [
            AuditStep(**{**s, "timestamp": datetime.fromisoformat(s["timestamp"])})
            for s in data.get("steps", [])
        ]
        return cls(**data)


class AuditLogWriter:
    """Owns AuditLogEntry lifecycles. Safe to call from several threads."""

    def __init__(self, sink=None, clock: Optional[Callable[[], datetime]] = None,
                 memory_limit: int = AUDIT_MEMORY_LIMIT):
        self.sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.memory_limit = memory_limit
        self._open: Dict[str, AuditLogEntry] = {}
        self._finalized: "OrderedDict[str, AuditLogEntry]" = OrderedDict()
        # every finalized id ever seen; eviction from _finalized never forgets one
        self._final_status: Dict[str, AuditStatus] = {}
        # finalized ids the sink has accepted; only these may leave memory
        self._persisted = set()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def start(self, task: str, session_id: Optional[str] = None) -> str:
        log_id = f"log_{uuid.uuid4().hex}"
        entry = AuditLogEntry(log_id=log_id, task=task, session_id=session_id, created_at=self._clock())
        with self._lock:
            self._open[log_id] = entry
        return log_id

    def append_step(self, log_id: str, step: str, status: str = "success",
                    timestamp: Optional[datetime] = None, details: Optional[str] = None) -> AuditStep:
        record = AuditStep(step=step, status=status, timestamp=timestamp or self._clock(), details=details)
        with self._lock:
            entry = self._open.get(log_id)
            if entry is None:
                reason = "already finalized" if log_id in self._final_status else "not started"
                raise AuditLogNotFound(log_id, reason)
            entry.steps.append(record)
        return record

    def annotate(self, log_id: str, action: Optional[str] = None, approval_id: Optional[str] = None):
        """Attach the classified action / approval id to an open entry."""
        with self._lock:
            entry = self._open.get(log_id)
            if entry is None:
                raise AuditLogNotFound(log_id)
            if action is not None:
                entry.action = action
            if approval_id is not None:
                entry.approval_id = approval_id

    def finalize(self, log_id: str, status: AuditStatus, error_code: Optional[str] = None) -> AuditLogEntry:
        status = AuditStatus(status)
        if status is AuditStatus.PENDING:
            raise ValueError("PENDING is not a terminal status")

        with self._lock:
            entry = self._open.pop(log_id, None)
            if entry is None:
                done = self._final_status.get(log_id)
                if done is not None:
                    raise AuditLogAlreadyFinalized(log_id, done)
                raise AuditLogNotFound(log_id)
            entry.status = status
            entry.error_code = error_code
            entry.finalized_at = self._clock()
            self._finalized[log_id] = entry
            self._final_status[log_id] = status
            snapshot = copy.deepcopy(entry)

        logger.log_audit_finalized(log_id, status.value, len(snapshot.steps))
        if self.sink is not None:
            try:
                self.sink.write(snapshot)
            except Exception as e:
                logger.error(f"Audit sink write failed for {log_id}: {e}")
            else:
                with self._lock:
                    self._persisted.add(log_id)
                    self._evict_persisted()
        return snapshot

    def _evict_persisted(self):
        # caller holds self._lock; entries the sink does not hold stay in memory
        for log_id in list(self._finalized):
            if len(self._finalized) <= self.memory_limit:
                break
            if log_id in self._persisted:
                del self._finalized[log_id]
                self._persisted.discard(log_id)

    def get(self, log_id: str) -> AuditLogEntry:
        with self._lock:
            entry = self._open.get(log_id) or self._finalized.get(log_id)
            if entry is not None:
                return copy.deepcopy(entry)
        if self.sink is not None:
            stored = self.sink.get(log_id)
            if stored is not None:
                return stored
        raise AuditLogNotFound(log_id)

    def is_pending(self, log_id: str) -> bool:
        with self._lock:
            return log_id in self._open

    def list_entries(self, limit: int = 50, status: Optional[AuditStatus] = None) -> List[AuditLogEntry]:
        """Most recent entries first, merged from memory and the sink."""
        status = AuditStatus(status) if status is not None else None
        with self._lock:
            entries = {e.log_id: copy.deepcopy(e) for e in self._open.values()}
            entries.update({k: copy.deepcopy(e) for k, e in self._finalized.items()})
        if self.sink is not None:
            for stored in self.sink.list_logs(limit=limit, status=status.value if status else None):
                entries.setdefault(stored.log_id, stored)

        selected = [e for e in entries.values() if status is None or e.status is status]
        selected.sort(key=lambda e: e.created_at, reverse=True)
        return selected[:limit]
