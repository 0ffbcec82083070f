"""
Data access for the audit sink: finalized AuditLogEntry rows and the
episodic event stream fed by the approval registry.
"""

import json
import sqlite3
from typing import Any, Dict, List, Optional

from .audit import AuditLogEntry
from .db import get_db, init_db
from ..util.logging import logger, sanitize_payload


def add_event(actor: str, action: str, payload: str, session_id: Optional[str] = None,
              db_path: Optional[str] = None) -> bool:
    """Add an episodic event."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO episodic (session_id, actor, action, payload) VALUES (?, ?, ?, ?)",
                (session_id, actor, action, payload)
            )
            conn.commit()
            return True
    except sqlite3.Error as e:
        logger.error(f"Failed to add event '{action}': {e}")
        return False


def list_events(limit: int = 100, action: Optional[str] = None,
                db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """List recent events, newest first."""
    if limit <= 0:
        return []

    with get_db(db_path) as conn:
        cursor = conn.cursor()
        if action:
            cursor.execute(
                "SELECT id, ts, session_id, actor, action, payload FROM episodic "
                "WHERE action = ? ORDER BY id DESC LIMIT ?",
                (action, limit)
            )
        else:
            cursor.execute(
                "SELECT id, ts, session_id, actor, action, payload FROM episodic ORDER BY id DESC LIMIT ?",
                (limit,)
            )
        rows = cursor.fetchall()

    return [
        {"id": row[0], "ts": row[1], "session_id": row[2], "actor": row[3],
         "action": row[4], "payload": row[5]}
        for row in rows
    ]


def approval_event_sink(db_path: Optional[str] = None):
    """Callable suitable for ApprovalRegistry(event_sink=...)."""
    def _sink(event: str, request: Dict[str, Any]):
        payload = json.dumps(sanitize_payload(request))
        add_event(actor="approval_registry", action=event, payload=payload, db_path=db_path)
    return _sink


class SQLiteAuditSink:
    """Write-only (from the pipeline's view) store of finalized audit entries."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        init_db(db_path)

    def write(self, entry: AuditLogEntry):
        data = entry.to_dict()
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT OR REPLACE INTO agent_log
                    (log_id, task, session_id, status, action, approval_id, error_code,
                     created_at, finalized_at, steps)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                data["log_id"], data["task"], data["session_id"], data["status"], data["action"],
                data["approval_id"], data["error_code"], data["created_at"], data["finalized_at"],
                json.dumps(data["steps"]),
            ))
            conn.commit()

    def get(self, log_id: str) -> Optional[AuditLogEntry]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM agent_log WHERE log_id = ?", (log_id,))
            row = cursor.fetchone()
        return _row_to_entry(row) if row else None

    def list_logs(self, limit: int = 50, status: Optional[str] = None) -> List[AuditLogEntry]:
        if limit <= 0:
            return []
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            if status:
                cursor.execute(
                    f"SELECT {_COLUMNS} FROM agent_log WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                    (status, limit)
                )
            else:
                cursor.execute(
                    f"SELECT {_COLUMNS} FROM agent_log ORDER BY created_at DESC LIMIT ?", (limit,)
                )
            rows = cursor.fetchall()
        return [_row_to_entry(row) for row in rows]


_COLUMNS = ("log_id, task, session_id, status, action, approval_id, error_code, "
            "created_at, finalized_at, steps")


def _row_to_entry(row) -> AuditLogEntry:
    (log_id, task, session_id, status, action, approval_id, error_code,
     created_at, finalized_at, steps) = row
    return AuditLogEntry.from_dict({
        "log_id": log_id,
        "task": task,
        "session_id": session_id,
        "status": status,
        "action": action,
        "approval_id": approval_id,
        "error_code": error_code,
        "created_at": created_at,
        "finalized_at": finalized_at,
        "steps": json.loads(steps),
    })
