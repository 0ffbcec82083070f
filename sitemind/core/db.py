"""
SQLite storage for finalized audit logs and approval events.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # One row per finalized command; steps are stored as a JSON array
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS agent_log (
                log_id TEXT PRIMARY KEY,
                task TEXT NOT NULL,
                session_id TEXT,
                status TEXT NOT NULL,
                action TEXT,
                approval_id TEXT,
                error_code TEXT,
                created_at TEXT NOT NULL,
                finalized_at TEXT,
                steps TEXT NOT NULL
            )
        ''')

        # Approval transitions and other pipeline events
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS episodic (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                session_id TEXT,
                actor TEXT,
                action TEXT,
                payload TEXT
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_agent_log_created ON agent_log(created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_episodic_ts ON episodic(ts DESC)')

        conn.commit()


def health_check(db_path: Optional[str] = None) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in ('agent_log', 'episodic'))
    except sqlite3.Error:
        return False
