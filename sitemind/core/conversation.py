"""
Conversation Context Manager - bounded short-term memory for the model.

build_context() is a pure function over a session's history. The manager
additionally keeps a bounded per-session history so callers that do not
send their own history still get context.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional

from .config import CONTEXT_WINDOW_TURNS, SESSION_HISTORY_LIMIT

_ROLE_ALIASES = {"agent": "assistant", "ai": "assistant", "admin": "user"}


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str
    status: Optional[str] = None

    @classmethod
    def coerce(cls, turn: Any) -> "ConversationTurn":
        """Accept a ConversationTurn, a mapping, a pydantic model or a (role, content) pair."""
        if isinstance(turn, cls):
            return turn
        if hasattr(turn, "model_dump"):
            turn = turn.model_dump()
        if isinstance(turn, dict):
            role, content, status = turn.get("role", ""), turn.get("content", ""), turn.get("status")
        else:
            role, content = turn[0], turn[1]
            status = turn[2] if len(turn) > 2 else None
        role = str(role).strip().lower()
        return cls(role=_ROLE_ALIASES.get(role, role), content=str(content), status=status)

    @property
    def is_noise(self) -> bool:
        return self.role == "system" or self.status == "error"


def build_context(history: Iterable[Any], window: int = CONTEXT_WINDOW_TURNS) -> List[ConversationTurn]:
    """
    Last `window` turns of history, minus system and error turns.

    The window is applied before filtering, so filtered turns still count
    against it. Relative order is preserved.
    """
    if window <= 0:
        return []
    turns = [ConversationTurn.coerce(t) for t in history]
    return [t for t in turns[-window:] if not t.is_noise]


class ConversationContextManager:
    """Per-session bounded history plus the context window over it."""

    def __init__(self, window: int = CONTEXT_WINDOW_TURNS, history_limit: int = SESSION_HISTORY_LIMIT):
        self.window = window
        self.history_limit = history_limit
        self._sessions: Dict[str, Deque[ConversationTurn]] = {}
        self._lock = threading.Lock()

    def build(self, session_id: Optional[str], history: Optional[Iterable[Any]] = None) -> List[ConversationTurn]:
        """Context for the next command; explicit history (even empty) wins over the recorded one."""
        if history is not None:
            return build_context(history, self.window)
        return build_context(self.history(session_id), self.window)

    def record(self, session_id: Optional[str], role: str, content: str, status: Optional[str] = None):
        if not session_id:
            return
        turn = ConversationTurn.coerce({"role": role, "content": content, "status": status})
        with self._lock:
            turns = self._sessions.setdefault(session_id, deque(maxlen=self.history_limit))
            turns.append(turn)

    def history(self, session_id: Optional[str]) -> List[ConversationTurn]:
        if not session_id:
            return []
        with self._lock:
            return list(self._sessions.get(session_id, ()))

    def clear(self, session_id: str):
        with self._lock:
            self._sessions.pop(session_id, None)
