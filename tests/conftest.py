"""
Shared fixtures for the agent pipeline tests.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from sitemind.agents.agent import LanguageModel
from sitemind.agents.orchestrator import CommandOrchestrator
from sitemind.core.approval import ApprovalRegistry
from sitemind.core.audit import AuditLogWriter
from sitemind.core.conversation import ConversationContextManager
from sitemind.core.store import InMemoryStore


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedModel(LanguageModel):
    """Returns queued replies in order; exceptions in the queue are raised."""

    def __init__(self, *replies):
        super().__init__("scripted", "scripted-model")
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system_prompt, context, command):
        self.calls.append({"system_prompt": system_prompt, "context": list(context), "command": command})
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


def envelope(status="success", action="getTicket", message="ok", **extra):
    """Model reply dict with the required fields filled in."""
    body = {
        "status": status,
        "action": action,
        "message": message,
        "logs": [{"step": "Parsed command", "status": "success", "timestamp": "2025-01-01T12:00:00Z"}],
    }
    body.update(extra)
    return body


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


@pytest.fixture
def registry(clock):
    return ApprovalRegistry(ttl_seconds=3600, clock=clock)


@pytest.fixture
def audit(clock):
    return AuditLogWriter(clock=clock)


@pytest.fixture
def make_orchestrator(store, registry, audit):
    """Build an orchestrator around a scripted model."""
    def _make(*replies, **kwargs):
        model = kwargs.pop("model", None) or ScriptedModel(*replies)
        return CommandOrchestrator(
            model=model,
            operations=kwargs.pop("operations", store),
            registry=registry,
            audit=audit,
            context=ConversationContextManager(window=4, history_limit=20),
            **kwargs
        )
    return _make
