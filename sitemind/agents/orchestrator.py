"""
Command Orchestrator - what happens when an admin submits one command.

    context -> language model -> contract validator -> catalog lookup
        direct action         -> operation router -> SUCCESS
        approval-required     -> approval registry -> PENDING (until decided)
        error / any failure   -> error envelope    -> FAILED

The model only classifies. Authority to execute comes from the Action
Catalog's declared sensitivity, and the returned data always comes from the
business collaborator. Every path ends in an AgentResponseEnvelope; every
audit entry is finalized exactly once.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from .agent import LanguageModel, UpstreamError
from .prompt import build_system_prompt
from .tools import OperationRouter, describe_result
from .validator import MalformedResponse, parse_envelope
from ..api.schemas import ActionStep, AgentError, AgentResponseEnvelope, ApprovalInfo
from ..core.approval import (
    ApprovalError, ApprovalExpired, ApprovalNotFound, ApprovalRegistry, ApprovalRequest, ApprovalState, Decision,
)
from ..core.audit import AuditLogWriter, AuditStatus
from ..core.catalog import DEFAULT_CATALOG, ActionCatalog, ActionSpec
from ..core.config import LLM_TIMEOUT_SEC
from ..core.conversation import ConversationContextManager
from ..core.operations import BusinessOperations
from ..core.schema import ErrorCode, PipelineError
from ..util.logging import logger


@dataclass
class CommandResult:
    envelope: AgentResponseEnvelope
    log_id: str


@dataclass
class DecisionResult:
    approval: ApprovalRequest
    envelope: Optional[AgentResponseEnvelope] = None
    log_id: Optional[str] = None


class CommandOrchestrator:
    """
    Single source of truth for command execution.

    At most one command per session is in flight; a second one for the same
    session is rejected with Busy. Sessions never block each other.
    """

    def __init__(self, model: LanguageModel, operations: Optional[BusinessOperations] = None,
                 router: Optional[OperationRouter] = None, catalog: ActionCatalog = DEFAULT_CATALOG,
                 registry: Optional[ApprovalRegistry] = None, audit: Optional[AuditLogWriter] = None,
                 context: Optional[ConversationContextManager] = None,
                 llm_timeout: float = LLM_TIMEOUT_SEC, system_prompt: Optional[str] = None):
        if router is None:
            if operations is None:
                raise ValueError("Either operations or router is required")
            router = OperationRouter(operations, catalog)
        self.model = model
        self.router = router
        self.catalog = catalog
        self.registry = registry or ApprovalRegistry()
        self.audit = audit or AuditLogWriter()
        self.context = context or ConversationContextManager()
        self.llm_timeout = llm_timeout
        self.system_prompt = system_prompt or build_system_prompt(catalog)

        self._in_flight: Set[str] = set()
        self._sessions_lock = threading.Lock()
        # approval id -> audit log id of the command that requested it
        self._approval_logs: Dict[str, str] = {}
        self._approval_lock = threading.Lock()

    # Session serialization

    def _claim(self, session_key: str) -> bool:
        with self._sessions_lock:
            if session_key in self._in_flight:
                return False
            self._in_flight.add(session_key)
            return True

    def _release(self, session_key: str):
        with self._sessions_lock:
            self._in_flight.discard(session_key)

    def is_busy(self, session_id: str) -> bool:
        with self._sessions_lock:
            return session_id in self._in_flight

    @property
    def sessions_in_flight(self) -> int:
        with self._sessions_lock:
            return len(self._in_flight)

    # Command entry point

    async def execute_command(self, command: str, history: Optional[Iterable[Any]] = None,
                              session_id: Optional[str] = None) -> CommandResult:
        """
        Run one admin command end to end.

        Args:
            command: Raw admin text
            history: Prior (role, content[, status]) turns; the session's
                recorded history is used when omitted
            session_id: Serialization key; commands without one never collide

        Returns:
            CommandResult with the envelope and the audit log id
        """
        log_id = self.audit.start(command, session_id)
        session_key = session_id or log_id
        logger.log_command_started(log_id, session_id or "-", command)

        if not self._claim(session_key):
            logger.log_command_rejected(session_key, "command already in flight")
            envelope = self._fail(log_id, None, ErrorCode.BUSY,
                                  "Another command is still running for this session",
                                  step="Rejected: session busy")
            return CommandResult(envelope, log_id)

        try:
            envelope = await self._run(log_id, command, history, session_id)
        except asyncio.CancelledError:
            self._abandon(log_id)
            raise
        finally:
            self._release(session_key)

        self._remember(session_id, command, envelope)
        return CommandResult(envelope, log_id)

    async def _run(self, log_id: str, command: str, history, session_id: Optional[str]) -> AgentResponseEnvelope:
        action = None
        try:
            context = self.context.build(session_id, history)
            self._step(log_id, f"Built conversation context ({len(context)} turns)")

            raw = await self._call_model(context, command)
            self._step(log_id, "Received model response")

            try:
                parsed = parse_envelope(raw, self.catalog)
            except MalformedResponse as e:
                logger.log_validation_rejected(e.reason, len(raw) if isinstance(raw, str) else 0)
                raise

            action = parsed.action
            self.audit.annotate(log_id, action=action)
            self._step(log_id, f"Classified command as {action} ({parsed.status})")

            if parsed.status == "error":
                self._step(log_id, "Model reported an error", "failed", details=parsed.error.details)
                self._finalize(log_id, AuditStatus.FAILED, parsed.error.code)
                return parsed

            spec = self.catalog.get(action)
            if spec.requires_approval:
                return self._request_approval(log_id, spec, parsed, session_id)

            if parsed.status == "pending_approval":
                self._step(log_id, f"{action} does not require approval; executing directly")
            return await self._execute(log_id, spec, parsed.params, parsed.message)

        except PipelineError as e:
            return self._fail(log_id, action, e.code, e.details, suggestion=getattr(e, "suggestion", None))
        except Exception:
            logger.exception(f"Unexpected failure while processing command {log_id}")
            return self._fail(log_id, action, ErrorCode.INTERNAL_ERROR, "Unexpected internal failure")

    async def _call_model(self, context, command: str) -> str:
        try:
            return await asyncio.wait_for(
                self.model.complete(self.system_prompt, context, command), timeout=self.llm_timeout
            )
        except asyncio.TimeoutError:
            logger.log_llm_call(self.model.model_name, self.llm_timeout * 1000, "timeout")
            raise UpstreamError(f"Language model did not answer within {self.llm_timeout}s")

    def _request_approval(self, log_id: str, spec: ActionSpec, parsed: AgentResponseEnvelope,
                          session_id: Optional[str]) -> AgentResponseEnvelope:
        params = parsed.params.model_dump(mode="json", by_alias=True)
        if parsed.approval is not None:
            reason, details = parsed.approval.reason, parsed.approval.details
        else:
            reason, details = f"{spec.name} requires administrator approval", {}

        approval_id = self.registry.create(spec.name, params, reason, details=details, requester=session_id)
        request = self.registry.get(approval_id)
        with self._approval_lock:
            self._approval_logs[approval_id] = log_id
        self.audit.annotate(log_id, approval_id=approval_id)
        self._step(log_id, f"Approval {approval_id} requested for {spec.name}", "pending")
        logger.log_command_finished(log_id, "PENDING", spec.name)

        return AgentResponseEnvelope(
            status="pending_approval",
            action=spec.name,
            message=parsed.message,
            params=parsed.params,
            approval=ApprovalInfo(approval_id=approval_id, reason=reason,
                                  expires_at=request.expires_at, details=details),
            logs=self._logs(log_id),
        )

    async def _execute(self, log_id: str, spec: ActionSpec, params: BaseModel, message: str,
                       approval_id: Optional[str] = None) -> AgentResponseEnvelope:
        data = await self.router.dispatch(spec, params, approval_id=approval_id)
        self._step(log_id, f"Executed {spec.name}", details=describe_result(data))
        envelope = AgentResponseEnvelope(
            status="success",
            action=spec.name,
            message=message,
            params=params,
            data=data,
            logs=self._logs(log_id),
        )
        self._finalize(log_id, AuditStatus.SUCCESS)
        return envelope

    # Decision entry point

    async def decide(self, approval_id: str, decision: Decision, approver: Optional[str] = None) -> DecisionResult:
        """
        Apply an admin decision; on approve, consume and execute exactly once.

        Registry failures (NotFound, AlreadyResolved, Expired) are raised to
        the caller; execution failures come back as an error envelope.
        """
        decision = Decision(decision)
        try:
            request = self.registry.resolve(approval_id, decision, approver)
        except ApprovalExpired:
            self._close_expired(approval_id)
            raise

        log_id = self._take_approval_log(approval_id)
        if decision is Decision.DENY:
            if log_id is not None:
                self._step(log_id, f"Approval {approval_id} denied by {approver or 'admin'}", "failed")
                self._finalize(log_id, AuditStatus.FAILED)
            return DecisionResult(approval=request, log_id=log_id)

        if log_id is None:
            log_id = self.audit.start(f"Execute approved {request.action}")
            self.audit.annotate(log_id, action=request.action, approval_id=approval_id)
        self._step(log_id, f"Approval {approval_id} granted by {approver or 'admin'}")

        envelope = await self._execute_approved(log_id, request)
        return DecisionResult(approval=self.registry.get(approval_id), envelope=envelope, log_id=log_id)

    async def _execute_approved(self, log_id: str, request: ApprovalRequest) -> AgentResponseEnvelope:
        action = request.action
        try:
            spec = self.catalog.get(action)
            consumed = self.registry.consume(request.id)
            self._step(log_id, f"Approval {request.id} consumed")
            params = spec.params_model.model_validate(consumed.params)
            return await self._execute(log_id, spec, params, f"{action} executed after approval",
                                       approval_id=consumed.id)
        except asyncio.CancelledError:
            self._abandon(log_id)
            raise
        except PipelineError as e:
            return self._fail(log_id, action, e.code, e.details, suggestion=getattr(e, "suggestion", None))
        except Exception:
            logger.exception(f"Unexpected failure while executing approval {request.id}")
            return self._fail(log_id, action, ErrorCode.INTERNAL_ERROR, "Unexpected internal failure")

    # Approval housekeeping

    def get_approval(self, approval_id: str) -> ApprovalRequest:
        request = self.registry.get(approval_id)
        if request.state is ApprovalState.EXPIRED:
            self._close_expired(approval_id)
        return request

    def list_pending_approvals(self) -> List[ApprovalRequest]:
        self.sweep_expired_approvals()
        return self.registry.list_pending()

    def sweep_expired_approvals(self) -> List[str]:
        """Finalize the audit entries of approvals that lapsed without a decision."""
        self.registry.cleanup_expired_requests()
        with self._approval_lock:
            linked = list(self._approval_logs)
        closed = []
        for approval_id in linked:
            try:
                lapsed = self.registry.get(approval_id).state is ApprovalState.EXPIRED
            except ApprovalNotFound:
                # pruned after expiring
                lapsed = True
            if lapsed and self._close_expired(approval_id):
                closed.append(approval_id)
        return closed

    def _take_approval_log(self, approval_id: str) -> Optional[str]:
        with self._approval_lock:
            return self._approval_logs.pop(approval_id, None)

    def _close_expired(self, approval_id: str) -> bool:
        log_id = self._take_approval_log(approval_id)
        if log_id is None:
            return False
        self._step(log_id, f"Approval {approval_id} expired", "failed")
        self._finalize(log_id, AuditStatus.FAILED, ErrorCode.EXPIRED)
        return True

    # Health

    async def health_check(self) -> Dict[str, Any]:
        try:
            llm_healthy = await asyncio.wait_for(self.model.is_healthy(), timeout=min(self.llm_timeout, 5))
        except asyncio.TimeoutError:
            llm_healthy = False
        pending = len(self.list_pending_approvals())
        return {
            "status": "healthy" if llm_healthy else "degraded",
            "llm_healthy": llm_healthy,
            "model": self.model.get_status(),
            "pending_approvals": pending,
            "sessions_in_flight": self.sessions_in_flight,
        }

    # Audit helpers

    def _step(self, log_id: str, step: str, status: str = "success", details: Optional[str] = None):
        self.audit.append_step(log_id, step, status, details=details)

    def _logs(self, log_id: str) -> List[ActionStep]:
        entry = self.audit.get(log_id)
        return [ActionStep(step=s.step, status=s.status, timestamp=s.timestamp, details=s.details)
                for s in entry.steps]

    def _finalize(self, log_id: str, status: AuditStatus, error_code: Optional[ErrorCode] = None):
        code = error_code.value if error_code is not None else None
        entry = self.audit.finalize(log_id, status, code)
        logger.log_command_finished(log_id, status.value, entry.action, code)

    def _fail(self, log_id: str, action: Optional[str], code: ErrorCode, details: str,
              suggestion: Optional[str] = None, step: Optional[str] = None) -> AgentResponseEnvelope:
        self._step(log_id, step or f"Failed with {code.value}", "failed", details=details)
        envelope = AgentResponseEnvelope(
            status="error",
            action=action,
            message=details,
            error=AgentError(code=code, details=details, suggestion=suggestion),
            logs=self._logs(log_id),
        )
        self._finalize(log_id, AuditStatus.FAILED, code)
        return envelope

    def _abandon(self, log_id: str):
        if not self.audit.is_pending(log_id):
            return
        with self._approval_lock:
            if log_id in self._approval_logs.values():
                return
        logger.warning(f"Command {log_id} abandoned before completion")
        self._step(log_id, "Command abandoned", "failed")
        self._finalize(log_id, AuditStatus.FAILED, ErrorCode.ABANDONED)

    def _remember(self, session_id: Optional[str], command: str, envelope: AgentResponseEnvelope):
        outcome = "error" if envelope.status == "error" else None
        self.context.record(session_id, "user", command, outcome)
        self.context.record(session_id, "assistant", envelope.message, envelope.status)
