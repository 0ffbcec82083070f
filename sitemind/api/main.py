"""
Admin-facing HTTP surface for the agent command pipeline.
"""

from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ActionDescriptor,
    ActionListResponse,
    ApprovalListResponse,
    ApprovalStatus,
    AuditLogListResponse,
    AuditLogResponse,
    AuditStepResponse,
    CommandRequest,
    CommandResponse,
    DecisionRequest,
    DecisionResponse,
    ErrorResponse,
    HealthResponse,
)
from ..agents.orchestrator import CommandOrchestrator
from ..core.approval import (
    ApprovalAlreadyResolved,
    ApprovalError,
    ApprovalExpired,
    ApprovalNotFound,
    ApprovalRequest,
    ApprovalStateMismatch,
)
from ..core.audit import AuditLogEntry, AuditLogError, AuditStatus
from ..core.config import CORS_ORIGINS, LLM_PROVIDER, VERSION, debug_enabled
from ..core.schema import ErrorCode
from ..util.logging import logger

APPROVAL_ERROR_STATUS = {
    ApprovalNotFound: 404,
    ApprovalAlreadyResolved: 409,
    ApprovalStateMismatch: 409,
    ApprovalExpired: 410,
}


def build_default_orchestrator() -> CommandOrchestrator:
    """Wire the pipeline from configuration: model provider, store, SQLite sinks."""
    from ..agents.mock_agent import MockAgent
    from ..agents.ollama_agent import OllamaAgent
    from ..core.approval import ApprovalRegistry
    from ..core.audit import AuditLogWriter
    from ..core.dao import SQLiteAuditSink, approval_event_sink
    from ..core.store import InMemoryStore

    model = MockAgent() if LLM_PROVIDER == "mock" else OllamaAgent()
    sink = SQLiteAuditSink()
    return CommandOrchestrator(
        model=model,
        operations=InMemoryStore(),
        registry=ApprovalRegistry(event_sink=approval_event_sink()),
        audit=AuditLogWriter(sink=sink),
    )


def approval_to_status(request: ApprovalRequest) -> ApprovalStatus:
    return ApprovalStatus(
        approval_id=request.id,
        action=request.action,
        params=request.params,
        reason=request.reason,
        state=request.state.value,
        created_at=request.created_at,
        expires_at=request.expires_at,
        decided_by=request.decided_by,
        decided_at=request.decided_at,
        consumed_at=request.consumed_at,
    )


def entry_to_response(entry: AuditLogEntry) -> AuditLogResponse:
    return AuditLogResponse(
        log_id=entry.log_id,
        task=entry.task,
        session_id=entry.session_id,
        status=entry.status.value,
        action=entry.action,
        approval_id=entry.approval_id,
        error_code=entry.error_code,
        created_at=entry.created_at,
        finalized_at=entry.finalized_at,
        steps=[AuditStepResponse(step=s.step, status=s.status, timestamp=s.timestamp, details=s.details)
               for s in entry.steps],
    )


def get_orchestrator(request: Request) -> CommandOrchestrator:
    """Lazy initialization of the orchestrator."""
    app = request.app
    if app.state.orchestrator is None:
        app.state.orchestrator = build_default_orchestrator()
    return app.state.orchestrator


def create_app(orchestrator: Optional[CommandOrchestrator] = None) -> FastAPI:
    app = FastAPI(
        title="SiteMind Agent API",
        version=VERSION,
        description="Natural-language admin commands with approval-gated execution",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None
    )
    app.state.orchestrator = orchestrator

    # Add CORS middleware to allow admin UI connections
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApprovalError)
    async def approval_error_handler(request: Request, exc: ApprovalError):
        status_code = APPROVAL_ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(code=exc.code.value, message=exc.message).model_dump(),
        )

    @app.exception_handler(AuditLogError)
    async def audit_error_handler(request: Request, exc: AuditLogError):
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(code=exc.code.value, message=exc.message).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}")
        content = {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error"}
        if debug_enabled():
            content["debug"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.get("/health", response_model=HealthResponse)
    async def health_endpoint(orch: CommandOrchestrator = Depends(get_orchestrator)):
        """Check service health."""
        health = await orch.health_check()
        return HealthResponse(
            status=health["status"],
            version=VERSION,
            llm_provider=orch.model.agent_id,
            llm_healthy=health["llm_healthy"],
            pending_approvals=health["pending_approvals"],
            sessions_in_flight=health["sessions_in_flight"],
        )

    @app.get("/agent/actions", response_model=ActionListResponse)
    def list_actions_endpoint(orch: CommandOrchestrator = Depends(get_orchestrator)):
        return ActionListResponse(
            actions=[ActionDescriptor(**tool) for tool in orch.router.list_tools()],
            aliases=orch.catalog.aliases,
        )

    # The envelope carries per-action models, so it is returned as a ready
    # JSON body rather than re-validated through response_model.
    @app.post("/agent/command", response_model=CommandResponse)
    async def command_endpoint(body: CommandRequest,
                               x_session_id: Optional[str] = Header(default=None),
                               orch: CommandOrchestrator = Depends(get_orchestrator)):
        """Run one natural-language admin command."""
        session_id = body.session_id or x_session_id
        result = await orch.execute_command(body.command, history=body.history, session_id=session_id)
        status_code = 409 if result.envelope.error_code is ErrorCode.BUSY else 200
        return JSONResponse(
            status_code=status_code,
            content={"envelope": result.envelope.to_wire(), "log_id": result.log_id},
        )

    @app.get("/agent/approvals", response_model=ApprovalListResponse)
    def list_approvals_endpoint(orch: CommandOrchestrator = Depends(get_orchestrator)):
        pending = orch.list_pending_approvals()
        return ApprovalListResponse(pending_requests=[approval_to_status(r) for r in pending])

    @app.get("/agent/approvals/{approval_id}", response_model=ApprovalStatus)
    def get_approval_endpoint(approval_id: str, orch: CommandOrchestrator = Depends(get_orchestrator)):
        return approval_to_status(orch.get_approval(approval_id))

    @app.post("/agent/approvals/{approval_id}/decision", response_model=DecisionResponse)
    async def decision_endpoint(approval_id: str, body: DecisionRequest,
                                orch: CommandOrchestrator = Depends(get_orchestrator)):
        """Approve or deny a pending request; approval executes the action once."""
        result = await orch.decide(approval_id, body.decision, approver=body.approver)
        content = {
            "approval": approval_to_status(result.approval).model_dump(mode="json"),
            "envelope": result.envelope.to_wire() if result.envelope is not None else None,
            "log_id": result.log_id,
        }
        return JSONResponse(content=content)

    @app.get("/agent/logs", response_model=AuditLogListResponse)
    def list_logs_endpoint(limit: int = Query(50, ge=1, le=500),
                           status: Optional[AuditStatus] = None,
                           orch: CommandOrchestrator = Depends(get_orchestrator)):
        entries = orch.audit.list_entries(limit=limit, status=status)
        return AuditLogListResponse(logs=[entry_to_response(e) for e in entries], count=len(entries))

    @app.get("/agent/logs/{log_id}", response_model=AuditLogResponse)
    def get_log_endpoint(log_id: str, orch: CommandOrchestrator = Depends(get_orchestrator)):
        return entry_to_response(orch.audit.get(log_id))

    return app


app = create_app()
