"""
Wire models for the agent command pipeline.

AgentResponseEnvelope is the single structured response returned for every
command. `params` and `data` hold the per-action models from the Action
Catalog; they are typed at the validator boundary and serialized by their
runtime type.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, SerializeAsAny, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..core.schema import ErrorCode

EnvelopeStatus = Literal["success", "pending_approval", "error"]
StepStatus = Literal["success", "failed", "pending"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ActionStep(WireModel):
    step: str
    status: StepStatus
    timestamp: datetime
    details: Optional[str] = None


class ApprovalInfo(WireModel):
    # approval_id / expires_at are issued by the approval registry; a model
    # reply only carries the reason and details.
    approval_id: Optional[str] = None
    reason: str
    expires_at: Optional[datetime] = None
    details: Dict[str, Any] = {}


class AgentError(WireModel):
    code: ErrorCode
    details: str
    suggestion: Optional[str] = None


class AgentResponseEnvelope(WireModel):
    status: EnvelopeStatus
    action: Optional[str] = None
    message: str
    params: Optional[SerializeAsAny[BaseModel]] = None
    data: Optional[SerializeAsAny[BaseModel]] = None
    approval: Optional[ApprovalInfo] = None
    error: Optional[AgentError] = None
    logs: List[ActionStep] = []

    @model_validator(mode="after")
    def exactly_one_variant(self):
        if self.status == "success" and (self.approval is not None or self.error is not None):
            raise ValueError("success envelope cannot carry approval or error")
        if self.status == "pending_approval":
            if self.approval is None:
                raise ValueError("pending_approval envelope requires approval")
            if self.data is not None or self.error is not None:
                raise ValueError("pending_approval envelope cannot carry data or error")
        if self.status == "error":
            if self.error is None:
                raise ValueError("error envelope requires error")
            if self.data is not None or self.approval is not None:
                raise ValueError("error envelope cannot carry data or approval")
        return self

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict; absent variants are omitted rather than null."""
        dumped = self.model_dump(mode="json", by_alias=True)
        return {k: v for k, v in dumped.items() if v is not None or k == "action"}


# HTTP request/response models

class HistoryTurn(BaseModel):
    role: str
    content: str
    status: Optional[str] = None


class CommandRequest(BaseModel):
    command: str
    history: Optional[List[HistoryTurn]] = None
    session_id: Optional[str] = None

    @field_validator('command')
    @classmethod
    def command_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('command cannot be empty')
        return v

    @field_validator('command')
    @classmethod
    def command_must_be_reasonable_length(cls, v):
        if len(v) > 2000:
            raise ValueError('command must be less than 2000 characters')
        return v


class CommandResponse(BaseModel):
    envelope: Dict[str, Any]
    log_id: str


class DecisionRequest(BaseModel):
    decision: Literal["approve", "deny"]
    approver: Optional[str] = None


class ApprovalStatus(BaseModel):
    approval_id: str
    action: str
    params: Dict[str, Any]
    reason: str
    state: str  # pending, approved, denied, expired, consumed
    created_at: datetime
    expires_at: datetime
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None


class DecisionResponse(BaseModel):
    approval: ApprovalStatus
    envelope: Optional[Dict[str, Any]] = None
    log_id: Optional[str] = None


class ApprovalListResponse(BaseModel):
    pending_requests: List[ApprovalStatus]


class AuditStepResponse(BaseModel):
    step: str
    status: str
    timestamp: datetime
    details: Optional[str] = None


class AuditLogResponse(BaseModel):
    log_id: str
    task: str
    session_id: Optional[str] = None
    status: str
    action: Optional[str] = None
    approval_id: Optional[str] = None
    error_code: Optional[str] = None
    created_at: datetime
    finalized_at: Optional[datetime] = None
    steps: List[AuditStepResponse]


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    count: int


class ActionDescriptor(BaseModel):
    name: str
    domain: str
    sensitivity: str
    description: str
    params: List[str]


class ActionListResponse(BaseModel):
    actions: List[ActionDescriptor]
    aliases: Dict[str, str]


class HealthResponse(BaseModel):
    status: str
    version: str
    llm_provider: str
    llm_healthy: bool
    pending_approvals: int
    sessions_in_flight: int


class ErrorResponse(BaseModel):
    code: str
    message: str
