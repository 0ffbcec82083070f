"""
Shared vocabulary of the agent pipeline: the closed error taxonomy and the
base exception every typed failure derives from.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    MALFORMED_RESPONSE = "MalformedResponse"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    ACTION_NOT_FOUND = "ActionNotFound"
    VALIDATION_ERROR = "ValidationError"
    ALREADY_PROCESSED = "AlreadyProcessed"
    APPROVAL_REQUIRED = "ApprovalRequired"
    EXPIRED = "Expired"
    ALREADY_RESOLVED = "AlreadyResolved"
    NOT_FOUND = "NotFound"
    STATE_MISMATCH = "StateMismatch"
    BUSY = "Busy"
    ABANDONED = "Abandoned"
    INTERNAL_ERROR = "InternalError"


# Codes the language model is allowed to report in an error envelope: outcomes
# about the requested entity or its parameters. Every other code describes the
# pipeline, an approval or a session and is only ever set by this process; a
# model reply carrying one is malformed.
MODEL_ERROR_CODES = frozenset({
    ErrorCode.ACTION_NOT_FOUND,
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.ALREADY_PROCESSED,
    ErrorCode.APPROVAL_REQUIRED,
})

_LEGACY_ERROR_CODES = {
    "VALIDATION_ERROR": ErrorCode.VALIDATION_ERROR,
    "ALREADY_PROCESSED": ErrorCode.ALREADY_PROCESSED,
    "APPROVAL_REQUIRED": ErrorCode.APPROVAL_REQUIRED,
}


def normalize_model_error_code(raw: str) -> Optional[ErrorCode]:
    """Map a model-reported error code onto the taxonomy, or None if unknown."""
    if not isinstance(raw, str):
        return None
    code = raw.strip()
    for member in MODEL_ERROR_CODES:
        if code == member.value:
            return member
    upper = code.upper()
    if upper in _LEGACY_ERROR_CODES:
        return _LEGACY_ERROR_CODES[upper]
    if upper.endswith("_NOT_FOUND"):
        return ErrorCode.ACTION_NOT_FOUND
    return None


class PipelineError(Exception):
    """Base class for typed failures carrying a taxonomy code."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or message
