"""
Structured logging for the agent command pipeline.
Every approval transition, dispatch and audit finalization goes through here.
"""

import logging
from typing import Any, Dict, List, Optional

SENSITIVE_FIELDS = ['password', 'secret', 'token', 'email', 'content', 'message']


class StructuredLogger:
    """Structured logger for command, approval and audit operations."""

    def __init__(self, name: str = "sitemind"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None,
                      level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    # Command lifecycle
    def log_command_started(self, log_id: str, session_id: str, command: str):
        """Log the start of an admin command."""
        self.log_operation("command.started", "pending", {
            "log_id": log_id,
            "session_id": session_id,
            "command": command[:80] + "..." if len(command) > 80 else command
        })

    def log_command_finished(self, log_id: str, status: str, action: Optional[str] = None,
                             error_code: Optional[str] = None):
        """Log the terminal outcome of an admin command."""
        details = {"log_id": log_id, "action": action}
        if error_code:
            details["error_code"] = error_code
        level = logging.INFO if status == "SUCCESS" else logging.WARNING
        self.log_operation("command.finished", status.lower(), details, level=level)

    def log_command_rejected(self, session_id: str, reason: str):
        """Log a command that was refused before processing."""
        self.log_operation("command.rejected", "busy", {"session_id": session_id, "reason": reason},
                           level=logging.WARNING)

    # Language model
    def log_llm_call(self, model: str, duration_ms: float, status: str = "success",
                     details: Dict[str, Any] = None):
        """Log a language-model completion call."""
        log_details = {"model": model, "duration_ms": round(duration_ms, 2)}
        if details:
            log_details.update(details)
        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation("llm.complete", status, log_details, level=level)

    def log_validation_rejected(self, reason: str, raw_length: int):
        """Log a model response that failed the envelope contract."""
        self.log_operation("contract.rejected", "malformed", {
            "reason": reason[:200],
            "raw_length": raw_length
        }, level=logging.WARNING)

    # Approval workflow
    def log_approval_request(self, approval_id: str, action: str, expires_at: str):
        """Log approval request creation."""
        self.log_operation("approval.request_created", "pending", {
            "approval_id": approval_id,
            "action": action,
            "expires_at": expires_at
        })

    def log_approval_decision(self, approval_id: str, decision: str, approver: Optional[str] = None):
        """Log approval decision."""
        self.log_operation("approval.decision", decision, {
            "approval_id": approval_id,
            "approver": approver or "unknown"
        })

    def log_approval_consumed(self, approval_id: str, action: str):
        """Log the single execution slot of an approval being used."""
        self.log_operation("approval.consumed", "consumed", {"approval_id": approval_id, "action": action})

    def log_approval_expired(self, approval_id: str):
        """Log lazy expiry of an approval."""
        self.log_operation("approval.expired", "expired", {"approval_id": approval_id},
                           level=logging.WARNING)

    # Dispatch
    def log_dispatch(self, action: str, params: Dict[str, Any], status: str = "success",
                     details: Dict[str, Any] = None):
        """Log a business operation dispatch."""
        log_details = {"action": action, "params": sanitize_payload(params)}
        if details:
            log_details.update(details)
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("dispatch", status, log_details, level=level)

    # Audit
    def log_audit_finalized(self, log_id: str, status: str, step_count: int):
        """Log the finalization of an audit entry."""
        self.log_operation("audit.finalized", status.lower(), {"log_id": log_id, "steps": step_count})

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def critical(self, message: str) -> None:
        """Log a critical message."""
        self.logger.critical(message)

    def exception(self, message: str) -> None:
        """Log an error message with the active traceback."""
        self.logger.exception(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
