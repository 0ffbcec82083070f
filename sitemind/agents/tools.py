"""
Operation Router - the single place where business side effects happen.

The router maps a validated (ActionSpec, params) pair onto the matching
BusinessOperations coroutine, bounds it with a timeout, and checks the
returned payload against the action's data model before anyone sees it.
Gated actions are refused unless the caller presents the approval id it
just consumed.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from .validator import validate_data
from ..core.catalog import ActionCatalog, ActionSpec, DEFAULT_CATALOG
from ..core.config import OPERATION_TIMEOUT_SEC
from ..core.operations import BusinessOperations, OperationError, OperationUnavailable
from ..core.schema import ErrorCode, PipelineError
from ..util.logging import logger


class ApprovalRequiredViolation(PipelineError):
    """A gated action reached the router without a consumed approval."""
    code = ErrorCode.APPROVAL_REQUIRED


class InvalidOperationResult(PipelineError):
    """The collaborator returned a payload that does not fit the action's data model."""
    code = ErrorCode.INTERNAL_ERROR


class OperationRouter:

    def __init__(self, operations: BusinessOperations, catalog: ActionCatalog = DEFAULT_CATALOG,
                 timeout: float = OPERATION_TIMEOUT_SEC):
        self.operations = operations
        self.catalog = catalog
        self.timeout = timeout
        self._check_handlers()

    def _check_handlers(self):
        missing = [spec.name for spec in self.catalog
                   if not callable(getattr(self.operations, spec.handler, None))]
        if missing:
            raise ValueError(f"Operations backend lacks handlers for: {', '.join(missing)}")

    def list_tools(self) -> List[Dict[str, Any]]:
        return [spec.describe() for spec in self.catalog]

    async def dispatch(self, spec: ActionSpec, params: BaseModel,
                       approval_id: Optional[str] = None) -> BaseModel:
        """
        Execute one catalogued action.

        Args:
            spec: Catalog entry of the action
            params: Instance of spec.params_model
            approval_id: Id of the consumed approval; required for gated actions

        Returns:
            Instance of spec.data_model built from the collaborator's result

        Raises:
            ApprovalRequiredViolation, OperationError subclasses,
            InvalidOperationResult
        """
        if spec.requires_approval and not approval_id:
            logger.critical(f"Refusing to dispatch gated action {spec.name} without a consumed approval")
            raise ApprovalRequiredViolation(f"{spec.name} requires a consumed approval")

        kwargs = params.model_dump()
        if spec.requires_approval:
            kwargs["approval_id"] = approval_id
        handler = getattr(self.operations, spec.handler)

        start_time = time.time()
        try:
            result = await asyncio.wait_for(handler(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.log_dispatch(spec.name, kwargs, "timeout", {"timeout_sec": self.timeout})
            raise OperationUnavailable(f"{spec.name} timed out after {self.timeout}s")
        except OperationError as e:
            logger.log_dispatch(spec.name, kwargs, "failed", {"error": e.code.value, "message": e.message})
            raise

        duration_ms = (time.time() - start_time) * 1000
        try:
            data = validate_data(spec, result)
        except (ValidationError, TypeError) as e:
            logger.log_dispatch(spec.name, kwargs, "invalid_result", {"error": str(e)[:200]})
            raise InvalidOperationResult(f"{spec.name} returned an unexpected payload")

        logger.log_dispatch(spec.name, kwargs, "success", {"duration_ms": round(duration_ms, 2)})
        return data


def describe_result(data: BaseModel) -> str:
    """Compact one-line rendering of a result for log steps."""
    text = json.dumps(data.model_dump(mode="json", by_alias=True))
    return text[:200] + "..." if len(text) > 200 else text
