"""
Response Contract Validator - turns raw model text into a typed envelope.

The language model is an untrusted text source. Nothing it says reaches a
business collaborator unless it parses as exactly one JSON object, names a
catalogued action, and its params/data fit that action's models.
"""

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..api.schemas import ActionStep, AgentError, AgentResponseEnvelope, ApprovalInfo
from ..core.catalog import DEFAULT_CATALOG, ActionCatalog
from ..core.schema import ErrorCode, PipelineError, normalize_model_error_code

REQUIRED_FIELDS = ("status", "action", "message", "logs")
STATUSES = ("success", "pending_approval", "error")


class MalformedResponse(PipelineError):
    code = ErrorCode.MALFORMED_RESPONSE

    def __init__(self, reason: str, raw: Optional[str] = None):
        super().__init__(f"Malformed model response: {reason}", details=reason)
        self.reason = reason
        self.raw = raw


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid")


def validate_data(spec, data: Any):
    """Strict shape check of a response payload against spec.data_model."""
    # JSON mode keeps strictness on scalars while accepting nested objects
    return spec.data_model.model_validate_json(json.dumps(data))


def _load_json(raw_text: Any) -> Dict[str, Any]:
    if not isinstance(raw_text, str):
        raise MalformedResponse("response is not text")

    text = raw_text.strip()
    if not text:
        raise MalformedResponse("empty response", raw_text)
    if text.startswith("```"):
        raise MalformedResponse("response is wrapped in a markdown fence", raw_text)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"not a single JSON document ({e.msg})", raw_text)

    if not isinstance(payload, dict):
        raise MalformedResponse("top-level JSON value must be an object", raw_text)
    return payload


def parse_envelope(raw_text: Any, catalog: ActionCatalog = DEFAULT_CATALOG) -> AgentResponseEnvelope:
    """
    Validate raw model output against the envelope contract.

    Returns an AgentResponseEnvelope whose action is the canonical catalog
    name and whose params/data are instances of that action's models.
    Raises MalformedResponse on any structural, taxonomy or shape violation.
    """
    payload = _load_json(raw_text)

    missing = [name for name in REQUIRED_FIELDS if name not in payload]
    if missing:
        raise MalformedResponse(f"missing required fields: {', '.join(missing)}", raw_text)

    status = payload["status"]
    if status not in STATUSES:
        raise MalformedResponse(f"unknown status: {status!r}", raw_text)

    message = payload["message"]
    if not isinstance(message, str) or not message.strip():
        raise MalformedResponse("message must be a non-empty string", raw_text)

    spec = catalog.resolve(payload["action"])
    if spec is None:
        raise MalformedResponse(f"action not in catalog: {payload['action']!r}", raw_text)

    if not isinstance(payload["logs"], list):
        raise MalformedResponse("logs must be a list", raw_text)
    try:
        logs = [ActionStep.model_validate(step) for step in payload["logs"]]
    except ValidationError as e:
        raise MalformedResponse(f"invalid log step: {_first_error(e)}", raw_text)

    present = {name for name in ("data", "approval", "error") if payload.get(name) is not None}
    allowed = {"success": {"data"}, "pending_approval": {"approval"}, "error": {"error"}}[status]
    stray = present - allowed
    if stray:
        raise MalformedResponse(f"{status} envelope carries {', '.join(sorted(stray))}", raw_text)

    fields: Dict[str, Any] = {
        "status": status,
        "action": spec.name,
        "message": message,
        "logs": logs,
    }

    if status == "error":
        error = payload.get("error")
        if not isinstance(error, dict):
            raise MalformedResponse("error envelope requires an error object", raw_text)
        code = normalize_model_error_code(error.get("code"))
        if code is None:
            raise MalformedResponse(f"error code outside taxonomy: {error.get('code')!r}", raw_text)
        try:
            fields["error"] = AgentError(code=code, details=error.get("details") or message,
                                         suggestion=error.get("suggestion"))
        except ValidationError as e:
            raise MalformedResponse(f"invalid error object: {_first_error(e)}", raw_text)
        return AgentResponseEnvelope(**fields)

    raw_params = payload.get("params")
    if raw_params is None:
        raw_params = {}
    if not isinstance(raw_params, dict):
        raise MalformedResponse("params must be an object", raw_text)
    try:
        fields["params"] = spec.params_model.model_validate(raw_params)
    except ValidationError as e:
        raise MalformedResponse(f"params do not fit {spec.name}: {_first_error(e)}", raw_text)

    if status == "success" and payload.get("data") is not None:
        try:
            fields["data"] = validate_data(spec, payload["data"])
        except ValidationError as e:
            raise MalformedResponse(f"data does not fit {spec.name}: {_first_error(e)}", raw_text)

    if status == "pending_approval":
        approval = payload.get("approval")
        if not isinstance(approval, dict):
            raise MalformedResponse("pending_approval envelope requires an approval object", raw_text)
        details = approval.get("details") or {}
        if not isinstance(details, dict):
            raise MalformedResponse("approval.details must be an object", raw_text)
        reason = approval.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            raise MalformedResponse("approval.reason must be a non-empty string", raw_text)
        # Ids and expiry claimed by the model are ignored; the registry issues them.
        fields["approval"] = ApprovalInfo(reason=reason, details=details)

    return AgentResponseEnvelope(**fields)
