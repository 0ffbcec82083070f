"""
Mock language model.

Deterministic, rule-based stand-in that answers with contract-shaped JSON.
Used for development (LLM_PROVIDER=mock), the operator console and tests.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .agent import LanguageModel
from ..core.conversation import ConversationTurn

_NUM = r"#?\s*(\d+)"


def _reason(text: str) -> Optional[str]:
    match = re.search(r"\b(?:because|due to|reason:?|since)\s+(.+)$", text, re.IGNORECASE)
    return match.group(1).strip().rstrip(".") if match else None


class MockAgent(LanguageModel):
    """
    Maps a handful of command phrasings onto catalog actions.
    Anything it does not recognise becomes a ValidationError envelope.
    """

    def __init__(self, agent_id: str = "mock", model_name: str = "mock-model"):
        super().__init__(agent_id, model_name)
        self.calls = 0

    async def complete(self, system_prompt: str, context: List[ConversationTurn], command: str) -> str:
        self.calls += 1
        return json.dumps(self.respond(command))

    def respond(self, command: str) -> Dict[str, Any]:
        text = command.strip()
        lower = text.lower()

        match = re.search(r"refund\s+(?:order\s*)?" + _NUM, lower)
        if match:
            order_id = int(match.group(1))
            reason = _reason(text) or "Requested by administrator"
            return self._envelope(
                "pending_approval", "processRefund",
                f"Refunding order #{order_id} needs your approval.",
                params={"orderId": order_id, "reason": reason},
                approval={"reason": "Refunds move money back to the customer",
                          "details": {"orderId": order_id, "reason": reason}},
                step=f"Parsed refund request for order #{order_id}",
            )

        match = re.search(r"maintenance\s*(?:mode)?\s*(on|off)|(enable|disable)\s+maintenance", lower)
        if match:
            enabled = (match.group(1) or match.group(2)) in ("on", "enable")
            state = "on" if enabled else "off"
            return self._envelope(
                "pending_approval", "toggleMaintenanceMode",
                f"Turning maintenance mode {state} needs your approval.",
                params={"enabled": enabled},
                approval={"reason": "Maintenance mode affects the whole storefront",
                          "details": {"enabled": enabled}},
                step=f"Parsed maintenance toggle ({state})",
            )

        rules = [
            (r"reopen\s+ticket\s*" + _NUM, "reopenTicket", lambda m: {"ticketId": int(m.group(1))},
             "I'll reopen ticket #{0}."),
            (r"close\s+ticket\s*" + _NUM, "closeTicket", self._close_params,
             "I'll close ticket #{0}."),
            (r"open\s+tickets", "getOpenTickets", lambda m: {}, "Here are the open tickets."),
            (r"ticket\s*" + _NUM, "getTicket", lambda m: {"ticketId": int(m.group(1))},
             "Here is ticket #{0}."),
            (r"cancel\s+order\s*" + _NUM, "cancelOrder", self._cancel_params,
             "I'll cancel order #{0}."),
            (r"pending\s+orders", "getPendingOrders", lambda m: {}, "Here are the pending orders."),
            (r"order\s+(?:stats|statistics)", "getOrderStats", lambda m: {}, "Here are the order stats."),
            (r"order\s*" + _NUM, "getOrder", lambda m: {"orderId": int(m.group(1))},
             "Here is order #{0}."),
            (r"publish\s+post\s*" + _NUM, "publishBlogPost", lambda m: {"postId": int(m.group(1))},
             "I'll publish post #{0}."),
            (r"trash\s+post\s*" + _NUM, "trashBlogPost", lambda m: {"postId": int(m.group(1))},
             "I'll move post #{0} to the trash."),
            (r"post\s*" + _NUM, "getBlogPost", lambda m: {"postId": int(m.group(1))},
             "Here is post #{0}."),
            (r"clear\s+(?:the\s+)?cache", "clearCache", lambda m: {}, "I'll clear the cache."),
            (r"health", "healthCheck", lambda m: {}, "Running a health check."),
            (r"site\s+status|status\s+of\s+the\s+site", "getSiteStatus", lambda m: {},
             "Here is the site status."),
        ]
        for pattern, action, make_params, message in rules:
            match = re.search(pattern, lower)
            if match:
                return self._envelope(
                    "success", action, message.format(*match.groups()),
                    params=make_params(match) if action not in ("closeTicket", "cancelOrder")
                    else make_params(match, text),
                    step=f"Mapped command to {action}",
                )

        return self._envelope(
            "error", "getSiteStatus", "I couldn't map that instruction to an operation.",
            error={"code": "ValidationError",
                   "details": f"No operation matches: {text[:80]}",
                   "suggestion": "Try e.g. 'close ticket #45' or 'refund order #456 because defective'"},
            step="Could not classify command", step_status="failed",
        )

    @staticmethod
    def _close_params(match, text: str) -> Dict[str, Any]:
        params = {"ticketId": int(match.group(1))}
        reason = _reason(text)
        if reason:
            params["resolution"] = reason
        return params

    @staticmethod
    def _cancel_params(match, text: str) -> Dict[str, Any]:
        params = {"orderId": int(match.group(1))}
        reason = _reason(text)
        if reason:
            params["reason"] = reason
        return params

    @staticmethod
    def _envelope(status: str, action: str, message: str, params: Optional[Dict[str, Any]] = None,
                  approval: Optional[Dict[str, Any]] = None, error: Optional[Dict[str, Any]] = None,
                  step: str = "", step_status: str = "success") -> Dict[str, Any]:
        envelope = {
            "status": status,
            "action": action,
            "message": message,
            "logs": [{
                "step": step,
                "status": step_status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }],
        }
        if params is not None:
            envelope["params"] = params
        if approval is not None:
            envelope["approval"] = approval
        if error is not None:
            envelope["error"] = error
        return envelope
