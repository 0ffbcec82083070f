"""
Action Catalog - the fixed registry of operations the agent may request.

Sensitivity is a declared property of every entry. Nothing is inferred from
action names, so a new refund-like action cannot slip past the approval gate
by being named differently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from . import payloads as p
from .schema import ErrorCode, PipelineError


class Sensitivity(str, Enum):
    DIRECT = "direct"
    APPROVAL_REQUIRED = "approval-required"


class UnknownActionError(PipelineError):
    code = ErrorCode.MALFORMED_RESPONSE


@dataclass(frozen=True)
class ActionSpec:
    name: str
    domain: str
    sensitivity: Sensitivity
    params_model: Type[BaseModel]
    data_model: Type[BaseModel]
    handler: str
    description: str

    @property
    def requires_approval(self) -> bool:
        return self.sensitivity is Sensitivity.APPROVAL_REQUIRED

    def describe(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "domain": self.domain,
            "sensitivity": self.sensitivity.value,
            "description": self.description,
            "params": [field.alias or name for name, field in self.params_model.model_fields.items()],
        }


class ActionCatalog:
    """Immutable, enumerable set of ActionSpecs plus model-facing aliases."""

    def __init__(self, specs: Iterable[ActionSpec], aliases: Optional[Dict[str, str]] = None):
        self._specs: Dict[str, ActionSpec] = {}
        for spec in specs:
            if not isinstance(spec.sensitivity, Sensitivity):
                raise ValueError(f"Action '{spec.name}' must declare a Sensitivity")
            if spec.name in self._specs:
                raise ValueError(f"Duplicate action: {spec.name}")
            self._specs[spec.name] = spec

        self._aliases: Dict[str, str] = {}
        for alias, target in (aliases or {}).items():
            if target not in self._specs:
                raise ValueError(f"Alias '{alias}' points at unknown action '{target}'")
            if alias in self._specs:
                raise ValueError(f"Alias '{alias}' shadows a canonical action")
            self._aliases[alias] = target

    def resolve(self, name: str) -> Optional[ActionSpec]:
        """Look up an action by canonical name or alias."""
        if not isinstance(name, str):
            return None
        return self._specs.get(self._aliases.get(name, name))

    def get(self, name: str) -> ActionSpec:
        spec = self.resolve(name)
        if spec is None:
            raise UnknownActionError(f"Unknown action: {name}")
        return spec

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    def __iter__(self):
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def names(self) -> List[str]:
        return list(self._specs)

    def gated_actions(self) -> List[ActionSpec]:
        return [s for s in self._specs.values() if s.requires_approval]

    @property
    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)


DIRECT = Sensitivity.DIRECT
GATED = Sensitivity.APPROVAL_REQUIRED

DEFAULT_CATALOG = ActionCatalog(
    [
        # Tickets
        ActionSpec("getTicket", "tickets", DIRECT, p.TicketRef, p.TicketResult,
                   "get_ticket", "Get a support ticket by id"),
        ActionSpec("getOpenTickets", "tickets", DIRECT, p.NoParams, p.TicketListResult,
                   "get_open_tickets", "List all open support tickets"),
        ActionSpec("closeTicket", "tickets", DIRECT, p.CloseTicketParams, p.TicketResult,
                   "close_ticket", "Close a ticket with a resolution"),
        ActionSpec("reopenTicket", "tickets", DIRECT, p.TicketRef, p.TicketResult,
                   "reopen_ticket", "Reopen a closed ticket"),
        ActionSpec("updateTicketPriority", "tickets", DIRECT, p.UpdateTicketPriorityParams, p.TicketResult,
                   "update_ticket_priority", "Change ticket priority (LOW/MEDIUM/HIGH)"),
        ActionSpec("assignTicket", "tickets", DIRECT, p.AssignTicketParams, p.TicketResult,
                   "assign_ticket", "Assign a ticket to a staff user"),
        # Orders
        ActionSpec("getOrder", "orders", DIRECT, p.OrderRef, p.OrderResult,
                   "get_order", "Get an order by id"),
        ActionSpec("getPendingOrders", "orders", DIRECT, p.NoParams, p.OrderListResult,
                   "get_pending_orders", "List all pending orders"),
        ActionSpec("updateOrderStatus", "orders", DIRECT, p.UpdateOrderStatusParams, p.OrderResult,
                   "update_order_status", "Change order status (PENDING/DELIVERED/CANCELLED)"),
        ActionSpec("processRefund", "orders", GATED, p.RefundParams, p.RefundResult,
                   "process_refund", "Refund an order"),
        ActionSpec("cancelOrder", "orders", DIRECT, p.CancelOrderParams, p.OrderResult,
                   "cancel_order", "Cancel a pending order"),
        ActionSpec("notifyCustomer", "orders", DIRECT, p.NotifyCustomerParams, p.NotificationResult,
                   "notify_customer", "Email the customer of an order"),
        ActionSpec("getOrderStats", "orders", DIRECT, p.NoParams, p.OrderStatsResult,
                   "get_order_stats", "Revenue and fulfilment statistics"),
        # Blog posts
        ActionSpec("getBlogPost", "posts", DIRECT, p.PostRef, p.PostResult,
                   "get_blog_post", "Get a blog post by id"),
        ActionSpec("createBlogPost", "posts", DIRECT, p.CreateBlogPostParams, p.PostResult,
                   "create_blog_post", "Create a draft blog post"),
        ActionSpec("publishBlogPost", "posts", DIRECT, p.PostRef, p.PostResult,
                   "publish_blog_post", "Publish a draft blog post"),
        ActionSpec("trashBlogPost", "posts", DIRECT, p.PostRef, p.PostResult,
                   "trash_blog_post", "Move a blog post to the trash"),
        # Site settings
        ActionSpec("getSiteStatus", "site", DIRECT, p.NoParams, p.SiteStatusResult,
                   "get_site_status", "Maintenance mode and cache status"),
        ActionSpec("toggleMaintenanceMode", "site", GATED, p.MaintenanceParams, p.MaintenanceResult,
                   "toggle_maintenance_mode", "Enable or disable site-wide maintenance mode"),
        ActionSpec("clearCache", "site", DIRECT, p.NoParams, p.CacheResult,
                   "clear_cache", "Clear the site cache"),
        ActionSpec("healthCheck", "site", DIRECT, p.NoParams, p.HealthResult,
                   "health_check", "Check storefront health"),
    ],
    aliases={
        "generateRefundApproval": "processRefund",
        "generateMaintenanceApproval": "toggleMaintenanceMode",
    },
)
