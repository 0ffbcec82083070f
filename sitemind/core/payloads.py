"""
Per-action payload models.

Every Action Catalog entry names one parameter model (what the agent may ask
for) and one data model (what a successful execution returns). Both use the
camelCase wire names of the admin UI; Python code works with snake_case.

Data models are strict and closed: a shape mismatch is a validation failure,
never a silent coercion. Parameter models are closed but lax, so "45" is
accepted for a numeric id.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TicketStatus = Literal["OPEN", "IN_PROGRESS", "CLOSED"]
TicketPriority = Literal["LOW", "MEDIUM", "HIGH"]
OrderStatus = Literal["PENDING", "DELIVERED", "REFUNDED", "CANCELLED"]
PostStatus = Literal["DRAFT", "PUBLISHED", "TRASHED"]


class ParamsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class DataModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid",
                              strict=True)


# Shared records

class UserRef(DataModel):
    id: int
    name: Optional[str] = None
    email: str


class TicketData(DataModel):
    id: int
    ticket_id: str
    subject: str
    description: Optional[str] = None
    status: TicketStatus
    priority: TicketPriority
    customer: UserRef
    assigned_to: Optional[UserRef] = None
    resolution: Optional[str] = None
    created_at: str
    updated_at: str


class OrderData(DataModel):
    id: int
    order_id: str
    customer: UserRef
    items: Optional[List[Dict[str, Any]]] = None
    total: float
    status: OrderStatus
    created_at: str
    updated_at: str


class OrderStatsData(DataModel):
    total_orders: int
    total_revenue: float
    pending_orders: int
    delivered_orders: int
    refunded_orders: int
    average_order_value: float
    delivery_rate: float


class PostData(DataModel):
    id: int
    title: str
    slug: str
    content: str
    excerpt: Optional[str] = None
    status: PostStatus
    author: UserRef
    created_at: str
    updated_at: str


class SiteStatusData(DataModel):
    maintenance_mode: bool
    last_cache_clear: Optional[str] = None
    status: Literal["operational", "maintenance"]


class HealthCheckData(DataModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
    latency: Optional[float] = None


# Response data, one shape per action family

class TicketResult(DataModel):
    ticket: TicketData


class TicketListResult(DataModel):
    tickets: List[TicketData]
    count: int


class OrderResult(DataModel):
    order: OrderData


class OrderListResult(DataModel):
    orders: List[OrderData]
    count: int


class RefundResult(DataModel):
    order: OrderData
    refund_amount: float


class NotificationResult(DataModel):
    notified: bool
    email: str


class OrderStatsResult(DataModel):
    stats: OrderStatsData


class PostResult(DataModel):
    post: PostData


class SiteStatusResult(DataModel):
    status: SiteStatusData


class MaintenanceResult(DataModel):
    maintenance_mode: bool


class CacheResult(DataModel):
    cleared: bool
    timestamp: str


class HealthResult(DataModel):
    health: HealthCheckData


# Parameters

class NoParams(ParamsModel):
    pass


class TicketRef(ParamsModel):
    ticket_id: int


class CloseTicketParams(TicketRef):
    resolution: str = Field(default="Closed by administrator", min_length=1)


class UpdateTicketPriorityParams(TicketRef):
    priority: TicketPriority


class AssignTicketParams(TicketRef):
    assignee_id: int


class OrderRef(ParamsModel):
    order_id: int


class UpdateOrderStatusParams(OrderRef):
    # REFUNDED is only reachable through the gated refund action
    status: Literal["PENDING", "DELIVERED", "CANCELLED"]


class RefundParams(OrderRef):
    reason: str = Field(min_length=1)


class CancelOrderParams(OrderRef):
    reason: Optional[str] = None


class NotifyCustomerParams(OrderRef):
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)


class PostRef(ParamsModel):
    post_id: int


class CreateBlogPostParams(ParamsModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    author_id: int
    excerpt: Optional[str] = None


class MaintenanceParams(ParamsModel):
    enabled: bool
