"""
In-memory storefront backend implementing BusinessOperations.

Seeded with a handful of users, tickets, orders and posts so the agent can be
exercised end to end without a database. Used by the mock provider, the
operator console and the tests.
"""

import copy
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from .operations import (
    AlreadyProcessed,
    BusinessOperations,
    EntityNotFound,
    InvalidParameters,
    Result,
)

USERS = {
    1: {"id": 1, "name": "Admin User", "email": "admin@sitemind.com", "role": "ADMIN"},
    2: {"id": 2, "name": "John Doe", "email": "john.doe@example.com", "role": "USER"},
    3: {"id": 3, "name": "Jane Smith", "email": "jane.smith@example.com", "role": "USER"},
    4: {"id": 4, "name": "AI Agent", "email": "agent@sitemind.ai", "role": "AI_AGENT"},
}

SEED_TICKETS = [
    (42, "Order not received", "Placed order last week, still waiting.", "OPEN", "HIGH", 2),
    (45, "Wrong size delivered", "Received a medium instead of large.", "OPEN", "MEDIUM", 3),
    (46, "Question about warranty", "How long is the headphone warranty?", "IN_PROGRESS", "LOW", 2),
    (50, "Login issue", "Cannot reset my password.", "CLOSED", "MEDIUM", 3),
]

SEED_ORDERS = [
    (455, 2, [{"productId": 1, "name": "Premium Wireless Headphones", "quantity": 1, "price": 299.99}],
     299.99, "DELIVERED"),
    (456, 3, [{"productId": 2, "name": "Smart Fitness Watch", "quantity": 1, "price": 199.99}],
     199.99, "DELIVERED"),
    (457, 2, [{"productId": 4, "name": "Mechanical Keyboard", "quantity": 2, "price": 149.99}],
     299.98, "PENDING"),
    (458, 3, [{"productId": 5, "name": "Laptop Stand", "quantity": 1, "price": 49.99}],
     49.99, "PENDING"),
    (460, 2, [{"productId": 3, "name": "Ergonomic Office Chair", "quantity": 1, "price": 399.99}],
     399.99, "REFUNDED"),
]

SEED_POSTS = [
    (1, "Welcome to SiteMind", "Our new storefront is live.", "PUBLISHED", 1),
    (2, "Holiday shipping schedule", "Order by the 18th for delivery before the holidays.", "DRAFT", 1),
]


def _user_ref(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "name": user["name"], "email": user["email"]}


def _slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "post"


def nearest_id(wanted: int, existing: Iterable[int]) -> Optional[int]:
    """Closest existing id to `wanted`, ties resolved towards the lower id."""
    candidates = sorted(existing)
    if not candidates:
        return None
    return min(candidates, key=lambda i: (abs(i - wanted), i))


class InMemoryStore(BusinessOperations):

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        now = self._now()
        self.users = copy.deepcopy(USERS)
        self.tickets: Dict[int, Dict[str, Any]] = {}
        self.orders: Dict[int, Dict[str, Any]] = {}
        self.posts: Dict[int, Dict[str, Any]] = {}
        self.site = {"maintenanceMode": False, "lastCacheClear": None}
        # order id -> approval id that refunded it
        self.refunds: Dict[int, str] = {}
        self.outbox = []

        for tid, subject, description, status, priority, customer in SEED_TICKETS:
            self.tickets[tid] = {
                "id": tid, "ticketId": f"TKT-{tid:05d}", "subject": subject,
                "description": description, "status": status, "priority": priority,
                "customer": _user_ref(self.users[customer]), "assignedTo": None,
                "resolution": "Password reset link re-sent" if status == "CLOSED" else None,
                "createdAt": now, "updatedAt": now,
            }
        for oid, customer, items, total, status in SEED_ORDERS:
            self.orders[oid] = {
                "id": oid, "orderId": f"ORD-{oid:05d}", "customer": _user_ref(self.users[customer]),
                "items": items, "total": total, "status": status,
                "createdAt": now, "updatedAt": now,
            }
        for pid, title, content, status, author in SEED_POSTS:
            self.posts[pid] = {
                "id": pid, "title": title, "slug": _slugify(title), "content": content,
                "excerpt": None, "status": status, "author": _user_ref(self.users[author]),
                "createdAt": now, "updatedAt": now,
            }

    def _now(self) -> str:
        return self._clock().isoformat()

    def _find(self, table: Dict[int, Dict[str, Any]], entity: str, entity_id: int) -> Dict[str, Any]:
        record = table.get(entity_id)
        if record is None:
            guess = nearest_id(entity_id, table)
            suggestion = f"Did you mean {entity} #{guess}?" if guess is not None else None
            raise EntityNotFound(entity, entity_id, suggestion)
        return record

    def _touch(self, record: Dict[str, Any], **changes) -> Dict[str, Any]:
        record.update(changes)
        record["updatedAt"] = self._now()
        return copy.deepcopy(record)

    # Tickets

    async def get_ticket(self, ticket_id: int) -> Result:
        return {"ticket": copy.deepcopy(self._find(self.tickets, "ticket", ticket_id))}

    async def get_open_tickets(self) -> Result:
        tickets = [copy.deepcopy(t) for t in self.tickets.values() if t["status"] != "CLOSED"]
        return {"tickets": tickets, "count": len(tickets)}

    async def close_ticket(self, ticket_id: int, resolution: str) -> Result:
        ticket = self._find(self.tickets, "ticket", ticket_id)
        if ticket["status"] == "CLOSED":
            raise AlreadyProcessed(f"Ticket #{ticket_id} is already closed")
        return {"ticket": self._touch(ticket, status="CLOSED", resolution=resolution)}

    async def reopen_ticket(self, ticket_id: int) -> Result:
        ticket = self._find(self.tickets, "ticket", ticket_id)
        if ticket["status"] != "CLOSED":
            raise AlreadyProcessed(f"Ticket #{ticket_id} is already open")
        return {"ticket": self._touch(ticket, status="OPEN", resolution=None)}

    async def update_ticket_priority(self, ticket_id: int, priority: str) -> Result:
        ticket = self._find(self.tickets, "ticket", ticket_id)
        return {"ticket": self._touch(ticket, priority=priority)}

    async def assign_ticket(self, ticket_id: int, assignee_id: int) -> Result:
        ticket = self._find(self.tickets, "ticket", ticket_id)
        assignee = self._find(self.users, "user", assignee_id)
        if assignee["role"] == "USER":
            raise InvalidParameters(f"User #{assignee_id} is a customer and cannot be assigned tickets")
        return {"ticket": self._touch(ticket, assignedTo=_user_ref(assignee),
                                      status="IN_PROGRESS" if ticket["status"] == "OPEN" else ticket["status"])}

    # Orders

    async def get_order(self, order_id: int) -> Result:
        return {"order": copy.deepcopy(self._find(self.orders, "order", order_id))}

    async def get_pending_orders(self) -> Result:
        orders = [copy.deepcopy(o) for o in self.orders.values() if o["status"] == "PENDING"]
        return {"orders": orders, "count": len(orders)}

    async def update_order_status(self, order_id: int, status: str) -> Result:
        order = self._find(self.orders, "order", order_id)
        if status == "REFUNDED":
            raise InvalidParameters("Refunds must go through processRefund")
        if order["status"] in ("REFUNDED", "CANCELLED"):
            raise InvalidParameters(f"Order #{order_id} is {order['status']} and can no longer change status")
        if order["status"] == status:
            raise AlreadyProcessed(f"Order #{order_id} is already {status}")
        return {"order": self._touch(order, status=status)}

    async def process_refund(self, order_id: int, reason: str, approval_id: str) -> Result:
        order = self._find(self.orders, "order", order_id)
        if order["status"] == "REFUNDED":
            if self.refunds.get(order_id) == approval_id:
                return {"order": copy.deepcopy(order), "refundAmount": order["total"]}
            raise AlreadyProcessed(f"Order #{order_id} has already been refunded")
        if order["status"] not in ("DELIVERED", "PENDING"):
            raise InvalidParameters(f"Order with status {order['status']} is not eligible for refund")

        self.refunds[order_id] = approval_id
        refunded = self._touch(order, status="REFUNDED")
        self.outbox.append({
            "to": order["customer"]["email"],
            "subject": f"Refund Processed for Order #{order['orderId']}",
            "body": f"Your refund of ${order['total']:.2f} has been processed. Reason: {reason}",
        })
        return {"order": refunded, "refundAmount": order["total"]}

    async def cancel_order(self, order_id: int, reason: Optional[str] = None) -> Result:
        order = self._find(self.orders, "order", order_id)
        if order["status"] == "CANCELLED":
            raise AlreadyProcessed(f"Order #{order_id} is already cancelled")
        if order["status"] == "DELIVERED":
            raise InvalidParameters("Cannot cancel a delivered order. Use refund instead.")
        if order["status"] == "REFUNDED":
            raise InvalidParameters(f"Order #{order_id} has been refunded")
        return {"order": self._touch(order, status="CANCELLED")}

    async def notify_customer(self, order_id: int, subject: str, message: str) -> Result:
        order = self._find(self.orders, "order", order_id)
        email = order["customer"]["email"]
        self.outbox.append({"to": email, "subject": subject, "body": message})
        return {"notified": True, "email": email}

    async def get_order_stats(self) -> Result:
        orders = list(self.orders.values())
        counted = [o for o in orders if o["status"] != "REFUNDED"]
        revenue = round(sum(o["total"] for o in counted), 2)
        delivered = sum(1 for o in orders if o["status"] == "DELIVERED")
        return {"stats": {
            "totalOrders": len(orders),
            "totalRevenue": revenue,
            "pendingOrders": sum(1 for o in orders if o["status"] == "PENDING"),
            "deliveredOrders": delivered,
            "refundedOrders": sum(1 for o in orders if o["status"] == "REFUNDED"),
            "averageOrderValue": round(revenue / len(counted), 2) if counted else 0.0,
            "deliveryRate": round(delivered / len(orders) * 100, 2) if orders else 0.0,
        }}

    # Blog posts

    async def get_blog_post(self, post_id: int) -> Result:
        return {"post": copy.deepcopy(self._find(self.posts, "post", post_id))}

    async def create_blog_post(self, title: str, content: str, author_id: int,
                               excerpt: Optional[str] = None) -> Result:
        author = self._find(self.users, "user", author_id)
        slug = _slugify(title)
        if any(p["slug"] == slug for p in self.posts.values()):
            raise InvalidParameters(f"A post with slug '{slug}' already exists")
        post_id = max(self.posts, default=0) + 1
        now = self._now()
        self.posts[post_id] = {
            "id": post_id, "title": title, "slug": slug, "content": content,
            "excerpt": excerpt, "status": "DRAFT", "author": _user_ref(author),
            "createdAt": now, "updatedAt": now,
        }
        return {"post": copy.deepcopy(self.posts[post_id])}

    async def publish_blog_post(self, post_id: int) -> Result:
        post = self._find(self.posts, "post", post_id)
        if post["status"] == "PUBLISHED":
            raise AlreadyProcessed(f"Post #{post_id} is already published")
        if post["status"] == "TRASHED":
            raise InvalidParameters(f"Post #{post_id} is in the trash")
        return {"post": self._touch(post, status="PUBLISHED")}

    async def trash_blog_post(self, post_id: int) -> Result:
        post = self._find(self.posts, "post", post_id)
        if post["status"] == "TRASHED":
            raise AlreadyProcessed(f"Post #{post_id} is already in the trash")
        return {"post": self._touch(post, status="TRASHED")}

    # Site settings

    async def get_site_status(self) -> Result:
        return {"status": {
            "maintenanceMode": self.site["maintenanceMode"],
            "lastCacheClear": self.site["lastCacheClear"],
            "status": "maintenance" if self.site["maintenanceMode"] else "operational",
        }}

    async def toggle_maintenance_mode(self, enabled: bool, approval_id: str) -> Result:
        if self.site["maintenanceMode"] == enabled:
            raise AlreadyProcessed(f"Maintenance mode is already {'on' if enabled else 'off'}")
        self.site["maintenanceMode"] = enabled
        return {"maintenanceMode": enabled}

    async def clear_cache(self) -> Result:
        self.site["lastCacheClear"] = self._now()
        return {"cleared": True, "timestamp": self.site["lastCacheClear"]}

    async def health_check(self) -> Result:
        return {"health": {
            "status": "healthy",
            "database": "connected",
            "timestamp": self._now(),
            "latency": 0.0,
        }}
