"""
Business-operation collaborators.

BusinessOperations is the interface the dispatch router calls; one coroutine
per Action Catalog entry, named after the entry's handler. Implementations
return plain JSON-ready dicts in the wire shape of the action's data model
and report failures with the typed OperationError subclasses below, keeping
not-found/validation problems distinct from transient ones.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .schema import ErrorCode, PipelineError


class OperationError(PipelineError):
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.suggestion = suggestion


class EntityNotFound(OperationError):
    code = ErrorCode.ACTION_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any, suggestion: Optional[str] = None):
        super().__init__(f"{entity.capitalize()} #{entity_id} not found", suggestion)
        self.entity = entity
        self.entity_id = entity_id


class InvalidParameters(OperationError):
    code = ErrorCode.VALIDATION_ERROR


class AlreadyProcessed(OperationError):
    code = ErrorCode.ALREADY_PROCESSED


class OperationUnavailable(OperationError):
    """Transient failure of the backing store or gateway."""
    code = ErrorCode.UPSTREAM_UNAVAILABLE


Result = Dict[str, Any]


class BusinessOperations(ABC):
    """The storefront operations the agent can reach."""

    # Tickets
    @abstractmethod
    async def get_ticket(self, ticket_id: int) -> Result: ...

    @abstractmethod
    async def get_open_tickets(self) -> Result: ...

    @abstractmethod
    async def close_ticket(self, ticket_id: int, resolution: str) -> Result: ...

    @abstractmethod
    async def reopen_ticket(self, ticket_id: int) -> Result: ...

    @abstractmethod
    async def update_ticket_priority(self, ticket_id: int, priority: str) -> Result: ...

    @abstractmethod
    async def assign_ticket(self, ticket_id: int, assignee_id: int) -> Result: ...

    # Orders
    @abstractmethod
    async def get_order(self, order_id: int) -> Result: ...

    @abstractmethod
    async def get_pending_orders(self) -> Result: ...

    @abstractmethod
    async def update_order_status(self, order_id: int, status: str) -> Result: ...

    @abstractmethod
    async def process_refund(self, order_id: int, reason: str, approval_id: str) -> Result:
        """Refund an order. Repeating the call with the same approval id is a no-op."""

    @abstractmethod
    async def cancel_order(self, order_id: int, reason: Optional[str] = None) -> Result: ...

    @abstractmethod
    async def notify_customer(self, order_id: int, subject: str, message: str) -> Result: ...

    @abstractmethod
    async def get_order_stats(self) -> Result: ...

    # Blog posts
    @abstractmethod
    async def get_blog_post(self, post_id: int) -> Result: ...

    @abstractmethod
    async def create_blog_post(self, title: str, content: str, author_id: int,
                               excerpt: Optional[str] = None) -> Result: ...

    @abstractmethod
    async def publish_blog_post(self, post_id: int) -> Result: ...

    @abstractmethod
    async def trash_blog_post(self, post_id: int) -> Result: ...

    # Site settings
    @abstractmethod
    async def get_site_status(self) -> Result: ...

    @abstractmethod
    async def toggle_maintenance_mode(self, enabled: bool, approval_id: str) -> Result: ...

    @abstractmethod
    async def clear_cache(self) -> Result: ...

    @abstractmethod
    async def health_check(self) -> Result: ...
