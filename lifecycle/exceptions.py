"""Errors raised by request lifecycle operations.

``NotFoundError``, ``ForbiddenError`` and ``InvalidTransitionError`` are always
surfaced to the caller. Notification delivery problems are not errors of the
transition itself; see ``notifications.NotificationDeliveryError``.
"""
from typing import Optional


class LifecycleError(Exception):
    """Base class for lifecycle errors."""
    pass


class NotFoundError(LifecycleError):
    """Raised when an order, request or notification does not exist."""
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class ForbiddenError(LifecycleError):
    """Raised when the actor may not perform the requested action."""
    def __init__(self, actor_id: str, action: str, reason: Optional[str] = None):
        self.actor_id = actor_id
        self.action = action
        message = f"User {actor_id} may not {action}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InvalidTransitionError(LifecycleError):
    """Raised when a status change is not legal from the current status.

    ``current_status`` lets callers resynchronize their view.
    """
    def __init__(self, kind: str, entity_id: str, current_status: str, requested_status: str):
        self.kind = kind
        self.entity_id = entity_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot move {kind} {entity_id} from {current_status} to {requested_status}"
        )


class InvalidRequestError(LifecycleError):
    """Raised when a new order or request violates its invariants."""
    pass
