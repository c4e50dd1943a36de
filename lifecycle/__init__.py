"""Request lifecycle module.

Applies status transitions to orders, swap requests and rental requests and
emits exactly one notification per applied transition, addressed to the party
who did not act.

Status writes use an optimistic check-then-write: the transition is validated
against the stored document and written with a compare-and-set on the status
it was validated against. Losing a race means re-reading and validating again,
so two parties can never both move a request out of the same status.

The status write and the notification are two separate writes. The status is
the authoritative fact; a failed notification is logged and reported on the
result, never rolled back into the transition.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from database import DocumentStore
from models import Notification, utcnow
from notifications.exceptions import NotificationDeliveryError
from .exceptions import (
    LifecycleError, NotFoundError, ForbiddenError,
    InvalidTransitionError, InvalidRequestError
)
from .machines import (
    StateMachine, Transition, ORDER_MACHINE, SWAP_MACHINE, RENTAL_MACHINE, MACHINES
)

if TYPE_CHECKING:
    from notifications import NotificationStore

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_RETRIES = 3


def build_model(model_cls, data: Dict[str, Any]):
    """Construct a new entity, reporting invariant violations as InvalidRequestError."""
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid {model_cls.__name__}: {problems}") from e


def newest_first(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(docs, key=lambda d: (d.get('createdAt') or '', d.get('id') or ''), reverse=True)


@dataclass
class TransitionResult:
    """Outcome of a successful transition."""
    entity: Dict[str, Any]
    previous_status: str
    notification: Optional[Notification] = None
    delivery_error: Optional[NotificationDeliveryError] = None

    @property
    def notified(self) -> bool:
        return self.notification is not None and self.delivery_error is None


class LifecycleManager:
    """Validates and applies transitions for every request kind."""

    def __init__(
        self,
        store: DocumentStore,
        notifications: 'NotificationStore',
        max_retries: Optional[int] = None,
        clock: Callable = utcnow
    ) -> None:
        """Initialize lifecycle manager.

        Args:
            store: Document store holding orders and requests
            notifications: Notification store used for the counterpart message
            max_retries: Re-read attempts after losing a status race. Defaults
                to the ``transition_retries`` setting.
            clock: Returns the aware datetime stamped as ``updatedAt``
        """
        if max_retries is None:
            from config import settings_conf
            max_retries = settings_conf.get('transition_retries', DEFAULT_TRANSITION_RETRIES)
        self.store = store
        self.notifications = notifications
        self.max_retries = max_retries
        self.clock = clock

    async def apply_transition(
        self,
        machine: StateMachine,
        entity_id: str,
        actor_id: str,
        new_status: str
    ) -> TransitionResult:
        """Move an entity to ``new_status`` on behalf of ``actor_id``.

        Raises:
            NotFoundError: If the entity does not exist
            InvalidTransitionError: If the entity is terminal or ``new_status``
                is not a direct successor of its current status
            ForbiddenError: If the actor's role may not take this transition
        """
        attempts = 0
        while True:
            doc = await self.store.get(machine.collection, entity_id)
            if doc is None:
                raise NotFoundError(machine.kind, entity_id)

            current = doc.get('status')
            self.validate(machine, doc, actor_id, new_status)

            updated = await self.store.update_if(
                machine.collection,
                entity_id,
                {'status': new_status, 'updatedAt': self.clock().isoformat()},
                expected={'status': current}
            )
            if updated is not None:
                break

            attempts += 1
            logger.info(
                f"Status of {machine.kind} {entity_id} changed concurrently "
                f"(attempt {attempts}), re-checking"
            )
            if attempts > self.max_retries:
                raise LifecycleError(
                    f"Gave up moving {machine.kind} {entity_id} to {new_status} "
                    f"after {attempts} conflicting writes"
                )

        logger.info(
            f"{machine.kind.capitalize()} {entity_id}: {current} -> {new_status} by {actor_id}"
        )
        result = TransitionResult(entity=updated, previous_status=current)
        await self._notify_counterpart(machine, updated, actor_id, new_status, result)
        return result

    def validate(
        self,
        machine: StateMachine,
        doc: Dict[str, Any],
        actor_id: str,
        new_status: str
    ) -> Transition:
        """Check a transition against a stored document without applying it."""
        current = doc.get('status')
        entity_id = doc.get('id')

        if machine.is_terminal(current):
            raise InvalidTransitionError(machine.kind, entity_id, current, new_status)

        rule = machine.rule_for(current, new_status)
        if rule is None:
            raise InvalidTransitionError(machine.kind, entity_id, current, new_status)

        if not (machine.roles_of(doc, actor_id) & rule.roles):
            raise ForbiddenError(
                actor_id,
                f"mark {machine.kind} {entity_id} as {new_status}",
                f"requires {' or '.join(sorted(rule.roles))}"
            )
        return rule

    async def _notify_counterpart(
        self,
        machine: StateMachine,
        doc: Dict[str, Any],
        actor_id: str,
        new_status: str,
        result: TransitionResult
    ) -> None:
        recipient = machine.recipient_of(doc, actor_id)
        if not recipient or recipient == actor_id:
            logger.warning(
                f"No counterpart to notify for {machine.kind} {doc.get('id')} "
                f"moved by {actor_id}"
            )
            return

        title, body = machine.describe(doc, new_status)
        try:
            result.notification = await self.notifications.create(
                user_id=recipient,
                type=machine.notification_type,
                title=title,
                body=body,
                data=machine.notification_data(doc, new_status)
            )
        except NotificationDeliveryError as e:
            result.notification = e.notification
            result.delivery_error = e
            logger.warning(
                f"{machine.kind.capitalize()} {doc.get('id')} moved to {new_status} "
                f"but {recipient} was not notified: {e}"
            )


__all__ = [
    'LifecycleManager', 'TransitionResult', 'StateMachine', 'build_model', 'newest_first',
    'ORDER_MACHINE', 'SWAP_MACHINE', 'RENTAL_MACHINE', 'MACHINES',
    'LifecycleError', 'NotFoundError', 'ForbiddenError',
    'InvalidTransitionError', 'InvalidRequestError'
]
