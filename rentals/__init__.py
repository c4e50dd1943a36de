"""Rental requests: booking a listing for a date range at a daily rate.

The cost is computed here as ``daily_rate * days``, with partial days rounded
up and at least one day billed.
"""
import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from database import DocumentStore, get_store
from lifecycle import (
    LifecycleManager, TransitionResult, RENTAL_MACHINE,
    NotFoundError, InvalidRequestError, build_model, newest_first
)
from models import NotificationType, RentalRequest, RentalStatus, ensure_aware, rental_days, utcnow
from notifications import NotificationStore, NotificationDeliveryError

logger = logging.getLogger(__name__)

COLLECTION = RENTAL_MACHINE.collection

DateLike = Union[datetime, date, str]


def to_datetime(value: DateLike) -> datetime:
    """Aware datetime from a datetime, a date (midnight UTC) or an ISO string."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError as e:
            raise InvalidRequestError(f"Invalid date: {value}") from e
    if not isinstance(value, datetime):
        value = datetime.combine(value, time(), tzinfo=timezone.utc)
    return ensure_aware(value)


def rental_cost(daily_rate: Decimal, start_date: datetime, end_date: datetime) -> Decimal:
    return daily_rate * rental_days(start_date, end_date)


class RentalManager:
    """Creates rental requests and moves them through their lifecycle."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        notifications: Optional[NotificationStore] = None,
        lifecycle: Optional[LifecycleManager] = None
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.lifecycle = lifecycle

    async def ensure_store(self) -> None:
        if not self.store:
            self.store = await get_store()
        if not self.notifications:
            self.notifications = NotificationStore(self.store)
        if not self.lifecycle:
            self.lifecycle = LifecycleManager(self.store, self.notifications)

    async def create_request(
        self,
        listing_id: str,
        renter_id: str,
        owner_id: str,
        start_date: DateLike,
        end_date: DateLike,
        daily_rate: Union[Decimal, str, int],
        message: Optional[str] = None,
        terms: Optional[str] = None
    ) -> Dict[str, Any]:
        """Request to rent ``listing_id`` and notify its owner.

        Raises:
            InvalidRequestError: If the dates are not ordered, the rate is
                invalid, or the renter owns the listing
        """
        await self.ensure_store()

        start = to_datetime(start_date)
        end = to_datetime(end_date)
        try:
            rate = Decimal(str(daily_rate))
        except InvalidOperation as e:
            raise InvalidRequestError(f"Invalid daily rate: {daily_rate}") from e
        total = rental_cost(rate, start, end)

        if terms is None and start < end:
            terms = (
                f"Rental period: {start.date().isoformat()} to {end.date().isoformat()}. "
                f"Total cost: {total:.2f}"
            )

        now = utcnow()
        request = build_model(RentalRequest, {
            'listing_id': listing_id,
            'renter_id': renter_id,
            'owner_id': owner_id,
            'start_date': start,
            'end_date': end,
            'daily_rate': rate,
            'total_cost': total,
            'status': RentalStatus.PENDING,
            'message': message.strip() if message else None,
            'terms': terms,
            'created_at': now,
            'updated_at': now,
        })

        doc = await self.store.put(COLLECTION, None, request.to_document())
        logger.info(
            f"Rental request {doc['id']}: {renter_id} books {listing_id} "
            f"for {request.days} day(s) at {rate}"
        )

        try:
            await self.notifications.create(
                user_id=owner_id,
                type=NotificationType.RENTAL,
                title='New Rental Request',
                body=f"You have a new rental request for {request.days} day(s)",
                data={
                    'type': NotificationType.RENTAL.value,
                    'requestId': doc['id'],
                    'status': doc['status'],
                }
            )
        except NotificationDeliveryError as e:
            logger.warning(f"Rental request {doc['id']} sent but {owner_id} was not notified: {e}")
        return doc

    async def get_request(self, request_id: str) -> Dict[str, Any]:
        await self.ensure_store()
        doc = await self.store.get(COLLECTION, request_id)
        if doc is None:
            raise NotFoundError(RENTAL_MACHINE.kind, request_id)
        return doc

    async def get_renter_requests(self, renter_id: str) -> List[Dict[str, Any]]:
        await self.ensure_store()
        return newest_first(await self.store.query(COLLECTION, {'renterId': renter_id}))

    async def get_owner_requests(self, owner_id: str) -> List[Dict[str, Any]]:
        await self.ensure_store()
        return newest_first(await self.store.query(COLLECTION, {'ownerId': owner_id}))

    async def transition(self, request_id: str, actor_id: str, new_status: str) -> TransitionResult:
        await self.ensure_store()
        return await self.lifecycle.apply_transition(RENTAL_MACHINE, request_id, actor_id, new_status)

    async def approve(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, RentalStatus.APPROVED.value)

    async def reject(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, RentalStatus.REJECTED.value)

    async def cancel(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, RentalStatus.CANCELLED.value)

    async def start(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, RentalStatus.ACTIVE.value)

    async def complete(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, RentalStatus.COMPLETED.value)


__all__ = ['RentalManager', 'rental_cost', 'to_datetime', 'COLLECTION']
