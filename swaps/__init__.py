"""Swap requests: one user offers a listing in exchange for another's."""
import logging
from typing import Any, Dict, List, Optional

from database import DocumentStore, get_store
from lifecycle import (
    LifecycleManager, TransitionResult, SWAP_MACHINE,
    NotFoundError, build_model, newest_first
)
from models import NotificationType, SwapRequest, SwapStatus, utcnow
from notifications import NotificationStore, NotificationDeliveryError

logger = logging.getLogger(__name__)

COLLECTION = SWAP_MACHINE.collection


class SwapManager:
    """Creates swap requests and moves them through their lifecycle."""

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
        from_user_id: str,
        to_user_id: str,
        from_listing_id: str,
        to_listing_id: str,
        message: Optional[str] = None,
        from_listing_title: Optional[str] = None,
        to_listing_title: Optional[str] = None
    ) -> Dict[str, Any]:
        """Offer ``from_listing_id`` for ``to_listing_id`` and notify its owner.

        Raises:
            InvalidRequestError: If both sides are the same user or the same listing
        """
        await self.ensure_store()

        now = utcnow()
        request = build_model(SwapRequest, {
            'from_user_id': from_user_id,
            'to_user_id': to_user_id,
            'from_listing_id': from_listing_id,
            'to_listing_id': to_listing_id,
            'from_listing_title': from_listing_title,
            'to_listing_title': to_listing_title,
            'message': message.strip() if message else None,
            'status': SwapStatus.PENDING,
            'created_at': now,
            'updated_at': now,
        })

        doc = await self.store.put(COLLECTION, None, request.to_document())
        logger.info(
            f"Swap request {doc['id']}: {from_user_id} offers {from_listing_id} "
            f"for {to_listing_id} of {to_user_id}"
        )

        try:
            await self.notifications.create(
                user_id=to_user_id,
                type=NotificationType.SWAP,
                title='New Swap Request',
                body=f"Someone wants to swap {from_listing_title or 'an item'} "
                     f"for your {to_listing_title or 'item'}",
                data={
                    'type': NotificationType.SWAP.value,
                    'requestId': doc['id'],
                    'status': doc['status'],
                }
            )
        except NotificationDeliveryError as e:
            logger.warning(f"Swap request {doc['id']} sent but {to_user_id} was not notified: {e}")
        return doc

    async def get_request(self, request_id: str) -> Dict[str, Any]:
        await self.ensure_store()
        doc = await self.store.get(COLLECTION, request_id)
        if doc is None:
            raise NotFoundError(SWAP_MACHINE.kind, request_id)
        return doc

    async def get_sent_requests(self, user_id: str) -> List[Dict[str, Any]]:
        await self.ensure_store()
        return newest_first(await self.store.query(COLLECTION, {'fromUserId': user_id}))

    async def get_received_requests(self, user_id: str) -> List[Dict[str, Any]]:
        await self.ensure_store()
        return newest_first(await self.store.query(COLLECTION, {'toUserId': user_id}))

    async def transition(self, request_id: str, actor_id: str, new_status: str) -> TransitionResult:
        await self.ensure_store()
        return await self.lifecycle.apply_transition(SWAP_MACHINE, request_id, actor_id, new_status)

    async def accept(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, SwapStatus.ACCEPTED.value)

    async def reject(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, SwapStatus.REJECTED.value)

    async def cancel(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, SwapStatus.CANCELLED.value)

    async def complete(self, request_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(request_id, actor_id, SwapStatus.COMPLETED.value)


__all__ = ['SwapManager', 'COLLECTION']
