"""Notification store.

Notifications are append-only records in the ``notifications`` collection.
Creating one writes the record and then pushes it to the recipient's devices
when their settings allow that notification type. The record is written even
when the push is suppressed or fails.
"""
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from database import DocumentStore
from lifecycle.exceptions import NotFoundError, ForbiddenError
from models import Notification, NotificationSettings, NotificationType, utcnow
from .exceptions import NotificationDeliveryError
from .fanout import LiveView, MergedView, NotificationView, SubscriptionFanout, ViewCallback
from .push import PushSender

logger = logging.getLogger(__name__)

COLLECTION = 'notifications'
SETTINGS_COLLECTION = 'notificationSettings'
USERS_COLLECTION = 'users'
CUSTOMER_ROLE = 'Customer'


class NotificationStore:
    """Creates, reads and tracks notifications for users."""

    def __init__(
        self,
        store: DocumentStore,
        push_sender: Optional[PushSender] = None,
        clock: Callable = utcnow
    ):
        """Initialize notification store.

        Args:
            store: Document store holding notifications and settings
            push_sender: Push transport; None stores notifications without pushing
            clock: Returns the aware datetime stamped as ``createdAt``
        """
        self.store = store
        self.push_sender = push_sender
        self.clock = clock

    async def create(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Write a notification for ``user_id`` and push it.

        Raises:
            NotificationDeliveryError: If the write failed (``notification`` is
                None) or the push failed (``notification`` is the stored record)
        """
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            data=dict(data or {}),
            read=False,
            created_at=self.clock()
        )

        try:
            doc = await self.store.put(COLLECTION, None, notification.to_document())
        except Exception as e:
            logger.error(f"Failed to store notification for {user_id}: {e}")
            raise NotificationDeliveryError(
                f"Could not store notification for {user_id}: {e}", user_id
            ) from e

        stored = Notification.model_validate(doc)
        logger.debug(f"Created {stored.type} notification {stored.id} for {user_id}")
        await self._push(stored)
        return stored

    async def _push(self, notification: Notification) -> None:
        if self.push_sender is None:
            return

        settings = await self.get_settings(notification.user_id)
        if not settings.allows(notification.type):
            logger.debug(
                f"Push of {notification.type} notification suppressed by "
                f"settings of {notification.user_id}"
            )
            return

        payload = {
            'type': notification.type,
            **notification.data,
            'notificationId': notification.id,
        }
        try:
            result = self.push_sender.send_push(
                notification.user_id, notification.title, notification.body, payload
            )
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Push to {notification.user_id} failed: {e}")
            raise NotificationDeliveryError(
                f"Could not push notification {notification.id}: {e}",
                notification.user_id,
                notification=notification
            ) from e

    async def get(self, notification_id: str) -> Optional[Notification]:
        doc = await self.store.get(COLLECTION, notification_id)
        return Notification.model_validate(doc) if doc else None

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Notification]:
        """User's notifications, newest first."""
        where: Dict[str, Any] = {'userId': user_id}
        if unread_only:
            where['read'] = False

        notifications = []
        for doc in await self.store.query(COLLECTION, where):
            try:
                notifications.append(Notification.model_validate(doc))
            except ValidationError as e:
                logger.warning(f"Skipping malformed notification {doc.get('id')}: {e}")

        notifications.sort(key=lambda n: (n.created_at, n.id or ''), reverse=True)
        if limit is not None:
            notifications = notifications[:limit]
        return notifications

    async def unread_count(self, user_id: str) -> int:
        return len(await self.store.query(COLLECTION, {'userId': user_id, 'read': False}))

    async def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> Notification:
        """Mark one notification read. Marking it again is a no-op.

        Raises:
            NotFoundError: If the notification does not exist
            ForbiddenError: If ``user_id`` is given and does not own it
        """
        doc = await self.store.get(COLLECTION, notification_id)
        if doc is None:
            raise NotFoundError('notification', notification_id)
        if user_id is not None and doc.get('userId') != user_id:
            raise ForbiddenError(user_id, f"read notification {notification_id}")
        if doc.get('read'):
            return Notification.model_validate(doc)

        updated = await self.store.update(COLLECTION, notification_id, {'read': True})
        if updated is None:
            raise NotFoundError('notification', notification_id)
        return Notification.model_validate(updated)

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every notification unread at call time as read.

        Notifications created while this runs may stay unread.

        Returns:
            Number of notifications this call changed
        """
        unread = await self.store.query(COLLECTION, {'userId': user_id, 'read': False})
        marked = 0
        for doc in unread:
            updated = await self.store.update_if(
                COLLECTION, doc['id'], {'read': True}, expected={'read': False}
            )
            if updated is not None:
                marked += 1
        logger.info(f"Marked {marked} notifications read for {user_id}")
        return marked

    async def clear_all(self, user_id: str) -> int:
        """Delete every notification of ``user_id``."""
        docs = await self.store.query(COLLECTION, {'userId': user_id})
        cleared = 0
        for doc in docs:
            if await self.store.delete(COLLECTION, doc['id']) is not None:
                cleared += 1
        logger.info(f"Cleared {cleared} notifications for {user_id}")
        return cleared

    async def subscribe(self, user_id: str, callback: ViewCallback) -> Callable[[], None]:
        """Watch a user's notifications.

        ``callback`` receives the full list, newest first, after every change.

        Returns:
            Function that ends the subscription
        """
        view = await NotificationView(self.store, user_id, callback).open()
        return view.close

    async def get_settings(self, user_id: str) -> NotificationSettings:
        doc = await self.store.get(SETTINGS_COLLECTION, user_id)
        if doc is None:
            return NotificationSettings(user_id=user_id)
        return NotificationSettings.model_validate(doc)

    async def update_settings(self, user_id: str, **changes: bool) -> NotificationSettings:
        current = await self.get_settings(user_id)
        settings = NotificationSettings.model_validate({
            **current.model_dump(),
            **changes,
            'user_id': user_id,
            'updated_at': self.clock(),
        })
        await self.store.put(SETTINGS_COLLECTION, user_id, settings.to_document())
        logger.info(f"Updated notification settings for {user_id}")
        return settings

    async def _broadcast_to_customers(
        self,
        exclude_user_id: str,
        title: str,
        body: str,
        data: Dict[str, Any]
    ) -> Dict[str, int]:
        customers = await self.store.query(USERS_COLLECTION, {'role': CUSTOMER_ROLE})
        sent = failed = 0
        for user in customers:
            user_id = user.get('uid') or user.get('id')
            if not user_id or user_id == exclude_user_id:
                continue
            try:
                await self.create(user_id, NotificationType.STORE, title, body, data)
                sent += 1
            except NotificationDeliveryError as e:
                failed += 1
                logger.warning(f"Broadcast to {user_id} failed: {e}")
        logger.info(f"Broadcast '{title}': {sent} sent, {failed} failed")
        return {'sent': sent, 'failed': failed}

    async def notify_new_store(self, store_id: str, store_name: str, owner_id: str) -> Dict[str, int]:
        """Tell every customer except the owner about a new store."""
        return await self._broadcast_to_customers(
            owner_id,
            'New Store Available',
            f'{store_name} just opened on campus. Check it out!',
            {'type': NotificationType.STORE.value, 'storeId': store_id}
        )

    async def notify_new_product(
        self,
        listing_id: str,
        store_id: str,
        title: str,
        price: Any,
        store_name: str,
        owner_id: str
    ) -> Dict[str, int]:
        """Tell every customer except the owner about a new product."""
        return await self._broadcast_to_customers(
            owner_id,
            'New Product Available',
            f'{store_name} added {title} for ${price}',
            {'type': NotificationType.STORE.value, 'storeId': store_id, 'listingId': listing_id}
        )


__all__ = [
    'NotificationStore', 'NotificationDeliveryError',
    'PushSender',
    'LiveView', 'MergedView', 'NotificationView', 'SubscriptionFanout',
    'COLLECTION', 'SETTINGS_COLLECTION'
]
