"""Orders module for managing marketplace orders.

This module handles order creation, lookup and status changes. Totals are
computed here from the items; status changes go through the lifecycle
manager, which enforces the order state machine and notifies the customer.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from database import DocumentStore, get_store
from lifecycle import (
    LifecycleManager, TransitionResult, ORDER_MACHINE,
    NotFoundError, InvalidRequestError, build_model, newest_first
)
from models import (
    DeliveryMethod, DeliveryPayee, NotificationType, Order, OrderItem, OrderStatus, utcnow
)
from notifications import NotificationStore, NotificationDeliveryError

logger = logging.getLogger(__name__)

COLLECTION = ORDER_MACHINE.collection


class OrderManager:
    """Manages order operations and state transitions."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        notifications: Optional[NotificationStore] = None,
        lifecycle: Optional[LifecycleManager] = None
    ) -> None:
        """Initialize order manager.

        Args:
            store: Optional document store. If not provided, will get from database module.
            notifications: Notification store; built on ``store`` when omitted
            lifecycle: Lifecycle manager; built on ``store`` when omitted
        """
        self.store = store
        self.notifications = notifications
        self.lifecycle = lifecycle

    async def ensure_store(self) -> None:
        """Ensure we have a store and the services built on it."""
        if not self.store:
            self.store = await get_store()
        if not self.notifications:
            self.notifications = NotificationStore(self.store)
        if not self.lifecycle:
            self.lifecycle = LifecycleManager(self.store, self.notifications)

    async def create_order(
        self,
        customer_id: str,
        items: Iterable[Union[OrderItem, Dict[str, Any]]],
        delivery_method: Union[DeliveryMethod, str] = DeliveryMethod.PICKUP,
        payment_method: Optional[str] = None,
        shipping_address: Optional[str] = None,
        delivery_cost: Union[Decimal, str, int] = Decimal('0'),
        store_id: Optional[str] = None,
        delivery_payee: Optional[Union[DeliveryPayee, str]] = None
    ) -> Dict[str, Any]:
        """Place a new order and notify every seller on it.

        Args:
            customer_id: Buying user
            items: Order items as models or documents (``unitPrice``/``priceAtPurchase``)
            delivery_method: ``pickup`` or ``delivery``
            payment_method: Free-form payment method, e.g. ``cash``
            shipping_address: Address for delivery orders
            delivery_cost: Delivery fee added to the subtotal
            store_id: Store the order was placed with
            delivery_payee: Who keeps the delivery fee, ``store`` or ``partner``

        Returns:
            Stored order document

        Raises:
            InvalidRequestError: If the items or amounts violate order invariants
        """
        await self.ensure_store()

        parsed_items = [
            item if isinstance(item, OrderItem) else build_model(OrderItem, item)
            for item in items
        ]
        if not parsed_items:
            raise InvalidRequestError("An order needs at least one item")

        subtotal = sum((item.line_total for item in parsed_items), Decimal('0'))
        try:
            delivery_cost = Decimal(str(delivery_cost))
        except ArithmeticError as e:
            raise InvalidRequestError(f"Invalid delivery cost: {delivery_cost}") from e

        # The store keeps the delivery fee only when it delivers itself
        store_revenue = subtotal
        if delivery_payee == DeliveryPayee.STORE:
            store_revenue += delivery_cost

        now = utcnow()
        order = build_model(Order, {
            'customer_id': customer_id,
            'store_id': store_id,
            'items': [item.model_dump() for item in parsed_items],
            'item_subtotal': subtotal,
            'delivery_cost': delivery_cost,
            'total_amount': subtotal + delivery_cost,
            'status': OrderStatus.PENDING,
            'delivery_method': delivery_method,
            'delivery_payee': delivery_payee,
            'payment_method': payment_method,
            'shipping_address': shipping_address,
            'store_revenue_amount': store_revenue,
            'created_at': now,
            'updated_at': now,
        })

        doc = await self.store.put(COLLECTION, None, order.to_document())
        logger.info(
            f"Created order {doc['id']} for {customer_id}: "
            f"{len(parsed_items)} items, total {doc['totalAmount']}"
        )

        for seller_id in order.seller_ids:
            await self._notify_seller(seller_id, doc)
        return doc

    async def _notify_seller(self, seller_id: str, doc: Dict[str, Any]) -> None:
        count = sum(
            item['quantity'] for item in doc['items'] if item['sellerId'] == seller_id
        )
        try:
            await self.notifications.create(
                user_id=seller_id,
                type=NotificationType.ORDER,
                title='New Order',
                body=f"You have a new order #{doc['id'][-6:]} for {count} item(s)",
                data={
                    'type': NotificationType.ORDER.value,
                    'orderId': doc['id'],
                    'status': doc['status'],
                }
            )
        except NotificationDeliveryError as e:
            logger.warning(f"Order {doc['id']} placed but seller {seller_id} was not notified: {e}")

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        """Get an order by id.

        Raises:
            NotFoundError: If the order does not exist
        """
        await self.ensure_store()
        doc = await self.store.get(COLLECTION, order_id)
        if doc is None:
            raise NotFoundError(ORDER_MACHINE.kind, order_id)
        return doc

    async def get_customer_orders(self, customer_id: str) -> List[Dict[str, Any]]:
        """Orders placed by a customer, newest first."""
        await self.ensure_store()
        orders = await self.store.query(COLLECTION, {'customerId': customer_id})
        return newest_first(orders)

    async def get_seller_orders(
        self,
        seller_id: str,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Orders containing at least one item sold by ``seller_id``, newest first."""
        await self.ensure_store()
        where = {'status': status} if status else None
        orders = [
            doc for doc in await self.store.query(COLLECTION, where)
            if any(item.get('sellerId') == seller_id for item in doc.get('items') or [])
        ]
        return newest_first(orders)

    async def update_status(self, order_id: str, actor_id: str, new_status: str) -> TransitionResult:
        """Move an order to ``new_status`` on behalf of a seller."""
        await self.ensure_store()
        return await self.lifecycle.apply_transition(ORDER_MACHINE, order_id, actor_id, new_status)


__all__ = ['OrderManager', 'COLLECTION']
