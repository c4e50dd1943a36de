"""Shared fixtures: an in-memory store and the services built on it."""
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from database import MemoryDocumentStore
from lifecycle import LifecycleManager
from notifications import NotificationStore, PushSender
from orders import OrderManager
from rentals import RentalManager
from swaps import SwapManager


class RecordingPushSender(PushSender):
    """Push sender that records every push, or fails when told to."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send_push(self, user_id, title, body, payload):
        if self.fail:
            raise ConnectionError("push transport down")
        self.sent.append({'user_id': user_id, 'title': title, 'body': body, 'payload': payload})


@pytest_asyncio.fixture
async def store():
    """Create and return an empty in-memory document store."""
    store = MemoryDocumentStore()
    yield store
    await store.close()


@pytest.fixture
def push_sender():
    return RecordingPushSender()


@pytest.fixture
def notifications(store, push_sender):
    return NotificationStore(store, push_sender=push_sender)


@pytest.fixture
def lifecycle(store, notifications):
    return LifecycleManager(store, notifications, max_retries=3)


@pytest.fixture
def order_manager(store, notifications, lifecycle):
    return OrderManager(store, notifications, lifecycle)


@pytest.fixture
def swap_manager(store, notifications, lifecycle):
    return SwapManager(store, notifications, lifecycle)


@pytest.fixture
def rental_manager(store, notifications, lifecycle):
    return RentalManager(store, notifications, lifecycle)


@pytest_asyncio.fixture
async def pending_swap(swap_manager) -> Dict[str, Any]:
    """A pending swap request from alice to bob."""
    return await swap_manager.create_request(
        from_user_id='alice',
        to_user_id='bob',
        from_listing_id='listing-a',
        to_listing_id='listing-b',
        message='Trade my calculator for your lamp?',
        from_listing_title='Calculator',
        to_listing_title='Desk Lamp'
    )


@pytest_asyncio.fixture
async def pending_rental(rental_manager) -> Dict[str, Any]:
    """A pending two-day rental of olivia's bike by ryan."""
    return await rental_manager.create_request(
        listing_id='bike-1',
        renter_id='ryan',
        owner_id='olivia',
        start_date='2024-01-01',
        end_date='2024-01-03',
        daily_rate='20'
    )


@pytest_asyncio.fixture
async def pending_order(order_manager) -> Dict[str, Any]:
    """A pending order by carol with items from sam."""
    return await order_manager.create_order(
        customer_id='carol',
        items=[
            {'listingId': 'mug', 'sellerId': 'sam', 'title': 'Mug', 'unitPrice': '40', 'quantity': 2},
            {'listingId': 'pen', 'sellerId': 'sam', 'title': 'Pen', 'unitPrice': '20', 'quantity': 1},
        ],
        delivery_method='delivery',
        payment_method='cash',
        delivery_cost='5'
    )
