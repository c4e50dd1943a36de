"""Tests for live views and subscription fan-out."""

import asyncio

import pytest

from models import NotificationType
from database import MemoryDocumentStore
from notifications import LiveView, NotificationView, SubscriptionFanout


async def notify(notifications, user_id='u1'):
    return await notifications.create(
        user_id, NotificationType.SWAP, 'Swap Request Accepted',
        'Your swap request has been accepted', {'type': 'swap', 'requestId': 's1'}
    )


@pytest.mark.asyncio
async def test_every_view_sees_each_change(store, notifications):
    """Test that two views on the same user both receive a new notification."""
    phone, laptop = [], []
    fanout = SubscriptionFanout(store)
    await fanout.watch_notifications('u1', phone.append)
    await fanout.watch_notifications('u1', laptop.append)

    note = await notify(notifications)
    await store.flush()

    assert [n.id for n in phone[-1]] == [note.id]
    assert [n.id for n in laptop[-1]] == [note.id]
    assert fanout.open_views == 2


@pytest.mark.asyncio
async def test_unread_count_follows_mark_read(store, notifications):
    view = await NotificationView(store, 'u1', lambda items: None).open()
    note = await notify(notifications)
    await notify(notifications)
    await store.flush()
    assert view.unread_count == 2

    await notifications.mark_read(note.id)
    await store.flush()
    assert view.unread_count == 1

    await notifications.clear_all('u1')
    await store.flush()
    assert view.unread_count == 0
    assert len(view) == 0
    view.close()


@pytest.mark.asyncio
async def test_closed_view_ignores_changes(store, notifications):
    received = []
    view = await NotificationView(store, 'u1', received.append).open()
    assert received == [[]]

    view.close()
    view.close()
    await notify(notifications)
    await store.flush()

    assert received == [[]]
    assert view.closed
    assert store.subscriber_count() == 0


@pytest.mark.asyncio
async def test_view_drops_documents_that_stop_matching(store):
    received = []
    async with LiveView(store, 'swapRequests', {'status': 'pending'}, received.append) as view:
        await store.put('swapRequests', 's1', {'status': 'pending', 'createdAt': '2024-01-01'})
        await store.update('swapRequests', 's1', {'status': 'accepted'})
        await store.update('swapRequests', 's1', {'message': 'unrelated'})
        await store.flush()
        assert len(view) == 0

    assert [len(batch) for batch in received] == [0, 1, 0]


@pytest.mark.asyncio
async def test_swap_view_merges_sent_and_received(store, swap_manager):
    received = []
    fanout = SubscriptionFanout(store)
    await fanout.watch_swaps('bob', received.append)

    sent = await swap_manager.create_request('bob', 'carol', 'b-1', 'c-1')
    incoming = await swap_manager.create_request('alice', 'bob', 'a-1', 'b-2')
    await swap_manager.create_request('alice', 'carol', 'a-2', 'c-2')
    await store.flush()

    assert {r['id'] for r in received[-1]} == {sent['id'], incoming['id']}

    await swap_manager.accept(incoming['id'], 'bob')
    await store.flush()
    statuses = {r['id']: r['status'] for r in received[-1]}
    assert statuses[incoming['id']] == 'accepted'
    fanout.close_all()


@pytest.mark.asyncio
async def test_seller_view_only_sees_own_items(store, order_manager, pending_order):
    sam, tina = [], []
    fanout = SubscriptionFanout(store)
    await fanout.watch_seller_orders('sam', sam.append)
    await fanout.watch_seller_orders('tina', tina.append)

    assert [o['id'] for o in sam[-1]] == [pending_order['id']]
    assert tina == [[]]

    await order_manager.update_status(pending_order['id'], 'sam', 'in_transit')
    await store.flush()
    assert sam[-1][0]['status'] == 'in_transit'
    assert tina == [[]]


@pytest.mark.asyncio
async def test_customer_and_rental_views(store, order_manager, rental_manager, pending_order, pending_rental):
    orders, rentals = [], []
    fanout = SubscriptionFanout(store)
    await fanout.watch_customer_orders('carol', orders.append)
    await fanout.watch_rentals('olivia', rentals.append)

    assert [o['id'] for o in orders[-1]] == [pending_order['id']]
    assert [r['id'] for r in rentals[-1]] == [pending_rental['id']]

    await rental_manager.approve(pending_rental['id'], 'olivia')
    await store.flush()
    assert rentals[-1][0]['status'] == 'approved'


@pytest.mark.asyncio
async def test_close_all_releases_subscriptions(store):
    fanout = SubscriptionFanout(store)
    await fanout.watch_notifications('u1', lambda items: None)
    await fanout.watch_swaps('u1', lambda items: None)
    await fanout.watch_rentals('u1', lambda items: None)
    assert store.subscriber_count() == 5

    fanout.close_all()

    assert fanout.open_views == 0
    assert store.subscriber_count() == 0


@pytest.mark.asyncio
async def test_async_callbacks(store, notifications):
    received = []

    async def on_change(items):
        received.append([n.id for n in items])

    fanout = SubscriptionFanout(store)
    await fanout.watch_notifications('u1', on_change)
    note = await notify(notifications)
    await store.flush()

    assert received == [[], [note.id]]


@pytest.mark.asyncio
async def test_views_agree_after_interleaved_writes(store, notifications):
    """Test that a slow view cannot be left with an older copy of a notification."""
    released = asyncio.Event()
    slow_batches, fast_batches = [], []

    async def slow(items):
        if items:
            await released.wait()
        slow_batches.append(items)

    slow_view = await NotificationView(store, 'u1', slow).open()
    fast_view = await NotificationView(store, 'u1', fast_batches.append).open()

    note = await asyncio.wait_for(notify(notifications), timeout=1)
    await asyncio.wait_for(notifications.mark_read(note.id), timeout=1)

    released.set()
    await store.flush()

    assert await notifications.unread_count('u1') == 0
    assert slow_view.unread_count == 0
    assert fast_view.unread_count == 0
    assert [n.read for n in slow_batches[-1]] == [True]
    slow_view.close()
    fast_view.close()


def notification_doc(created_at):
    return {
        'userId': 'u1', 'type': 'swap', 'title': 'Swap Request',
        'body': 'You have a new swap request', 'read': False, 'createdAt': created_at
    }


class RacingStore(MemoryDocumentStore):
    """Store whose first query result is overtaken by a write."""

    def __init__(self):
        super().__init__()
        self.raced = False

    async def query(self, collection, where=None):
        docs = await super().query(collection, where)
        if not self.raced:
            self.raced = True
            await self.put(collection, 'late', notification_doc('2024-01-02T00:00:00+00:00'))
            await asyncio.sleep(0.01)
        return docs


@pytest.mark.asyncio
async def test_first_batch_holds_writes_made_while_loading():
    racing = RacingStore()
    await racing.put('notifications', 'early', notification_doc('2024-01-01T00:00:00+00:00'))
    batches = []

    view = await NotificationView(racing, 'u1', batches.append).open()
    await racing.flush()

    assert len(batches) == 1
    assert {n.id for n in batches[0]} == {'early', 'late'}
    assert view.unread_count == 2
    view.close()
    await racing.close()
