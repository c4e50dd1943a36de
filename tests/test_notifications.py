"""Tests for the notification store."""

from datetime import datetime, timedelta, timezone

import pytest

from lifecycle import NotFoundError, ForbiddenError
from models import NotificationType
from notifications import NotificationStore, NotificationDeliveryError


class Clock:
    """Clock that advances one minute per call."""

    def __init__(self):
        self.now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def clocked(store, push_sender):
    return NotificationStore(store, push_sender=push_sender, clock=Clock())


async def create_order_note(notifications, user_id='u1', title='Order update'):
    return await notifications.create(
        user_id, NotificationType.ORDER, title, 'Your order is on its way',
        {'type': 'order', 'orderId': 'o1'}
    )


@pytest.mark.asyncio
async def test_create_stores_and_pushes(store, notifications, push_sender):
    note = await create_order_note(notifications)

    assert note.id
    assert not note.read
    assert (await store.get('notifications', note.id))['userId'] == 'u1'
    assert push_sender.sent == [{
        'user_id': 'u1',
        'title': 'Order update',
        'body': 'Your order is on its way',
        'payload': {'type': 'order', 'orderId': 'o1', 'notificationId': note.id},
    }]


@pytest.mark.asyncio
async def test_settings_suppress_push_but_keep_record(notifications, push_sender):
    await notifications.update_settings('u1', order_updates=False)

    note = await create_order_note(notifications)

    assert push_sender.sent == []
    assert await notifications.get(note.id) == note
    settings = await notifications.get_settings('u1')
    assert not settings.order_updates
    assert settings.swap_updates


@pytest.mark.asyncio
async def test_failed_push_reports_stored_notification(notifications, push_sender):
    push_sender.fail = True

    with pytest.raises(NotificationDeliveryError) as exc_info:
        await create_order_note(notifications)

    assert exc_info.value.stored
    assert exc_info.value.notification.user_id == 'u1'
    assert await notifications.unread_count('u1') == 1


@pytest.mark.asyncio
async def test_list_is_newest_first_with_limit(clocked):
    first = await create_order_note(clocked, title='first')
    second = await create_order_note(clocked, title='second')
    third = await create_order_note(clocked, title='third')
    await create_order_note(clocked, user_id='u2')

    listed = await clocked.list_for_user('u1')
    assert [n.id for n in listed] == [third.id, second.id, first.id]

    assert [n.id for n in await clocked.list_for_user('u1', limit=2)] == [third.id, second.id]

    await clocked.mark_read(second.id)
    unread = await clocked.list_for_user('u1', unread_only=True)
    assert [n.id for n in unread] == [third.id, first.id]


@pytest.mark.asyncio
async def test_malformed_notifications_are_skipped(store, notifications):
    await create_order_note(notifications)
    await store.put('notifications', 'broken', {'userId': 'u1', 'type': 'unknown'})

    assert len(await notifications.list_for_user('u1')) == 1


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(notifications):
    note = await create_order_note(notifications)

    first = await notifications.mark_read(note.id, 'u1')
    second = await notifications.mark_read(note.id, 'u1')

    assert first.read and second.read
    assert await notifications.unread_count('u1') == 0


@pytest.mark.asyncio
async def test_mark_read_checks_owner(notifications):
    note = await create_order_note(notifications)

    with pytest.raises(ForbiddenError):
        await notifications.mark_read(note.id, 'someone-else')
    with pytest.raises(NotFoundError):
        await notifications.mark_read('missing', 'u1')
    assert not (await notifications.get(note.id)).read


@pytest.mark.asyncio
async def test_mark_all_read_and_clear(notifications):
    for _ in range(3):
        await create_order_note(notifications)
    await create_order_note(notifications, user_id='u2')

    assert await notifications.mark_all_read('u1') == 3
    assert await notifications.mark_all_read('u1') == 0
    assert await notifications.unread_count('u1') == 0
    assert await notifications.unread_count('u2') == 1

    assert await notifications.clear_all('u1') == 3
    assert await notifications.list_for_user('u1') == []
    assert len(await notifications.list_for_user('u2')) == 1


@pytest.mark.asyncio
async def test_subscribe_delivers_current_list(store, notifications):
    received = []
    await create_order_note(notifications)

    unsubscribe = await notifications.subscribe('u1', received.append)
    await create_order_note(notifications)
    await store.flush()
    unsubscribe()
    await create_order_note(notifications)
    await store.flush()

    assert [len(batch) for batch in received] == [1, 2]


@pytest.mark.asyncio
async def test_new_store_broadcast_skips_owner(store, notifications):
    for uid, role in [('c1', 'Customer'), ('c2', 'Customer'), ('owner', 'Customer'), ('s1', 'Seller')]:
        await store.put('users', uid, {'uid': uid, 'role': role})

    result = await notifications.notify_new_store('store-1', 'Campus Books', 'owner')

    assert result == {'sent': 2, 'failed': 0}
    recipients = sorted(n['userId'] for n in await store.query('notifications'))
    assert recipients == ['c1', 'c2']


@pytest.mark.asyncio
async def test_new_product_broadcast_counts_failures(store, notifications, push_sender):
    await store.put('users', 'c1', {'uid': 'c1', 'role': 'Customer'})
    push_sender.fail = True

    result = await notifications.notify_new_product(
        'listing-9', 'store-1', 'Graphing Calculator', '45.00', 'Campus Books', 'owner'
    )

    assert result == {'sent': 0, 'failed': 1}
    [note] = await store.query('notifications', {'userId': 'c1'})
    assert note['body'] == 'Campus Books added Graphing Calculator for $45.00'
    assert note['data']['listingId'] == 'listing-9'
