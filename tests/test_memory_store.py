"""Tests for the in-memory document store."""

import asyncio

import pytest

from database import DELETE, INSERT, UPDATE, create_store, MemoryDocumentStore


@pytest.mark.asyncio
async def test_put_generates_id_and_copies(store):
    """Test that stored documents get an id and are isolated from callers."""
    doc = {'name': 'Lamp', 'tags': ['desk']}
    stored = await store.put('listings', None, doc)

    assert stored['id']
    doc['tags'].append('changed')
    stored['name'] = 'changed'

    fetched = await store.get('listings', stored['id'])
    assert fetched == {'id': stored['id'], 'name': 'Lamp', 'tags': ['desk']}


@pytest.mark.asyncio
async def test_query_filters_by_equality(store):
    await store.put('notifications', 'n1', {'userId': 'u1', 'read': False})
    await store.put('notifications', 'n2', {'userId': 'u1', 'read': True})
    await store.put('notifications', 'n3', {'userId': 'u2', 'read': False})

    unread = await store.query('notifications', {'userId': 'u1', 'read': False})
    assert [d['id'] for d in unread] == ['n1']
    assert len(await store.query('notifications')) == 3
    assert await store.query('missing') == []


@pytest.mark.asyncio
async def test_update_if_checks_precondition(store):
    await store.put('swapRequests', 's1', {'status': 'pending'})

    assert await store.update_if('swapRequests', 's1', {'status': 'accepted'}, {'status': 'rejected'}) is None
    assert (await store.get('swapRequests', 's1'))['status'] == 'pending'

    updated = await store.update_if('swapRequests', 's1', {'status': 'accepted'}, {'status': 'pending'})
    assert updated == {'id': 's1', 'status': 'accepted'}
    assert await store.update_if('swapRequests', 'missing', {'status': 'x'}, {}) is None


@pytest.mark.asyncio
async def test_subscribers_all_receive_changes(store):
    """Test that one write reaches every matching subscriber."""
    first, second, other = [], [], []
    store.subscribe('orders', {'customerId': 'c1'}, first.append)
    store.subscribe('orders', None, second.append)
    store.subscribe('orders', {'customerId': 'c2'}, other.append)

    await store.put('orders', 'o1', {'customerId': 'c1', 'status': 'pending'})
    await store.update('orders', 'o1', {'status': 'in_transit'})
    await store.delete('orders', 'o1')
    await store.flush()

    assert [c.op for c in first] == [INSERT, UPDATE, DELETE]
    assert [c.op for c in second] == [INSERT, UPDATE, DELETE]
    assert other == []
    assert first[1].previous['status'] == 'pending'
    assert first[1].doc['status'] == 'in_transit'


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(store):
    received = []

    async def callback(change):
        received.append(change.doc_id)

    store.subscribe('orders', None, callback)
    await store.put('orders', 'o1', {})
    await store.flush()
    assert received == ['o1']


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_affect_writer(store):
    received = []

    def broken(change):
        raise RuntimeError("view crashed")

    store.subscribe('orders', None, broken)
    store.subscribe('orders', None, received.append)

    stored = await store.put('orders', 'o1', {'status': 'pending'})
    assert stored['status'] == 'pending'
    await store.flush()
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(store):
    received = []
    unsubscribe = store.subscribe('orders', None, received.append)
    assert store.subscriber_count('orders') == 1

    unsubscribe()
    unsubscribe()
    await store.put('orders', 'o1', {})
    await store.flush()

    assert received == []
    assert store.subscriber_count() == 0


@pytest.mark.asyncio
async def test_slow_subscriber_sees_changes_in_commit_order(store):
    """Test that writers return before delivery and each subscriber keeps write order."""
    received = []

    async def slow(change):
        await asyncio.sleep(0.01)
        received.append(change.doc['status'])

    store.subscribe('orders', None, slow)

    await store.put('orders', 'o1', {'status': 'pending'})
    await asyncio.gather(
        store.update('orders', 'o1', {'status': 'in_transit'}),
        store.update('orders', 'o1', {'status': 'delivered'}),
    )
    assert received == []

    await store.flush()
    assert received == ['pending', 'in_transit', 'delivered']


@pytest.mark.asyncio
async def test_flush_waits_for_changes_written_by_callbacks(store):
    audit = []

    async def copy_to_audit(change):
        await store.put('audit', None, {'orderId': change.doc_id})

    store.subscribe('orders', None, copy_to_audit)
    store.subscribe('audit', None, audit.append)

    await store.put('orders', 'o1', {})
    await store.flush()

    assert [c.doc['orderId'] for c in audit] == ['o1']


@pytest.mark.asyncio
async def test_create_store_selects_memory():
    store = await create_store('memory://')
    assert isinstance(store, MemoryDocumentStore)

    with pytest.raises(ValueError):
        await create_store('mysql://localhost/db')
