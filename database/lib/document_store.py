"""Document store interface shared by the in-memory and PostgreSQL stores.

A store holds flat collections of JSON-like documents keyed by id. Besides the
usual reads and writes it offers:

- ``update_if``: a compare-and-set write used for status changes, so a
  transition is only applied against the value actually in storage
- ``subscribe``: push-style change notification, multicast to every subscriber
  and delivered to each one in commit order
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Where = Optional[Dict[str, Any]]
ChangeCallback = Callable[['DocumentChange'], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]

INSERT = 'insert'
UPDATE = 'update'
DELETE = 'delete'


@dataclass(frozen=True)
class DocumentChange:
    """A single write observed by a subscriber.

    For deletes ``doc`` is the last known document when the store has it,
    otherwise None. ``previous`` is the document before an update when known.
    """
    op: str
    collection: str
    doc_id: str
    doc: Optional[Document] = None
    previous: Optional[Document] = None


def matches(doc: Optional[Document], where: Where) -> bool:
    """Equality match of ``where`` against the top-level fields of ``doc``."""
    if doc is None:
        return False
    if not where:
        return True
    return all(doc.get(key) == value for key, value in where.items())


class _Subscriber:
    """One subscription and the queue its delivery task drains in order."""
    __slots__ = ('collection', 'where', 'callback', 'active', 'pending', 'queue', 'task')

    def __init__(self, collection: str, where: Where, callback: ChangeCallback):
        self.collection = collection
        self.where = dict(where) if where else None
        self.callback = callback
        self.active = True
        self.pending = 0
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    def wants(self, change: 'DocumentChange') -> bool:
        if not self.active or self.collection != change.collection:
            return False
        # Deletes with no known document go to the whole collection
        if change.doc is None and change.op == DELETE:
            return True
        return matches(change.doc, self.where) or matches(change.previous, self.where)


class DocumentStore:
    """Abstract async document store."""

    def __init__(self) -> None:
        self._subscribers: List[_Subscriber] = []

    async def put(self, collection: str, doc_id: Optional[str], doc: Document) -> Document:
        """Insert or replace a document. A None id generates one."""
        raise NotImplementedError

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def query(self, collection: str, where: Where = None) -> List[Document]:
        """Return every document of ``collection`` matching ``where``."""
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, changes: Document) -> Optional[Document]:
        """Shallow-merge ``changes`` into a document. Returns None if missing."""
        raise NotImplementedError

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        changes: Document,
        expected: Document
    ) -> Optional[Document]:
        """Atomically merge ``changes`` only if every ``expected`` field still holds.

        Returns the updated document, or None when the document is missing or
        the precondition failed.
        """
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def close(self) -> None:
        """Stop every delivery task and drop all subscriptions."""
        tasks = []
        for subscriber in self._subscribers:
            subscriber.active = False
            if subscriber.task is not None:
                subscriber.task.cancel()
                tasks.append(subscriber.task)
        self._subscribers.clear()
        if tasks:
            await asyncio.wait(tasks)

    def subscribe(self, collection: str, where: Where, callback: ChangeCallback) -> Unsubscribe:
        """Register ``callback`` for changes in ``collection`` matching ``where``.

        Must be called with a running event loop. Each subscription gets its own
        delivery task: its callback sees changes one at a time, in the order
        they were committed, and never runs inside the writer's call.

        Returns an idempotent unsubscribe function. Changes still queued when
        it is called are dropped.
        """
        subscriber = _Subscriber(collection, where, callback)
        subscriber.task = asyncio.get_running_loop().create_task(self._deliver(subscriber))
        self._subscribers.append(subscriber)
        logger.debug(f"Subscribed to {collection} where {where}")

        def unsubscribe() -> None:
            if not subscriber.active:
                return
            subscriber.active = False
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)
            # Wakes the delivery task so it can finish
            subscriber.queue.put_nowait(None)
            logger.debug(f"Unsubscribed from {collection} where {where}")

        return unsubscribe

    def subscriber_count(self, collection: Optional[str] = None) -> int:
        return sum(
            1 for s in self._subscribers
            if collection is None or s.collection == collection
        )

    async def flush(self) -> None:
        """Wait until every change published so far has been delivered.

        Changes published by callbacks while waiting are waited for too.
        """
        while True:
            busy = [s for s in self._subscribers if s.pending]
            if not busy:
                return
            await asyncio.gather(*(s.queue.join() for s in busy))

    def _publish(self, change: DocumentChange) -> None:
        """Queue a change for every interested subscriber.

        Stores call this in commit order, while the write is still serialized.
        """
        for subscriber in self._subscribers:
            if subscriber.wants(change):
                subscriber.pending += 1
                subscriber.queue.put_nowait(change)

    async def _deliver(self, subscriber: _Subscriber) -> None:
        """Run ``subscriber``'s callback for each queued change, in order.

        A failing callback is logged and never reaches the writer.
        """
        while True:
            change = await subscriber.queue.get()
            if change is None:
                subscriber.queue.task_done()
                return
            try:
                if subscriber.active:
                    result = subscriber.callback(change)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Subscriber callback failed for {change.op} "
                    f"{change.collection}/{change.doc_id}: {e}"
                )
            finally:
                subscriber.pending -= 1
                subscriber.queue.task_done()
