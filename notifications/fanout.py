"""Live views over store collections.

A view keeps the current matching set of one collection in memory and hands
the whole, sorted set to its callback every time it changes. Any number of
views may watch the same documents; each registers its own store subscription
so one change reaches all of them.

Closing a view unregisters it; a change already in flight when the view is
closed is dropped rather than delivered.
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from database import DocumentStore, DocumentChange, matches, DELETE
from models import Notification

logger = logging.getLogger(__name__)

Where = Dict[str, Any]
ViewCallback = Callable[[List[Any]], Union[None, Awaitable[None]]]


class LiveView:
    """Sorted, self-updating result set for one or more equality filters.

    Args:
        store: Document store to watch
        collection: Collection name
        where: Equality filter, None for the whole collection
        callback: Receives the full item list after every change
        accept: Extra predicate for conditions an equality filter cannot express
        sort_field: Field used for ordering, newest first by default
        descending: Sort direction
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        where: Optional[Where],
        callback: ViewCallback,
        accept: Optional[Callable[[Dict[str, Any]], bool]] = None,
        sort_field: str = 'createdAt',
        descending: bool = True
    ):
        self.store = store
        self.collection = collection
        self.filters: List[Optional[Where]] = [where]
        self.callback = callback
        self.accept = accept
        self.sort_field = sort_field
        self.descending = descending
        self._items: Dict[str, Any] = {}
        self._unsubscribers: List[Callable[[], None]] = []
        self._opened = False
        self._ready = False
        self._touched: Set[str] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def items(self) -> List[Any]:
        return sorted(self._items.values(), key=self._sort_key, reverse=self.descending)

    def __len__(self) -> int:
        return len(self._items)

    async def open(self) -> 'LiveView':
        """Subscribe, load the initial result set and deliver it once."""
        if self._opened:
            return self
        self._opened = True

        # Subscribe first so writes racing with the initial query are not lost
        for where in self.filters:
            self._unsubscribers.append(
                self.store.subscribe(self.collection, where, self._on_change)
            )

        for where in self.filters:
            for doc in await self.store.query(self.collection, where):
                # Changes seen while querying are newer than the query result
                if doc['id'] in self._touched or doc['id'] in self._items or not self._wants(doc):
                    continue
                item = self._parse(doc)
                if item is not None:
                    self._items[doc['id']] = item

        self._ready = True
        self._touched.clear()
        if not self._closed:
            await self._emit()
        return self

    def close(self) -> None:
        """Stop watching. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        logger.debug(f"Closed view on {self.collection} {self.filters}")

    async def __aenter__(self) -> 'LiveView':
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _wants(self, doc: Optional[Dict[str, Any]]) -> bool:
        if doc is None:
            return False
        if not any(matches(doc, where) for where in self.filters):
            return False
        return self.accept is None or self.accept(doc)

    def _parse(self, doc: Dict[str, Any]) -> Any:
        return doc

    def _sort_key(self, item: Any):
        return (item.get(self.sort_field) or '', item.get('id') or '')

    async def _on_change(self, change: DocumentChange) -> None:
        if self._closed:
            return
        if not self._ready:
            self._touched.add(change.doc_id)

        if change.op != DELETE and self._wants(change.doc):
            item = self._parse(change.doc)
            if item is None:
                return
            self._items[change.doc_id] = item
        elif self._items.pop(change.doc_id, None) is None:
            return

        # The first snapshot goes out from open()
        if self._ready:
            await self._emit()

    async def _emit(self) -> None:
        result = self.callback(self.items)
        if inspect.isawaitable(result):
            await result


class MergedView(LiveView):
    """Union of several filters over one collection, e.g. requests sent and received."""

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        filters: Sequence[Where],
        callback: ViewCallback,
        **kwargs
    ):
        if not filters:
            raise ValueError("MergedView needs at least one filter")
        super().__init__(store, collection, filters[0], callback, **kwargs)
        self.filters = list(filters)


class NotificationView(LiveView):
    """A user's notifications, newest first, with a derived unread count."""

    def __init__(self, store: DocumentStore, user_id: str, callback: ViewCallback):
        super().__init__(store, 'notifications', {'userId': user_id}, callback)
        self.user_id = user_id

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items.values() if not n.read)

    def _parse(self, doc: Dict[str, Any]) -> Optional[Notification]:
        try:
            return Notification.model_validate(doc)
        except ValueError as e:
            logger.warning(f"Skipping malformed notification {doc.get('id')}: {e}")
            return None

    def _sort_key(self, item: Notification):
        return (item.created_at, item.id or '')


class SubscriptionFanout:
    """Opens and tracks the live views a client session needs."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._views: Set[LiveView] = set()

    @property
    def open_views(self) -> int:
        self._views = {view for view in self._views if not view.closed}
        return len(self._views)

    async def watch(self, view: LiveView) -> LiveView:
        self._views.add(view)
        return await view.open()

    async def watch_notifications(self, user_id: str, callback: ViewCallback) -> NotificationView:
        return await self.watch(NotificationView(self.store, user_id, callback))

    async def watch_customer_orders(self, customer_id: str, callback: ViewCallback) -> LiveView:
        return await self.watch(
            LiveView(self.store, 'orders', {'customerId': customer_id}, callback)
        )

    async def watch_seller_orders(self, seller_id: str, callback: ViewCallback) -> LiveView:
        def has_item_from_seller(doc: Dict[str, Any]) -> bool:
            return any(item.get('sellerId') == seller_id for item in doc.get('items') or [])

        return await self.watch(
            LiveView(self.store, 'orders', None, callback, accept=has_item_from_seller)
        )

    async def watch_swaps(self, user_id: str, callback: ViewCallback) -> LiveView:
        """Swap requests the user sent or received, merged."""
        return await self.watch(MergedView(
            self.store, 'swapRequests',
            [{'fromUserId': user_id}, {'toUserId': user_id}],
            callback
        ))

    async def watch_rentals(self, user_id: str, callback: ViewCallback) -> LiveView:
        """Rental requests the user made or received, merged."""
        return await self.watch(MergedView(
            self.store, 'rentalRequests',
            [{'renterId': user_id}, {'ownerId': user_id}],
            callback
        ))

    def close_all(self) -> None:
        for view in list(self._views):
            view.close()
        self._views.clear()
