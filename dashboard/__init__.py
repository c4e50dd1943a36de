"""Store dashboard statistics.

Everything here is recomputed from the seller's orders on each request; there
is no stored running total to keep in sync. ``aggregate`` is a pure function
of its inputs. ``DashboardAggregator`` loads those inputs from the store.

Only orders with at least one item sold by the seller count. Revenue comes
from orders that were delivered or completed, using ``storeRevenueAmount``
and falling back to ``itemSubtotal``. Per-item figures only count the
seller's own items.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from database import DocumentStore, get_store
from lifecycle import InvalidRequestError
from models import OrderStatus, ensure_aware, utcnow
from .models import (
    DashboardStats, DailySales, PaymentTypeBreakdown, TopProduct,
    DashboardAnalytics, DashboardSummary
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
REVENUE_STATUSES = frozenset({OrderStatus.DELIVERED.value, OrderStatus.COMPLETED.value})
DEFAULT_PAYMENT_TYPE = 'cash'
DEFAULT_TOP_PRODUCTS = 5
SALES_DAYS = 7


class AggregationInputError(ValueError):
    """Raised for an order document the dashboard cannot read."""
    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Malformed order {order_id}: {reason}")


class _Item(NamedTuple):
    listing_id: str
    title: str
    quantity: int
    revenue: Decimal


class _Order(NamedTuple):
    id: str
    status: str
    created_at: datetime
    revenue: Decimal
    payment_type: str
    items: List[_Item]


def _amount(value: Any, field: str, order_id: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise AggregationInputError(order_id, f"missing {field}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise AggregationInputError(order_id, f"{field} is not a number: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise AggregationInputError(order_id, f"{field} must be a non-negative amount")
    return amount


def _timestamp(value: Any, order_id: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        try:
            return ensure_aware(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError:
            pass
    raise AggregationInputError(order_id, f"invalid createdAt: {value!r}")


def parse_order(doc: Dict[str, Any], seller_id: str) -> Optional[_Order]:
    """Read the figures the dashboard needs from an order document.

    Returns None for orders without any item from ``seller_id``.

    Raises:
        AggregationInputError: If the document is malformed
    """
    order_id = str(doc.get('id') or '<unknown>')
    items = doc.get('items')
    if not isinstance(items, list) or not items:
        raise AggregationInputError(order_id, "missing items")

    own_items = []
    for item in items:
        if not isinstance(item, dict) or not item.get('sellerId'):
            raise AggregationInputError(order_id, "item without sellerId")
        if item['sellerId'] != seller_id:
            continue
        quantity = item.get('quantity')
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise AggregationInputError(order_id, f"invalid quantity: {quantity!r}")
        if not item.get('listingId'):
            raise AggregationInputError(order_id, "item without listingId")
        price = item.get('unitPrice', item.get('priceAtPurchase'))
        own_items.append(_Item(
            listing_id=str(item['listingId']),
            title=str(item.get('title') or item['listingId']),
            quantity=quantity,
            revenue=_amount(price, 'unitPrice', order_id) * quantity
        ))

    if not own_items:
        return None

    status = doc.get('status')
    if not isinstance(status, str) or not status:
        raise AggregationInputError(order_id, "missing status")

    revenue = ZERO
    if status in REVENUE_STATUSES:
        amount = doc.get('storeRevenueAmount')
        if amount is None:
            amount = doc.get('itemSubtotal')
        revenue = _amount(amount, 'itemSubtotal', order_id)

    return _Order(
        id=order_id,
        status=status,
        created_at=_timestamp(doc.get('createdAt'), order_id),
        revenue=revenue,
        payment_type=str(doc.get('paymentMethod') or DEFAULT_PAYMENT_TYPE),
        items=own_items
    )


def product_stats(products: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Counts over the seller's listings. Listings without ``stock`` are in stock."""
    total = active = out_of_stock = in_stock = 0
    for product in products:
        total += 1
        if product.get('isActive') is not False:
            active += 1
        stock = product.get('stock')
        if isinstance(stock, (int, float, Decimal)) and not isinstance(stock, bool):
            if stock <= 0:
                out_of_stock += 1
            else:
                in_stock += 1
        else:
            in_stock += 1
    return {
        'total_products': total,
        'active_products': active,
        'out_of_stock_products': out_of_stock,
        'in_stock_products': in_stock,
    }


def aggregate(
    orders: Iterable[Dict[str, Any]],
    seller_id: str,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    products: Optional[Iterable[Dict[str, Any]]] = None,
    top_limit: Optional[int] = DEFAULT_TOP_PRODUCTS
) -> DashboardSummary:
    """Compute dashboard statistics for ``seller_id``.

    Args:
        orders: Order documents; orders of other sellers are ignored
        seller_id: Store owner whose items are counted
        now: Current time; calendar days are taken in ``tz``
        tz: Timezone defining "today" and the daily buckets, UTC by default
        products: The seller's listing documents for product counts
        top_limit: Number of top products to report, None or 0 for all

    The result does not depend on the order of ``orders``. Malformed orders
    are logged, skipped and listed in ``skipped_orders``.
    """
    tz = tz or timezone.utc
    now = ensure_aware(now or utcnow())
    today = now.astimezone(tz).date()
    days = [today - timedelta(days=offset) for offset in range(SALES_DAYS - 1, -1, -1)]
    daily = {day: ZERO for day in days}

    status_counts: Counter = Counter()
    total_revenue = ZERO
    total_sold = 0
    todays_sales = ZERO
    todays_orders = 0
    payments: Dict[str, List] = {}
    top: Dict[str, Dict[str, Any]] = {}
    skipped: List[str] = []

    for doc in orders:
        try:
            order = parse_order(doc, seller_id)
        except AggregationInputError as e:
            logger.warning(f"Skipping order in dashboard for {seller_id}: {e}")
            skipped.append(e.order_id)
            continue
        if order is None:
            continue

        status_counts[order.status] += 1
        day = order.created_at.astimezone(tz).date()
        if day == today:
            todays_orders += 1
            todays_sales += order.revenue

        if order.status not in REVENUE_STATUSES:
            continue

        total_revenue += order.revenue
        if day in daily:
            daily[day] += order.revenue

        payment = payments.setdefault(order.payment_type, [ZERO, 0])
        payment[0] += order.revenue
        payment[1] += 1

        for item in order.items:
            total_sold += item.quantity
            product = top.setdefault(item.listing_id, {'sold': 0, 'revenue': ZERO, 'name_key': None})
            product['sold'] += item.quantity
            product['revenue'] += item.revenue
            # Name from the most recent order so renamed listings show their current title
            name_key = (order.created_at, order.id, item.title)
            if product['name_key'] is None or name_key > product['name_key']:
                product['name_key'] = name_key

    top_products = sorted(
        (
            TopProduct(
                listing_id=listing_id,
                name=product['name_key'][2],
                sold=product['sold'],
                revenue=product['revenue']
            )
            for listing_id, product in top.items()
        ),
        key=lambda p: (-p.revenue, -p.sold, p.name, p.listing_id)
    )
    if top_limit:
        top_products = top_products[:top_limit]

    stats = DashboardStats(
        **product_stats(products or []),
        total_revenue=total_revenue,
        total_sold=total_sold,
        pending_orders=status_counts[OrderStatus.PENDING.value],
        in_transit_orders=status_counts[OrderStatus.IN_TRANSIT.value],
        delivered_orders=status_counts[OrderStatus.DELIVERED.value],
        completed_orders=status_counts[OrderStatus.COMPLETED.value],
        cancelled_orders=status_counts[OrderStatus.CANCELLED.value],
        todays_sales=todays_sales,
        todays_orders=todays_orders
    )
    analytics = DashboardAnalytics(
        sales_by_day=[DailySales(date=day.isoformat(), amount=daily[day]) for day in days],
        payment_types=[
            PaymentTypeBreakdown(type=payment_type, amount=amount, count=count)
            for payment_type, (amount, count) in sorted(payments.items())
        ],
        top_products=top_products
    )
    return DashboardSummary(
        seller_id=seller_id,
        stats=stats,
        analytics=analytics,
        skipped_orders=sorted(skipped)
    )


class DashboardAggregator:
    """Loads a seller's orders and listings and aggregates them."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        top_limit: Optional[int] = None,
        tz: Optional[tzinfo] = None
    ):
        """Initialize dashboard aggregator.

        Args:
            store: Optional document store. If not provided, will get from database module.
            top_limit: Top products to report; defaults to ``top_products_limit``
            tz: Timezone for daily figures; defaults to the ``timezone`` setting
        """
        from config import settings_conf, get_timezone

        self.store = store
        self.top_limit = top_limit if top_limit is not None else settings_conf['top_products_limit']
        self.tz = tz or get_timezone()

    async def fetch_dashboard(self, seller_id: str, now: Optional[datetime] = None) -> DashboardSummary:
        """Dashboard for ``seller_id`` as of ``now``.

        Raises:
            InvalidRequestError: If no seller id is given
        """
        if not seller_id or not seller_id.strip():
            raise InvalidRequestError("No valid seller id provided")
        if not self.store:
            self.store = await get_store()

        orders = await self.store.query('orders')
        products = await self.store.query('listings', {'sellerId': seller_id})
        summary = aggregate(
            orders, seller_id, now=now, tz=self.tz,
            products=products, top_limit=self.top_limit
        )
        logger.info(
            f"Dashboard for {seller_id}: revenue {summary.stats.total_revenue}, "
            f"{len(summary.skipped_orders)} orders skipped"
        )
        return summary


__all__ = [
    'aggregate', 'parse_order', 'product_stats', 'DashboardAggregator', 'AggregationInputError',
    'DashboardStats', 'DailySales', 'PaymentTypeBreakdown', 'TopProduct',
    'DashboardAnalytics', 'DashboardSummary', 'REVENUE_STATUSES'
]
