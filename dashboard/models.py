"""Response models for the store dashboard."""
from decimal import Decimal
from typing import List

from pydantic import Field

from models import DocumentModel

ZERO = Decimal('0')


class DashboardStats(DocumentModel):
    total_products: int = 0
    active_products: int = 0
    out_of_stock_products: int = 0
    in_stock_products: int = 0
    total_revenue: Decimal = ZERO
    total_sold: int = 0
    pending_orders: int = 0
    in_transit_orders: int = 0
    delivered_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    todays_sales: Decimal = ZERO
    todays_orders: int = 0


class DailySales(DocumentModel):
    date: str
    amount: Decimal = ZERO


class PaymentTypeBreakdown(DocumentModel):
    type: str
    amount: Decimal = ZERO
    count: int = 0


class TopProduct(DocumentModel):
    listing_id: str
    name: str
    sold: int = 0
    revenue: Decimal = ZERO


class DashboardAnalytics(DocumentModel):
    sales_by_day: List[DailySales] = Field(default_factory=list)
    payment_types: List[PaymentTypeBreakdown] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list)


class DashboardSummary(DocumentModel):
    """Everything the store dashboard shows for one seller."""
    seller_id: str
    stats: DashboardStats = Field(default_factory=DashboardStats)
    analytics: DashboardAnalytics = Field(default_factory=DashboardAnalytics)
    skipped_orders: List[str] = Field(default_factory=list)
