"""Domain models for orders, swap and rental requests, and notifications.

Documents are stored with camelCase keys (``customerId``, ``itemSubtotal``...)
while Python code uses snake_case attributes. ``to_document`` produces the
stored form; ``Model.model_validate(doc)`` reads it back.
"""
import math
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
)
from pydantic.alias_generators import to_camel

CENT = Decimal('0.01')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SwapStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RentalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class NotificationType(str, Enum):
    ORDER = "order"
    SWAP = "swap"
    RENTAL = "rental"
    MESSAGE = "message"
    STORE = "store"


class DeliveryMethod(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class DeliveryPayee(str, Enum):
    STORE = "store"
    PARTNER = "partner"


class DocumentModel(BaseModel):
    """Base for models persisted as camelCase documents."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra='ignore'
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class TimestampedModel(DocumentModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class OrderItem(DocumentModel):
    listing_id: str
    seller_id: str
    title: str
    unit_price: Decimal = Field(
        ge=0,
        validation_alias=AliasChoices('unitPrice', 'unit_price', 'priceAtPurchase')
    )
    quantity: int = Field(gt=0)
    image_ref: Optional[str] = None
    store_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(TimestampedModel):
    """A customer's purchase. ``total_amount`` must equal subtotal plus delivery."""
    id: Optional[str] = None
    customer_id: str
    store_id: Optional[str] = None
    items: List[OrderItem] = Field(min_length=1)
    item_subtotal: Decimal = Field(ge=0)
    delivery_cost: Decimal = Field(default=Decimal('0'), ge=0)
    total_amount: Decimal = Field(ge=0)
    status: OrderStatus = OrderStatus.PENDING
    delivery_method: Optional[DeliveryMethod] = None
    delivery_payee: Optional[DeliveryPayee] = None
    payment_method: Optional[str] = None
    shipping_address: Optional[str] = None
    store_revenue_amount: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def _check_total(self) -> 'Order':
        expected = self.item_subtotal + self.delivery_cost
        if self.total_amount.quantize(CENT) != expected.quantize(CENT):
            raise ValueError(
                f"totalAmount {self.total_amount} must equal itemSubtotal "
                f"{self.item_subtotal} + deliveryCost {self.delivery_cost}"
            )
        return self

    @property
    def seller_ids(self) -> List[str]:
        """Distinct sellers in item order."""
        return list(dict.fromkeys(item.seller_id for item in self.items))


class SwapRequest(TimestampedModel):
    """Proposal to trade ``from_listing_id`` for ``to_listing_id``."""
    id: Optional[str] = None
    from_user_id: str
    to_user_id: str
    from_listing_id: str
    to_listing_id: str
    from_listing_title: Optional[str] = None
    to_listing_title: Optional[str] = None
    status: SwapStatus = SwapStatus.PENDING
    message: Optional[str] = None

    @model_validator(mode='after')
    def _check_parties(self) -> 'SwapRequest':
        if self.from_user_id == self.to_user_id:
            raise ValueError("A swap needs two different users")
        if self.from_listing_id == self.to_listing_id:
            raise ValueError("A listing cannot be swapped for itself")
        return self


def rental_days(start_date: datetime, end_date: datetime) -> int:
    """Whole days billed for a rental, at least one."""
    seconds = (end_date - start_date).total_seconds()
    return max(1, math.ceil(seconds / timedelta(days=1).total_seconds()))


class RentalRequest(TimestampedModel):
    """Booking of ``listing_id`` for ``[start_date, end_date)``."""
    id: Optional[str] = None
    listing_id: str
    renter_id: str
    owner_id: str
    start_date: datetime
    end_date: datetime
    daily_rate: Decimal = Field(ge=0)
    total_cost: Decimal = Field(ge=0)
    status: RentalStatus = RentalStatus.PENDING
    message: Optional[str] = None
    terms: Optional[str] = None

    @field_validator('start_date', 'end_date')
    @classmethod
    def _aware_dates(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode='after')
    def _check_booking(self) -> 'RentalRequest':
        if self.renter_id == self.owner_id:
            raise ValueError("Owners cannot rent their own listing")
        if self.start_date >= self.end_date:
            raise ValueError("End date must be after start date")
        expected = self.daily_rate * rental_days(self.start_date, self.end_date)
        if self.total_cost.quantize(CENT) != expected.quantize(CENT):
            raise ValueError(
                f"totalCost {self.total_cost} must equal dailyRate x days ({expected})"
            )
        return self

    @property
    def days(self) -> int:
        return rental_days(self.start_date, self.end_date)


class Notification(DocumentModel):
    id: Optional[str] = None
    user_id: str
    type: NotificationType
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('created_at')
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class NotificationSettings(DocumentModel):
    """Per-user push preferences. Stored notifications are never suppressed."""
    user_id: str
    order_updates: bool = True
    swap_updates: bool = True
    rental_updates: bool = True
    message_updates: bool = True
    store_updates: bool = True
    updated_at: datetime = Field(default_factory=utcnow)

    def allows(self, notification_type: str) -> bool:
        field = f"{NotificationType(notification_type).value}_updates"
        return getattr(self, field)


__all__ = [
    'OrderStatus', 'SwapStatus', 'RentalStatus', 'NotificationType',
    'DeliveryMethod', 'DeliveryPayee',
    'DocumentModel', 'OrderItem', 'Order', 'SwapRequest', 'RentalRequest',
    'Notification', 'NotificationSettings',
    'rental_days', 'utcnow', 'ensure_aware'
]
