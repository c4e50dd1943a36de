"""Orders API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from typing import Any, Dict, List, Optional
from decimal import Decimal
from pydantic import BaseModel, Field

from auth import get_current_user
from lifecycle import LifecycleError, ForbiddenError, ORDER_MACHINE
from models import DeliveryMethod, DeliveryPayee
from ..dependencies import Services, get_services
from ..errors import http_error, transition_response

# Create router
router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


class OrderItemRequest(BaseModel):
    """Request model for order items."""
    listing_id: str
    seller_id: str
    title: str
    unit_price: Decimal
    quantity: int = Field(gt=0)
    image_ref: Optional[str] = None
    store_id: Optional[str] = None


class CreateOrderRequest(BaseModel):
    """Request model for placing an order."""
    items: List[OrderItemRequest]
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    payment_method: Optional[str] = None
    shipping_address: Optional[str] = None
    delivery_cost: Decimal = Decimal('0')
    store_id: Optional[str] = None
    delivery_payee: Optional[DeliveryPayee] = None


class StatusUpdateRequest(BaseModel):
    """Request model for changing an order's status."""
    status: str


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    order_request: CreateOrderRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Place an order as the authenticated customer."""
    try:
        return await services.orders.create_order(
            customer_id=user_id,
            items=[item.model_dump() for item in order_request.items],
            delivery_method=order_request.delivery_method,
            payment_method=order_request.payment_method,
            shipping_address=order_request.shipping_address,
            delivery_cost=order_request.delivery_cost,
            store_id=order_request.store_id,
            delivery_payee=order_request.delivery_payee
        )
    except LifecycleError as e:
        raise http_error(e)


@router.get("")
async def list_orders(
    role: str = Query("customer", pattern="^(customer|seller)$"),
    order_status: Optional[str] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Orders the user placed, or orders containing the user's items."""
    if role == "seller":
        orders = await services.orders.get_seller_orders(user_id, status=order_status)
    else:
        orders = await services.orders.get_customer_orders(user_id)
        if order_status:
            orders = [o for o in orders if o.get('status') == order_status]
    return {"orders": orders, "count": len(orders)}


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Get an order the user is a party to."""
    try:
        order = await services.orders.get_order(order_id)
        if not ORDER_MACHINE.roles_of(order, user_id):
            raise ForbiddenError(user_id, f"view order {order_id}")
        return order
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{order_id}/status")
async def update_order_status(
    order_id: str,
    update: StatusUpdateRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Move an order to a new status. Only sellers on the order may do this."""
    try:
        result = await services.orders.update_status(order_id, user_id, update.status)
    except LifecycleError as e:
        raise http_error(e)
    return transition_response(result)
