"""Rental request API endpoints."""

from fastapi import APIRouter, Depends, status
from typing import Any, Dict, Literal, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel

from auth import get_current_user
from lifecycle import LifecycleError, ForbiddenError, RENTAL_MACHINE
from ..dependencies import Services, get_services
from ..errors import http_error, transition_response

router = APIRouter(
    prefix="/rentals",
    tags=["Rentals"]
)


class CreateRentalRequest(BaseModel):
    """Request model for booking a rental listing."""
    listing_id: str
    owner_id: str
    start_date: datetime
    end_date: datetime
    daily_rate: Decimal
    message: Optional[str] = None
    terms: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_rental_request(
    rental_request: CreateRentalRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Request to rent a listing for a date range."""
    try:
        return await services.rentals.create_request(
            renter_id=user_id,
            **rental_request.model_dump()
        )
    except LifecycleError as e:
        raise http_error(e)


@router.get("/renting")
async def get_renter_requests(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Bookings the user made."""
    requests = await services.rentals.get_renter_requests(user_id)
    return {"requests": requests, "count": len(requests)}


@router.get("/owning")
async def get_owner_requests(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Bookings of the user's listings."""
    requests = await services.rentals.get_owner_requests(user_id)
    pending = sum(1 for r in requests if r.get('status') == 'pending')
    return {"requests": requests, "count": len(requests), "pending": pending}


@router.get("/{request_id}")
async def get_rental_request(
    request_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    try:
        request = await services.rentals.get_request(request_id)
        if not RENTAL_MACHINE.roles_of(request, user_id):
            raise ForbiddenError(user_id, f"view rental request {request_id}")
        return request
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{request_id}/{action}")
async def act_on_rental_request(
    request_id: str,
    action: Literal["approve", "reject", "cancel", "start", "complete"],
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Approve, reject, cancel, start or complete a rental request."""
    try:
        result = await getattr(services.rentals, action)(request_id, user_id)
    except LifecycleError as e:
        raise http_error(e)
    return transition_response(result)
