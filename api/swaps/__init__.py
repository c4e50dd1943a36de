"""Swap request API endpoints."""

from fastapi import APIRouter, Depends, status
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel

from auth import get_current_user
from lifecycle import LifecycleError, ForbiddenError, SWAP_MACHINE
from ..dependencies import Services, get_services
from ..errors import http_error, transition_response

router = APIRouter(
    prefix="/swaps",
    tags=["Swaps"]
)


class CreateSwapRequest(BaseModel):
    """Request model for proposing a swap."""
    to_user_id: str
    from_listing_id: str
    to_listing_id: str
    message: Optional[str] = None
    from_listing_title: Optional[str] = None
    to_listing_title: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_swap_request(
    swap_request: CreateSwapRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Offer one of the user's listings for someone else's."""
    try:
        return await services.swaps.create_request(
            from_user_id=user_id,
            **swap_request.model_dump()
        )
    except LifecycleError as e:
        raise http_error(e)


@router.get("/sent")
async def get_sent_requests(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    requests = await services.swaps.get_sent_requests(user_id)
    return {"requests": requests, "count": len(requests)}


@router.get("/received")
async def get_received_requests(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    requests = await services.swaps.get_received_requests(user_id)
    pending = sum(1 for r in requests if r.get('status') == 'pending')
    return {"requests": requests, "count": len(requests), "pending": pending}


@router.get("/{request_id}")
async def get_swap_request(
    request_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    try:
        request = await services.swaps.get_request(request_id)
        if not SWAP_MACHINE.roles_of(request, user_id):
            raise ForbiddenError(user_id, f"view swap request {request_id}")
        return request
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{request_id}/{action}")
async def act_on_swap_request(
    request_id: str,
    action: Literal["accept", "reject", "cancel", "complete"],
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Accept, reject, cancel or complete a swap request."""
    try:
        result = await getattr(services.swaps, action)(request_id, user_id)
    except LifecycleError as e:
        raise http_error(e)
    return transition_response(result)
