"""Store dashboard API endpoints."""

from fastapi import APIRouter, Depends
from typing import Any, Dict

from auth import get_current_user
from lifecycle import LifecycleError
from ..dependencies import Services, get_services
from ..errors import http_error

router = APIRouter(
    prefix="/dashboard",
    tags=["Dashboard"]
)


@router.get("")
async def get_dashboard(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Statistics and analytics for the authenticated store owner."""
    try:
        summary = await services.dashboard.fetch_dashboard(user_id)
    except LifecycleError as e:
        raise http_error(e)
    return summary.to_document()
