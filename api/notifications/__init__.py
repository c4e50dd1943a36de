"""Notifications API endpoints."""

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
import logging

from auth import get_current_user
from lifecycle import LifecycleError
from models import Notification
from notifications import SubscriptionFanout
from ..dependencies import Services, get_services
from ..errors import http_error
from ..websockets import authenticate_websocket

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)


class NotificationSettingsUpdate(BaseModel):
    """Model for notification settings. Omitted fields keep their value."""
    order_updates: Optional[bool] = None
    swap_updates: Optional[bool] = None
    rental_updates: Optional[bool] = None
    message_updates: Optional[bool] = None
    store_updates: Optional[bool] = None


def notification_list(notifications: List[Notification]) -> Dict[str, Any]:
    """Notifications with the unread count derived from the same list."""
    return {
        "notifications": [n.to_document() for n in notifications],
        "unread_count": sum(1 for n in notifications if not n.read),
    }


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Get the user's notifications, newest first."""
    notifications = await services.notifications.list_for_user(
        user_id, unread_only=unread_only, limit=limit
    )
    if not unread_only and limit is None:
        return notification_list(notifications)

    # A limited page may not hold every unread notification
    return {
        "notifications": [n.to_document() for n in notifications],
        "unread_count": await services.notifications.unread_count(user_id),
    }


@router.get("/unread-count")
async def get_unread_count(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, int]:
    return {"unread_count": await services.notifications.unread_count(user_id)}


@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, int]:
    """Mark all notifications read."""
    return {"marked_read": await services.notifications.mark_all_read(user_id)}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Mark one notification read. Repeating the call changes nothing."""
    try:
        notification = await services.notifications.mark_read(notification_id, user_id)
    except LifecycleError as e:
        raise http_error(e)
    return notification.to_document()


@router.delete("")
async def clear_all(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, int]:
    """Delete all of the user's notifications."""
    return {"cleared": await services.notifications.clear_all(user_id)}


@router.get("/settings")
async def get_notification_settings(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    settings = await services.notifications.get_settings(user_id)
    return settings.to_document()


@router.put("/settings")
async def update_notification_settings(
    update: NotificationSettingsUpdate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Update which notification types are pushed to the user's devices."""
    settings = await services.notifications.update_settings(
        user_id, **update.model_dump(exclude_none=True)
    )
    return settings.to_document()


@router.websocket("/stream")
async def notification_stream(websocket: WebSocket):
    """WebSocket endpoint for the live notification list.

    Sends the full list and unread count on connect and after every change.
    """
    user_id = await authenticate_websocket(websocket)
    if not user_id:
        return

    await websocket.accept()
    services: Services = websocket.app.state.services
    fanout = SubscriptionFanout(services.store)

    async def send(notifications: List[Notification]) -> None:
        await websocket.send_json({"type": "notifications", **notification_list(notifications)})

    try:
        await fanout.watch_notifications(user_id, send)
        while True:
            # Keep connection alive with ping/pong
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug(f"Notification stream closed for {user_id}")
    finally:
        fanout.close_all()


__all__ = ['router']
