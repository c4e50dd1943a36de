"""Push delivery interface.

The native push transport is external; anything with a ``send_push`` method
can be plugged into the notification store. The websocket connection manager
in ``api.websockets`` is one such sender.
"""
from typing import Any, Dict


class PushSender:
    """Delivers one push message to every device of a user."""

    async def send_push(self, user_id: str, title: str, body: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

