"""Notification errors."""


class NotificationDeliveryError(Exception):
    """Raised when a notification could not be written or pushed.

    ``notification`` is set when the write succeeded and only the push failed.
    Callers that triggered the notification treat this as a warning: the
    action that caused it has already happened.
    """
    def __init__(self, message: str, user_id: str, notification=None):
        self.user_id = user_id
        self.notification = notification
        super().__init__(message)

    @property
    def stored(self) -> bool:
        return self.notification is not None
