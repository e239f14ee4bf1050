from typing import Optional


class NotificationError(Exception):
    """Base class for errors raised while deciding or delivering a notification."""


class MalformedEventError(NotificationError):
    """The change event does not carry what its trigger promises (path, ids, chat key)."""


class IdentityLookupError(NotificationError):
    """The user directory could not be read."""


class DeliveryError(NotificationError):
    """The push transport rejected or failed to deliver a message."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
