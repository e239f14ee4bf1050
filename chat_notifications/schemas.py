from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChangeOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A before/after snapshot pair describing a single document write"""
    model_config = ConfigDict(frozen=True)

    resourcePath: List[str]
    previousState: Optional[Dict[str, Any]] = None
    newState: Optional[Dict[str, Any]] = None

    @classmethod
    def from_path(cls, path: str, previous_state: Optional[Dict[str, Any]] = None,
                  new_state: Optional[Dict[str, Any]] = None) -> "ChangeEvent":
        segments = [segment for segment in path.strip("/").split("/") if segment]
        return cls(resourcePath=segments, previousState=previous_state, newState=new_state)

    @property
    def path(self) -> str:
        return "/".join(self.resourcePath)

    @property
    def operation(self) -> ChangeOperation:
        if self.previousState is None:
            return ChangeOperation.CREATE
        if self.newState is None:
            return ChangeOperation.DELETE
        return ChangeOperation.UPDATE

    def before(self) -> Dict[str, Any]:
        return self.previousState or {}

    def after(self) -> Dict[str, Any]:
        return self.newState or {}


class Identity(BaseModel):
    """A user as seen by the notification functions"""
    id: str
    displayName: str = ""
    deliveryToken: Optional[str] = None


class NotificationDataType(str, Enum):
    CHAT = "chat"
    FRIEND_REQUEST = "friend_request"
    FRIEND_REQUEST_ACCEPTED = "friend_request_accepted"


class ChatMessageIntent(BaseModel):
    kind: str = "chat_message"
    chatRoomId: str
    senderId: str
    recipientId: str
    text: str = ""


class FriendRequestReceivedIntent(BaseModel):
    kind: str = "friend_request_received"
    recipientId: str
    requestorId: str
    ignoredIds: List[str] = Field(default_factory=list)


class FriendRequestAcceptedIntent(BaseModel):
    kind: str = "friend_request_accepted"
    accepterId: str
    requestorId: str
    ignoredIds: List[str] = Field(default_factory=list)


NotificationIntent = Union[ChatMessageIntent, FriendRequestReceivedIntent, FriendRequestAcceptedIntent]


class DeliveryPayload(BaseModel):
    """Push message content handed to the Notifier"""
    title: str
    body: str
    sound: str = "default"
    dataType: NotificationDataType
    dataFields: Dict[str, str] = Field(default_factory=dict)

    def data(self) -> Dict[str, str]:
        # FCM data values must be strings
        return {"type": self.dataType.value, **self.dataFields}


class OutcomeStatus(str, Enum):
    SENT = "SENT"
    SKIPPED_NO_RECIPIENT = "SKIPPED_NO_RECIPIENT"
    SKIPPED_NO_TOKEN = "SKIPPED_NO_TOKEN"
    SKIPPED_NO_CHANGE = "SKIPPED_NO_CHANGE"
    DELIVERY_FAILED = "DELIVERY_FAILED"


class Outcome(BaseModel):
    status: OutcomeStatus
    reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status.value.startswith("SKIPPED")

    @classmethod
    def sent(cls) -> "Outcome":
        return cls(status=OutcomeStatus.SENT)

    @classmethod
    def no_recipient(cls, reason: str) -> "Outcome":
        return cls(status=OutcomeStatus.SKIPPED_NO_RECIPIENT, reason=reason)

    @classmethod
    def no_token(cls, reason: str) -> "Outcome":
        return cls(status=OutcomeStatus.SKIPPED_NO_TOKEN, reason=reason)

    @classmethod
    def no_change(cls, reason: str) -> "Outcome":
        return cls(status=OutcomeStatus.SKIPPED_NO_CHANGE, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(status=OutcomeStatus.DELIVERY_FAILED, reason=reason)


class Decision(BaseModel):
    """Result of classifying a change event.

    Either ``outcome`` is set (the event was skipped) or both ``token`` and
    ``payload`` are set and a delivery should be attempted.
    """
    intent: Optional[NotificationIntent] = None
    outcome: Optional[Outcome] = None
    token: Optional[str] = None
    payload: Optional[DeliveryPayload] = None


# Field names of user documents
DISPLAY_NAME_FIELD = "displayName"
TOKEN_FIELD = "fcmToken"
FRIEND_REQUESTS_FIELD = "friendRequestsReceived"
FRIENDS_FIELD = "friends"


def identity_from_document(user_id: str, data: Optional[Dict[str, Any]]) -> Optional[Identity]:
    """Build an Identity from a user document, or None if the document does not exist."""
    if data is None:
        return None
    display_name = data.get(DISPLAY_NAME_FIELD)
    token = data.get(TOKEN_FIELD)
    return Identity(
        id=user_id,
        displayName=display_name if isinstance(display_name, str) else "",
        deliveryToken=token if isinstance(token, str) and token else None,
    )
