import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .config import settings
from .exceptions import MalformedEventError
from .router import CHAT_MESSAGE_PATH, USER_PATH, match_path
from .schemas import (
    DISPLAY_NAME_FIELD,
    FRIEND_REQUESTS_FIELD,
    FRIENDS_FIELD,
    TOKEN_FIELD,
    ChangeEvent,
    ChangeOperation,
    ChatMessageIntent,
    Decision,
    DeliveryPayload,
    FriendRequestAcceptedIntent,
    FriendRequestReceivedIntent,
    Identity,
    NotificationDataType,
    Outcome,
    OutcomeStatus,
)

logger = logging.getLogger(__name__)


class IdentityLookup(Protocol):
    def get(self, user_id: str) -> Optional[Identity]: ...


class Notifier(Protocol):
    def send(self, token: str, payload: DeliveryPayload) -> str: ...


class OutcomeLogger:
    """Writes one structured record per invocation through stdlib logging."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._logger = log or logger

    def record(self, level: int, message: str, fields: Optional[Dict[str, Any]] = None) -> None:
        self._logger.log(level, message, extra=fields or {})


def new_ids(before: Sequence[str], after: Sequence[str]) -> List[str]:
    """
    Ids present after the write but not before, in after-list order.

    Empty unless the set of ids strictly grew.
    """
    before_set = set(before)
    if len(set(after)) <= len(before_set):
        return []

    added = []
    for item in after:
        if item not in before_set and item not in added:
            added.append(item)
    return added


def _id_list(record: Dict[str, Any], field: str) -> List[str]:
    value = record.get(field) or []
    if not isinstance(value, (list, tuple)):
        raise MalformedEventError(f"Field {field} is not a list")
    return [str(item) for item in value]


class NotificationDecider:
    """
    Decides whether a document write should produce a push notification and
    delivers at most one.

    Each ``decide_*`` method is pure given the lookup results. The ``notify_*``
    methods add the delivery attempt and the outcome record, and never raise.
    """

    def __init__(self,
                 lookup: IdentityLookup,
                 notifier: Notifier,
                 outcome_logger: Optional[OutcomeLogger] = None,
                 chat_room_separator: Optional[str] = None,
                 sound: Optional[str] = None):
        self.lookup = lookup
        self.notifier = notifier
        self.outcome_logger = outcome_logger or OutcomeLogger()
        self.chat_room_separator = chat_room_separator or settings.chat_room_separator
        self.sound = sound or settings.notification_sound

    def recipient_from_chat_room(self, chat_room_id: str, sender_id: Optional[str]) -> str:
        """Return the participant of a two-party chat room who is not the sender."""
        participants = chat_room_id.split(self.chat_room_separator)
        if len(participants) != 2 or not all(participants) or participants[0] == participants[1]:
            raise MalformedEventError(f"Chat room id {chat_room_id} does not name two participants")
        if not sender_id or sender_id not in participants:
            raise MalformedEventError(f"Sender {sender_id} is not a participant of {chat_room_id}")
        return next(p for p in participants if p != sender_id)

    def decide_chat_message(self, event: ChangeEvent) -> Decision:
        params = match_path(CHAT_MESSAGE_PATH, event.resourcePath)
        if params is None:
            return Decision(outcome=Outcome.no_recipient(f"Unexpected path {event.path}"))

        message = event.after()
        chat_room_id = params["chatRoomId"]
        sender_id = message.get("senderId")
        try:
            recipient_id = self.recipient_from_chat_room(chat_room_id, sender_id)
        except MalformedEventError as e:
            return Decision(outcome=Outcome.no_recipient(str(e)))

        intent = ChatMessageIntent(
            chatRoomId=chat_room_id,
            senderId=sender_id,
            recipientId=recipient_id,
            text=str(message.get("text") or ""),
        )

        sender = self.lookup.get(sender_id)
        recipient = self.lookup.get(recipient_id)
        if sender is None or recipient is None:
            return Decision(intent=intent, outcome=Outcome.no_recipient("Sender or recipient not found"))
        if not recipient.deliveryToken:
            return Decision(intent=intent, outcome=Outcome.no_token("Recipient FCM token not found"))

        payload = DeliveryPayload(
            title=f"New message from {sender.displayName or sender.id}",
            body=intent.text,
            sound=self.sound,
            dataType=NotificationDataType.CHAT,
            dataFields={"chatRoomId": chat_room_id, "senderId": sender_id},
        )
        return Decision(intent=intent, token=recipient.deliveryToken, payload=payload)

    def decide_friend_request(self, event: ChangeEvent) -> Decision:
        params = match_path(USER_PATH, event.resourcePath)
        if params is None:
            return Decision(outcome=Outcome.no_recipient(f"Unexpected path {event.path}"))
        if event.operation != ChangeOperation.UPDATE:
            return Decision(outcome=Outcome.no_change(f"{event.operation.value} is not a user update"))

        before, after = event.before(), event.after()
        try:
            added = new_ids(_id_list(before, FRIEND_REQUESTS_FIELD), _id_list(after, FRIEND_REQUESTS_FIELD))
        except MalformedEventError as e:
            return Decision(outcome=Outcome.no_recipient(str(e)))
        if not added:
            return Decision(outcome=Outcome.no_change("No new friend request"))

        # Only the first new requestor is notified, see DESIGN.md
        intent = FriendRequestReceivedIntent(
            recipientId=params["userId"],
            requestorId=added[0],
            ignoredIds=added[1:],
        )

        requestor = self.lookup.get(intent.requestorId)
        if requestor is None:
            return Decision(intent=intent, outcome=Outcome.no_recipient("Requestor not found"))
        token = after.get(TOKEN_FIELD)
        if not isinstance(token, str) or not token:
            return Decision(intent=intent, outcome=Outcome.no_token("Recipient FCM token not found"))

        payload = DeliveryPayload(
            title="New Friend Request",
            body=f"{requestor.displayName or requestor.id} sent you a friend request.",
            sound=self.sound,
            dataType=NotificationDataType.FRIEND_REQUEST,
            dataFields={"senderId": intent.requestorId},
        )
        return Decision(intent=intent, token=token, payload=payload)

    def decide_friend_request_accepted(self, event: ChangeEvent) -> Decision:
        params = match_path(USER_PATH, event.resourcePath)
        if params is None:
            return Decision(outcome=Outcome.no_recipient(f"Unexpected path {event.path}"))
        if event.operation != ChangeOperation.UPDATE:
            return Decision(outcome=Outcome.no_change(f"{event.operation.value} is not a user update"))

        before, after = event.before(), event.after()
        try:
            added = new_ids(_id_list(before, FRIENDS_FIELD), _id_list(after, FRIENDS_FIELD))
        except MalformedEventError as e:
            return Decision(outcome=Outcome.no_recipient(str(e)))
        if not added:
            return Decision(outcome=Outcome.no_change("No new friend"))

        # The user who accepted the request is the one whose document changed
        accepter_id = params["userId"]
        intent = FriendRequestAcceptedIntent(
            accepterId=accepter_id,
            requestorId=added[0],
            ignoredIds=added[1:],
        )

        requestor = self.lookup.get(intent.requestorId)
        if requestor is None:
            return Decision(intent=intent, outcome=Outcome.no_recipient("Original requestor not found"))
        if not requestor.deliveryToken:
            return Decision(intent=intent, outcome=Outcome.no_token("Original requestor FCM token not found"))

        acceptor_name = after.get(DISPLAY_NAME_FIELD) or accepter_id
        payload = DeliveryPayload(
            title="Friend Request Accepted",
            body=f"{acceptor_name} accepted your friend request.",
            sound=self.sound,
            dataType=NotificationDataType.FRIEND_REQUEST_ACCEPTED,
            dataFields={"accepterId": accepter_id},
        )
        return Decision(intent=intent, token=requestor.deliveryToken, payload=payload)

    def notify_chat_message(self, event: ChangeEvent) -> Outcome:
        return self._run("chat_message", event, self.decide_chat_message)

    def notify_friend_request(self, event: ChangeEvent) -> Outcome:
        return self._run("friend_request", event, self.decide_friend_request)

    def notify_friend_request_accepted(self, event: ChangeEvent) -> Outcome:
        return self._run("friend_request_accepted", event, self.decide_friend_request_accepted)

    def _run(self, trigger: str, event: ChangeEvent, decide: Callable[[ChangeEvent], Decision]) -> Outcome:
        fields: Dict[str, Any] = {"trigger": trigger, "path": event.path}
        try:
            decision = decide(event)
            if decision.intent is not None:
                fields.update(decision.intent.model_dump(exclude={"text"}))

            if decision.outcome is not None:
                outcome = decision.outcome
            else:
                fields["messageId"] = self.notifier.send(decision.token, decision.payload)
                outcome = Outcome.sent()
        except Exception as e:
            outcome = Outcome.failed(str(e) or e.__class__.__name__)

        self._record(trigger, outcome, fields)
        return outcome

    def _record(self, trigger: str, outcome: Outcome, fields: Dict[str, Any]) -> None:
        fields["status"] = outcome.status.value
        if outcome.reason:
            fields["reason"] = outcome.reason

        if outcome.status == OutcomeStatus.DELIVERY_FAILED:
            self.outcome_logger.record(logging.ERROR, f"Error sending {trigger} notification: {outcome.reason}", fields)
        elif outcome.status == OutcomeStatus.SENT:
            self.outcome_logger.record(logging.INFO, f"{trigger} notification sent successfully", fields)
        else:
            self.outcome_logger.record(logging.INFO, f"{trigger} notification skipped: {outcome.reason}", fields)
