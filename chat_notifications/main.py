import logging
import sys
import threading
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError
from pythonjsonlogger import jsonlogger

from .config import settings
from .decider import NotificationDecider
from .firebase_client import FirebaseClient
from .router import CHAT_MESSAGE_PATH, USER_PATH, TriggerRouter
from .schemas import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        log_record['service'] = settings.service_name
        log_record['environment'] = settings.environment
        log_record['timestamp'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def setup_logging():
    """Configure structured JSON logging for the functions."""
    log_level = getattr(logging, settings.log_level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(CustomJsonFormatter('%(timestamp)s %(levelname)s %(service)s %(environment)s %(name)s %(message)s'))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    root_logger.addHandler(handler)

    logging.getLogger('google').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('grpc').setLevel(logging.WARNING)


_decider: Optional[NotificationDecider] = None
_decider_lock = threading.Lock()


def get_decider() -> NotificationDecider:
    """Build the Firebase-backed decider on first use."""
    global _decider
    if _decider is None:
        with _decider_lock:
            if _decider is None:
                firebase_client = FirebaseClient()
                _decider = NotificationDecider(lookup=firebase_client, notifier=firebase_client)
    return _decider


# Notification for new chat messages
def send_chat_notification(event: ChangeEvent) -> None:
    get_decider().notify_chat_message(event)


# Notification for friend requests
def send_friend_request_notification(event: ChangeEvent) -> None:
    get_decider().notify_friend_request(event)


# Notification for accepted friend requests
def send_friend_request_accepted_notification(event: ChangeEvent) -> None:
    get_decider().notify_friend_request_accepted(event)


def build_router() -> TriggerRouter:
    router = TriggerRouter()
    router.register(CHAT_MESSAGE_PATH, [ChangeOperation.CREATE], send_chat_notification)
    router.register(USER_PATH, [ChangeOperation.UPDATE], send_friend_request_notification)
    router.register(USER_PATH, [ChangeOperation.UPDATE], send_friend_request_accepted_notification)
    return router


router = build_router()


def replay(lines, event_router: Optional[TriggerRouter] = None) -> int:
    """
    Dispatch change events given as JSON lines.

    Returns:
        Number of events that reached at least one entry point
    """
    event_router = event_router or router
    dispatched = 0
    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            event = ChangeEvent.model_validate_json(line)
        except ValidationError as e:
            logger.error(f"Invalid change event on line {line_no}: {str(e)}")
            continue
        if event_router.dispatch(event):
            dispatched += 1
    return dispatched


def main(argv: Optional[List[str]] = None) -> int:
    """Replay change events from a file (or stdin) through the notification functions."""
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()
    logger.info(f"Starting chat notification replay in {settings.environment} environment")

    if argv:
        with open(argv[0], encoding="utf-8") as f:
            dispatched = replay(f)
    else:
        dispatched = replay(sys.stdin)

    logger.info(f"Dispatched {dispatched} change events")
    return 0


if __name__ == "__main__":
    sys.exit(main())
