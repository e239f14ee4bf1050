import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .schemas import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)

CHAT_MESSAGE_PATH = "chat_rooms/{chatRoomId}/messages/{messageId}"
USER_PATH = "users/{userId}"

Handler = Callable[[ChangeEvent], None]


def match_path(pattern: str, segments: Sequence[str]) -> Optional[Dict[str, str]]:
    """
    Match resource path segments against a pattern such as ``users/{userId}``.

    Returns:
        Dict of captured parameters, or None when the path does not match
    """
    parts = pattern.strip("/").split("/")
    if len(parts) != len(segments):
        return None

    params = {}
    for part, segment in zip(parts, segments):
        if part.startswith("{") and part.endswith("}"):
            if not segment:
                return None
            params[part[1:-1]] = segment
        elif part != segment:
            return None
    return params


class TriggerRouter:
    """Maps document path patterns and write kinds to notification entry points."""

    def __init__(self):
        self._routes: List[Tuple[str, frozenset, Handler]] = []

    def register(self, pattern: str, operations: Iterable[ChangeOperation], handler: Handler) -> None:
        self._routes.append((pattern, frozenset(operations), handler))
        logger.debug(f"Registered {getattr(handler, '__name__', handler)} for {pattern}")

    def handlers_for(self, event: ChangeEvent) -> List[Handler]:
        return [
            handler
            for pattern, operations, handler in self._routes
            if event.operation in operations and match_path(pattern, event.resourcePath) is not None
        ]

    def dispatch(self, event: ChangeEvent) -> int:
        """
        Invoke every entry point registered for the event's path and write kind.

        Returns:
            Number of entry points invoked
        """
        handlers = self.handlers_for(event)
        if not handlers:
            logger.debug(f"No handler registered for {event.operation.value} on {event.path}")
            return 0

        for handler in handlers:
            handler(event)
        return len(handlers)
