from .decider import NotificationDecider, OutcomeLogger
from .schemas import ChangeEvent, DeliveryPayload, Identity, Outcome, OutcomeStatus

__all__ = [
    "ChangeEvent",
    "DeliveryPayload",
    "Identity",
    "NotificationDecider",
    "Outcome",
    "OutcomeLogger",
    "OutcomeStatus",
]
