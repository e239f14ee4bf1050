import pytest

from chat_notifications.decider import NotificationDecider
from chat_notifications.schemas import Identity

from fakes import FakeDirectory, FakeNotifier, RecordingLogger


@pytest.fixture
def users():
    return {
        "A": Identity(id="A", displayName="Alice", deliveryToken="T1"),
        "B": Identity(id="B", displayName="Bob", deliveryToken="T2"),
        "C": Identity(id="C", displayName="Carol"),
    }


@pytest.fixture
def directory(users):
    return FakeDirectory(users)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def outcome_logger():
    return RecordingLogger()


@pytest.fixture
def decider(directory, notifier, outcome_logger):
    return NotificationDecider(directory, notifier, outcome_logger, chat_room_separator="-", sound="default")
