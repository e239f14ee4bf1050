import importlib
import json
import logging
import threading
import time
import warnings
from unittest.mock import MagicMock

import pytest
from pythonjsonlogger import jsonlogger

from chat_notifications import main
from chat_notifications.schemas import OutcomeStatus

from fakes import chat_event, user_event


@pytest.fixture(autouse=True)
def default_decider(decider, monkeypatch):
    monkeypatch.setattr(main, "_decider", decider)
    return decider


def test_entry_points_return_nothing(notifier):
    assert main.send_chat_notification(chat_event("A-B", {"senderId": "A", "text": "hi"})) is None
    assert len(notifier.sent) == 1


def test_entry_points_swallow_transport_errors(notifier, outcome_logger):
    notifier.error = RuntimeError("connection reset")

    main.send_friend_request_accepted_notification(
        user_event("B", {"friends": []}, {"displayName": "Bob", "friends": ["A"]})
    )

    level, _, fields = outcome_logger.records[0]
    assert level == logging.ERROR
    assert fields["status"] == OutcomeStatus.DELIVERY_FAILED.value
    assert fields["reason"] == "connection reset"


def test_user_update_reaches_both_user_entry_points(notifier, outcome_logger):
    event = user_event(
        "B",
        {"displayName": "Bob", "fcmToken": "T2", "friendRequestsReceived": ["A"], "friends": []},
        {"displayName": "Bob", "fcmToken": "T2", "friendRequestsReceived": [], "friends": ["A"]},
    )

    assert main.router.dispatch(event) == 2

    assert [fields["trigger"] for _, _, fields in outcome_logger.records] == [
        "friend_request", "friend_request_accepted"
    ]
    assert [fields["status"] for _, _, fields in outcome_logger.records] == ["SKIPPED_NO_CHANGE", "SENT"]
    assert notifier.sent[0][0] == "T1"


def test_user_creation_is_not_routed(outcome_logger):
    event = user_event("B", None, {"friendRequestsReceived": ["A"]})

    assert main.router.dispatch(event) == 0
    assert outcome_logger.records == []


def test_replay_dispatches_json_lines(notifier, caplog):
    lines = [
        json.dumps({"resourcePath": ["chat_rooms", "A-B", "messages", "m1"],
                    "newState": {"senderId": "B", "text": "hello"}}),
        "",
        "not json",
        json.dumps({"resourcePath": ["rooms", "x"], "newState": {}}),
    ]

    with caplog.at_level(logging.ERROR, logger="chat_notifications.main"):
        dispatched = main.replay(lines)

    assert dispatched == 1
    assert notifier.sent[0][0] == "T1"
    assert "Invalid change event on line 3" in caplog.text


def test_main_reads_events_from_file(tmp_path, notifier, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda: None)
    events = tmp_path / "events.jsonl"
    events.write_text(json.dumps({
        "resourcePath": ["users", "B"],
        "previousState": {"friendRequestsReceived": []},
        "newState": {"fcmToken": "T2", "friendRequestsReceived": ["A"]},
    }) + "\n", encoding="utf-8")

    assert main.main([str(events)]) == 0
    assert notifier.sent[0][1].body == "Alice sent you a friend request."


def test_setup_logging_emits_json(capsys):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level

    main.setup_logging()
    try:
        logging.getLogger("chat_notifications.test").info("hello", extra={"status": "SENT"})
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    assert record["message"] == "hello"
    assert record["status"] == "SENT"
    assert record["service"] == main.settings.service_name


def test_concurrent_cold_start_builds_one_client(monkeypatch):
    from chat_notifications import firebase_client

    apps = []

    def get_app():
        if not apps:
            raise ValueError("The default Firebase app does not exist.")
        return apps[0]

    def initialize_app(credential=None, options=None):
        time.sleep(0.05)
        if apps:
            raise ValueError("The default Firebase app already exists.")
        apps.append(MagicMock(name="default-app"))
        return apps[0]

    initialize = MagicMock(side_effect=initialize_app)
    monkeypatch.setattr(firebase_client.firebase_admin, "get_app", get_app)
    monkeypatch.setattr(firebase_client.firebase_admin, "initialize_app", initialize)
    monkeypatch.setattr(firebase_client.credentials, "ApplicationDefault", MagicMock())
    monkeypatch.setattr(firebase_client.firestore, "client", MagicMock())
    monkeypatch.setattr(firebase_client.settings, "firebase_secret", None)
    monkeypatch.setattr(main, "_decider", None)

    errors = []
    event = user_event("B", {"friendRequestsReceived": ["A"]}, {"friendRequestsReceived": ["A"]})

    def invoke():
        try:
            main.send_friend_request_notification(event)
        except Exception as e:
            errors.append(repr(e))

    threads = [threading.Thread(target=invoke) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert initialize.call_count == 1
    assert main._decider.lookup.app is apps[0]


def test_json_formatter_import_is_not_deprecated():
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        importlib.reload(jsonlogger)
        assert jsonlogger.JsonFormatter is not None

    assert [w for w in caught if issubclass(w.category, DeprecationWarning)] == []
