from __future__ import annotations

import threading
from unittest.mock import MagicMock

import requests

from mediahub.config import NotifierConfig
from mediahub.services.notify.realtime import UPLOAD_COMPLETE, UPLOAD_PROGRESS, RealtimeNotifier


def test_observers_receive_events_in_order():
    notifier = RealtimeNotifier(NotifierConfig(webhook_url=None))
    received = []
    notifier.subscribe(received.append)

    notifier.publish(UPLOAD_PROGRESS, "a1", {"progress": 0.5})
    notifier.publish(UPLOAD_COMPLETE, "a1", {"title": "Clip"})
    notifier.flush()
    notifier.close()

    assert [(e.type, e.asset_id) for e in received] == [(UPLOAD_PROGRESS, "a1"), (UPLOAD_COMPLETE, "a1")]
    assert received[0].data == {"progress": 0.5}


def test_failing_observer_does_not_block_others():
    notifier = RealtimeNotifier(NotifierConfig(webhook_url=None))
    received = []

    def broken(_event):
        raise RuntimeError("client went away")

    notifier.subscribe(broken)
    notifier.subscribe(received.append)
    notifier.publish(UPLOAD_COMPLETE, "a1")
    notifier.flush()
    notifier.close()

    assert len(received) == 1


def test_unsubscribed_observer_is_not_called():
    notifier = RealtimeNotifier(NotifierConfig(webhook_url=None))
    received = []
    notifier.subscribe(received.append)
    notifier.unsubscribe(received.append)

    notifier.publish(UPLOAD_COMPLETE, "a1")
    notifier.flush()
    notifier.close()

    assert received == []


def test_full_queue_drops_instead_of_blocking():
    notifier = RealtimeNotifier(NotifierConfig(webhook_url=None, queue_size=1))
    gate = threading.Event()
    notifier.subscribe(lambda _event: gate.wait(5))

    results = [notifier.publish(UPLOAD_PROGRESS, "a1", {"progress": i / 10}) for i in range(5)]
    gate.set()
    notifier.flush()
    notifier.close()

    assert results[0] is True
    assert False in results
    assert notifier.dropped == results.count(False)


def test_webhook_receives_event_json():
    session = MagicMock(spec=requests.Session)
    notifier = RealtimeNotifier(NotifierConfig(webhook_url="http://hooks.local/media", http_timeout=2.0), session=session)

    notifier.publish(UPLOAD_COMPLETE, "a1", {"title": "Clip"})
    notifier.flush()
    notifier.close()

    args, kwargs = session.post.call_args
    assert args[0] == "http://hooks.local/media"
    assert kwargs["json"]["type"] == UPLOAD_COMPLETE
    assert kwargs["json"]["asset_id"] == "a1"
    assert kwargs["timeout"] == 2.0


def test_webhook_errors_are_logged_not_raised(caplog):
    session = MagicMock(spec=requests.Session)
    session.post.side_effect = requests.ConnectionError("refused")
    notifier = RealtimeNotifier(NotifierConfig(webhook_url="http://hooks.local/media"), session=session)

    assert notifier.publish(UPLOAD_COMPLETE, "a1") is True
    notifier.flush()
    notifier.close()

    assert "Webhook delivery failed" in caplog.text
