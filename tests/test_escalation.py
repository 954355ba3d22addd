"""
test_escalation.py
------------------
Loop AI - Hospital Network Assistant - Tests for escalation.py
--------------------------------------------------------------
Sentinel detection and stripping, exactly-once notification and session
clear, notifier failures staying invisible, and the webhook notifier over
an httpx mock transport.

Run:
    pytest tests/test_escalation.py -v --tb=short

Project: Loop AI - Hospital Network Assistant
"""

import json
import logging
import os
import sys
import threading
import time
from unittest.mock import MagicMock

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from escalation import (
    FORWARD_MARKER,
    EscalationTrigger,
    HandoffError,
    LoggingNotifier,
    WebhookHandoffNotifier,
    contains_marker,
    strip_marker,
)
from schemas import Turn
from session_store import SessionStore

OUT_OF_SCOPE = f"{FORWARD_MARKER} I'm sorry, I can't help with that. I am forwarding this to a human agent."


def _store_with_history(user_id="caller-1"):
    store = SessionStore()
    store.append(user_id, Turn(human="Is Apollo in my network?", ai="Yes."))
    return store


# ── Marker helpers ────────────────────────────────────────────────────────────

def test_contains_marker():
    assert contains_marker(OUT_OF_SCOPE)
    assert contains_marker(f"Sure. {FORWARD_MARKER} handing you over")
    assert not contains_marker("Apollo Hospital is located in Bangalore.")
    assert not contains_marker(None)


def test_strip_marker_removes_every_occurrence():
    assert strip_marker(OUT_OF_SCOPE) == "I'm sorry, I can't help with that. I am forwarding this to a human agent."
    assert FORWARD_MARKER not in strip_marker(f"{FORWARD_MARKER} a {FORWARD_MARKER} b")
    assert strip_marker(None) == ""


# ── EscalationTrigger ─────────────────────────────────────────────────────────

class TestEscalationTrigger:
    def test_in_scope_reply_passes_through(self):
        store = _store_with_history()
        notifier = MagicMock()
        trigger = EscalationTrigger(store, notifier)
        outcome = trigger.process("caller-1", "Apollo is in Bangalore.", "Where is Apollo?")
        trigger.shutdown()
        assert outcome.escalated is False
        assert outcome.text == "Apollo is in Bangalore."
        notifier.notify.assert_not_called()
        assert len(store.snapshot("caller-1")) == 1

    def test_sentinel_strips_notifies_once_and_clears(self):
        store = _store_with_history()
        notifier = MagicMock()
        listener = MagicMock()
        store._on_evict = listener
        trigger = EscalationTrigger(store, notifier)
        outcome = trigger.process("caller-1", OUT_OF_SCOPE, "What's the weather today?")
        trigger.shutdown(wait=True)
        assert outcome.escalated is True
        assert FORWARD_MARKER not in outcome.text
        assert outcome.text.startswith("I'm sorry")
        notifier.notify.assert_called_once_with("caller-1", "What's the weather today?")
        assert store.snapshot("caller-1") == []
        assert store.size() == 0
        listener.assert_called_once()
        assert store.stats()["explicit_removals"] == 1

    def test_notifier_failure_is_logged_not_raised(self, caplog):
        store = _store_with_history()
        notifier = MagicMock()
        notifier.notify.side_effect = HandoffError("webhook down", status_code=503)
        trigger = EscalationTrigger(store, notifier)
        with caplog.at_level(logging.WARNING, logger="escalation"):
            outcome = trigger.process("caller-1", OUT_OF_SCOPE, "Book me a cab")
            trigger.shutdown(wait=True)
        assert outcome.escalated is True
        assert store.size() == 0
        assert "handoff for user caller-1 failed" in caplog.text

    def test_process_does_not_wait_for_notifier(self):
        release = threading.Event()
        notifier = MagicMock()
        notifier.notify.side_effect = lambda *_: release.wait(5)
        store = _store_with_history()
        trigger = EscalationTrigger(store, notifier)
        outcome = trigger.process("caller-1", OUT_OF_SCOPE, "Tell me a joke")
        # Returned while the notifier is still blocked.
        assert outcome.escalated is True
        assert store.size() == 0
        release.set()
        trigger.shutdown(wait=True)

    def test_shutdown_waits_at_most_notify_timeout(self, caplog):
        release = threading.Event()
        notifier = MagicMock()
        notifier.notify.side_effect = lambda *_: release.wait(5)
        trigger = EscalationTrigger(_store_with_history(), notifier, notify_timeout_s=0.1)
        trigger.process("caller-1", OUT_OF_SCOPE, "Order a pizza")
        started = time.monotonic()
        with caplog.at_level(logging.WARNING, logger="escalation"):
            trigger.shutdown(wait=True)
        assert time.monotonic() - started < 2
        assert "still running" in caplog.text
        release.set()

    def test_process_after_shutdown_still_clears_session(self):
        store = _store_with_history()
        trigger = EscalationTrigger(store, MagicMock())
        trigger.shutdown()
        outcome = trigger.process("caller-1", OUT_OF_SCOPE, "Sing a song")
        assert outcome.escalated is True
        assert store.size() == 0


# ── Notifiers ─────────────────────────────────────────────────────────────────

def test_logging_notifier(caplog):
    with caplog.at_level(logging.INFO, logger="escalation"):
        LoggingNotifier().notify("caller-1", "What's the weather?")
    assert "caller-1" in caplog.text


def test_webhook_notifier_posts_payload():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookHandoffNotifier("https://handoff.example/hooks", client=client)
    notifier.notify("caller-1", "What's the weather?")
    notifier.close()
    assert seen[0]["user_id"] == "caller-1"
    assert seen[0]["query"] == "What's the weather?"
    assert "escalated_at" in seen[0]


def test_webhook_notifier_raises_on_error_status():
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="down")))
    notifier = WebhookHandoffNotifier("https://handoff.example/hooks", client=client)
    with pytest.raises(HandoffError) as exc_info:
        notifier.notify("caller-1", "hi")
    assert exc_info.value.status_code == 500


def test_webhook_notifier_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookHandoffNotifier("https://handoff.example/hooks", client=client)
    with pytest.raises(HandoffError):
        notifier.notify("caller-1", "hi")


def test_webhook_notifier_requires_url():
    with pytest.raises(ValueError):
        WebhookHandoffNotifier("")
