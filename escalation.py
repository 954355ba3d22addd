"""
escalation.py
-------------
Loop AI - Hospital Network Assistant - Human Handoff Escalation
---------------------------------------------------------------
The LLM marks a reply as out of scope by including the sentinel
``FORWARD_TO_HUMAN:``.  This module trusts that decision: it performs no
scope judgment of its own.  When the sentinel is present the trigger

    1. strips it from the text the caller will hear,
    2. submits exactly one best-effort handoff notification to a small
       thread pool (the request never waits for it),
    3. clears the caller's session, whether or not the handoff succeeds.

A failed or slow notification is logged and never reaches the
conversation.  The webhook notifier bounds each call with its HTTP timeout;
shutdown waits at most ``notify_timeout_s`` for any notifier still running.

Public API:
    FORWARD_MARKER, contains_marker(), strip_marker()
    EscalationTrigger.process(user_id, response_text, user_query)
    LoggingNotifier, WebhookHandoffNotifier, HandoffError

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Set

import httpx
from pydantic import BaseModel, ConfigDict

from session_store import SessionStore

logger = logging.getLogger(__name__)

FORWARD_MARKER = "FORWARD_TO_HUMAN:"

DEFAULT_HANDOFF_TIMEOUT_S = 10.0


def contains_marker(text: Any) -> bool:
    return isinstance(text, str) and FORWARD_MARKER in text


def strip_marker(text: Any) -> str:
    """Remove every occurrence of the sentinel and trim the result."""
    if text is None:
        return ""
    return str(text).replace(FORWARD_MARKER, "").strip()


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------

class HandoffError(Exception):
    """Raised by a notifier when the handoff endpoint rejects or cannot take the call."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class EscalationNotifier(Protocol):
    def notify(self, user_id: str, query_text: str) -> None: ...


class LoggingNotifier:
    """Used when handoff is disabled: records the escalation and does nothing else."""

    def notify(self, user_id: str, query_text: str) -> None:
        logger.info("escalation: handoff disabled; user %s asked %r.", user_id, query_text)


class WebhookHandoffNotifier:
    """
    POSTs ``{"user_id", "query", "escalated_at"}`` to a human-agent webhook.

    Args:
        url:     Webhook endpoint.
        timeout: HTTP timeout in seconds for the whole request.
        client:  Optional pre-built ``httpx.Client`` (tests inject a mock
                 transport here).
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_HANDOFF_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not url:
            raise ValueError("a webhook URL is required.")
        self.url = url
        self.timeout = timeout
        self._http = client if client is not None else httpx.Client(timeout=timeout)

    def notify(self, user_id: str, query_text: str) -> None:
        """
        Deliver one handoff request.

        Raises:
            HandoffError: on transport failure or a non-2xx response.
        """
        payload = {
            "user_id": user_id,
            "query": query_text,
            "escalated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            resp = self._http.post(self.url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise HandoffError(f"Handoff request failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise HandoffError(
                f"Handoff webhook returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        logger.info("escalation: handoff delivered for user %s.", user_id)

    def close(self) -> None:
        self._http.close()


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------

class EscalationOutcome(BaseModel):
    """What to speak to the caller, and whether the turn was handed off."""

    model_config = ConfigDict(frozen=True)

    text:      str
    escalated: bool = False


class EscalationTrigger:
    """
    Detects the handoff sentinel in generated text and performs the handoff.

    Args:
        store:            Session store whose entry is cleared on escalation.
        notifier:         Anything with ``notify(user_id, query_text)``.
        max_workers:      Size of the notification thread pool.
        notify_timeout_s: Longest ``shutdown(wait=True)`` waits for pending
                          notifications; stragglers are logged and abandoned.
    """

    def __init__(
        self,
        store: SessionStore,
        notifier: EscalationNotifier,
        max_workers: int = 2,
        notify_timeout_s: float = DEFAULT_HANDOFF_TIMEOUT_S,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.notify_timeout_s = notify_timeout_s if notify_timeout_s > 0 else DEFAULT_HANDOFF_TIMEOUT_S
        self._pool = ThreadPoolExecutor(max_workers=max(max_workers, 1), thread_name_prefix="handoff")
        self._pending: Set["Future[None]"] = set()
        self._pending_lock = threading.Lock()

    def process(self, user_id: Any, response_text: Any, user_query: Any) -> EscalationOutcome:
        """
        Inspect one generated reply.

        Args:
            user_id:       Caller whose conversation produced the reply.
            response_text: Raw LLM output, possibly carrying the sentinel.
            user_query:    The caller's utterance, forwarded to the human agent.

        Returns:
            EscalationOutcome: stripped text and ``escalated=True`` when the
                sentinel was present; the text unchanged otherwise.
        """
        text = "" if response_text is None else str(response_text)
        if not contains_marker(text):
            return EscalationOutcome(text=text, escalated=False)

        uid = "" if user_id is None else str(user_id)
        query = "" if user_query is None else str(user_query)
        logger.info("escalation: out-of-scope reply for user %s; forwarding to a human agent.", uid)

        try:
            future = self._pool.submit(self.notifier.notify, uid, query)
        except RuntimeError:
            # Pool already shut down; the session is still ended.
            logger.warning("escalation: notifier pool closed; handoff for user %s not sent.", uid)
        else:
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(lambda f: self._finished(uid, f))

        self.store.clear(uid)
        return EscalationOutcome(text=strip_marker(text), escalated=True)

    def _finished(self, user_id: str, future: "Future[None]") -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.warning("escalation: handoff for user %s cancelled at shutdown.", user_id)
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("escalation: handoff for user %s failed: %s", user_id, exc)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting handoffs.  With *wait*, block at most
        ``notify_timeout_s`` for notifications already submitted.
        """
        with self._pending_lock:
            pending = set(self._pending)
        not_done = set()
        if wait and pending:
            _, not_done = futures_wait(pending, timeout=self.notify_timeout_s)
            if not_done:
                logger.warning(
                    "escalation: %d handoff(s) still running after %.1fs; abandoning.",
                    len(not_done), self.notify_timeout_s,
                )
        # Every worker is finished or idle unless something was abandoned.
        self._pool.shutdown(wait=wait and not not_done, cancel_futures=bool(not_done))
