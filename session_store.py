"""
session_store.py
----------------
Loop AI - Hospital Network Assistant - Per-user Session Store
-------------------------------------------------------------
Bounded conversation memory for many concurrent callers.  Three capacity
controls hold at the same time:

    idle expiry     a session not touched for ``idle_timeout_s`` is removed,
                    either by the background sweeper or on its next access
    global capacity admitting a new user beyond ``max_sessions`` evicts the
                    least-recently-accessed session (LRU)
    turn bound      each session keeps the ``max_turns`` most recent turns,
                    oldest dropped first

Locking
-------
The map lock guards only O(1) bookkeeping on the OrderedDict (lookup,
move-to-end, pop).  Each session carries its own lock, held while its turns
are read or modified, so two requests for the same user never interleave
and requests for different users never wait on each other.  When both
are held, the session lock is taken first.  Eviction listeners run after
every lock has been released.

Public API:
    SessionStore.get / append / snapshot / clear / contains / size
    SessionStore.purge_expired, start_sweeper, stop_sweeper, stats
    RemovalCause: EXPIRED, SIZE, EXPLICIT

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from schemas import Turn

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10
DEFAULT_MAX_SESSIONS = 1000
DEFAULT_IDLE_TIMEOUT_S = 30 * 60
DEFAULT_SWEEP_INTERVAL_S = 60.0


class RemovalCause(str, Enum):
    EXPIRED = "expired"
    SIZE = "size"
    EXPLICIT = "explicit"


EvictionListener = Callable[[str, List[Turn], RemovalCause], None]


class _Session:
    __slots__ = ("user_id", "turns", "last_access", "lock")

    def __init__(self, user_id: str, max_turns: int, now: float) -> None:
        self.user_id = user_id
        self.turns: Deque[Turn] = deque(maxlen=max_turns)
        self.last_access = now
        self.lock = threading.Lock()


def _key(user_id: Any) -> str:
    return "" if user_id is None else str(user_id)


class SessionStore:
    """
    TTL + LRU map from user id to a bounded turn history.

    Args:
        max_turns:      Turns kept per session.
        max_sessions:   Live sessions kept before LRU eviction.
        idle_timeout_s: Seconds without access after which a session expires.
        clock:          Monotonic time source; injectable for tests.
        on_evict:       Optional ``(user_id, turns, cause)`` listener.
    """

    def __init__(
        self,
        max_turns: int = DEFAULT_MAX_TURNS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        idle_timeout_s: float = DEFAULT_IDLE_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[EvictionListener] = None,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1.")
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1.")
        if idle_timeout_s <= 0:
            raise ValueError("idle_timeout_s must be positive.")
        self.max_turns = max_turns
        self.max_sessions = max_sessions
        self.idle_timeout_s = idle_timeout_s
        self._clock = clock
        self._on_evict = on_evict

        self._lock = threading.Lock()
        self._sessions: "OrderedDict[str, _Session]" = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions: Dict[RemovalCause, int] = {cause: 0 for cause in RemovalCause}

        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ── Internal bookkeeping (caller holds self._lock) ───────────────────────

    def _expired(self, session: _Session, now: float) -> bool:
        return now - session.last_access > self.idle_timeout_s

    def _acquire(self, user_id: str) -> Tuple[_Session, List[Tuple[_Session, RemovalCause]]]:
        """Return the live session for *user_id*, creating it; also the removals this caused."""
        removed: List[Tuple[_Session, RemovalCause]] = []
        now = self._clock()
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None and self._expired(session, now):
                del self._sessions[user_id]
                removed.append((session, RemovalCause.EXPIRED))
                session = None
            if session is None:
                self._misses += 1
                while len(self._sessions) >= self.max_sessions:
                    _, oldest = self._sessions.popitem(last=False)
                    removed.append((oldest, RemovalCause.SIZE))
                session = _Session(user_id, self.max_turns, now)
                self._sessions[user_id] = session
            else:
                self._hits += 1
                session.last_access = now
                self._sessions.move_to_end(user_id)
            for _, cause in removed:
                self._evictions[cause] += 1
        return session, removed

    def _notify(self, removed: List[Tuple[_Session, RemovalCause]]) -> None:
        for session, cause in removed:
            with session.lock:
                turns = list(session.turns)
            logger.info("session_store: memory removed for user %s (%s).", session.user_id, cause.value)
            if self._on_evict is None:
                continue
            try:
                self._on_evict(session.user_id, turns, cause)
            except Exception:
                logger.exception("session_store: eviction listener failed for user %s.", session.user_id)

    # ── Public API ───────────────────────────────────────────────────────────

    def get(self, user_id: Any) -> List[Turn]:
        """
        Return the user's turns, creating an empty session on first access.

        Refreshes ``last_access``.  An expired session found here is removed
        and replaced by a fresh, empty one.
        """
        session, removed = self._acquire(_key(user_id))
        with session.lock:
            turns = list(session.turns)
        self._notify(removed)
        return turns

    def append(self, user_id: Any, turn: Turn) -> None:
        """Append *turn*; the oldest turn is dropped once ``max_turns`` is exceeded."""
        if not isinstance(turn, Turn):
            raise TypeError(f"expected Turn, got {type(turn).__name__}.")
        key = _key(user_id)
        removed: List[Tuple[_Session, RemovalCause]] = []
        while True:
            session, evicted = self._acquire(key)
            removed.extend(evicted)
            with session.lock:
                # A clear or eviction between _acquire and here detached the
                # session from the map; retry against the live one.
                with self._lock:
                    live = self._sessions.get(key) is session
                if live:
                    session.turns.append(turn)
                    session.last_access = self._clock()
                    break
        self._notify(removed)

    def snapshot(self, user_id: Any) -> List[Turn]:
        """
        Copy of the user's turns, oldest first.

        Unknown users get ``[]`` and no session is created.  An expired
        session is removed and reported as empty.
        """
        key = _key(user_id)
        removed: List[Tuple[_Session, RemovalCause]] = []
        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is not None and self._expired(session, now):
                del self._sessions[key]
                self._evictions[RemovalCause.EXPIRED] += 1
                removed.append((session, RemovalCause.EXPIRED))
                session = None
            if session is None:
                self._misses += 1
            else:
                self._hits += 1
                session.last_access = now
                self._sessions.move_to_end(key)
        self._notify(removed)
        if session is None:
            return []
        with session.lock:
            return list(session.turns)

    def clear(self, user_id: Any) -> bool:
        """Remove the user's session immediately.  Returns True when one existed."""
        with self._lock:
            session = self._sessions.pop(_key(user_id), None)
            if session is not None:
                self._evictions[RemovalCause.EXPLICIT] += 1
        if session is None:
            return False
        self._notify([(session, RemovalCause.EXPLICIT)])
        return True

    def contains(self, user_id: Any) -> bool:
        """True when a live, unexpired session exists.  Does not refresh access."""
        now = self._clock()
        with self._lock:
            session = self._sessions.get(_key(user_id))
            return session is not None and not self._expired(session, now)

    def size(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ── Maintenance ──────────────────────────────────────────────────────────

    def purge_expired(self) -> int:
        """Remove every expired session.  Returns how many were removed."""
        now = self._clock()
        removed: List[Tuple[_Session, RemovalCause]] = []
        with self._lock:
            for user_id, session in list(self._sessions.items()):
                if self._expired(session, now):
                    del self._sessions[user_id]
                    removed.append((session, RemovalCause.EXPIRED))
            self._evictions[RemovalCause.EXPIRED] += len(removed)
        self._notify(removed)
        if removed:
            logger.debug("session_store.purge_expired: removed %d session(s).", len(removed))
        return len(removed)

    def start_sweeper(self, interval_s: float = DEFAULT_SWEEP_INTERVAL_S) -> None:
        """Start the background idle-expiry sweep (no-op when already running)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        interval = interval_s if interval_s > 0 else DEFAULT_SWEEP_INTERVAL_S

        def _run() -> None:
            while not self._stop_event.wait(interval):
                try:
                    self.purge_expired()
                except Exception:
                    logger.exception("session_store: sweep failed.")

        self._sweeper = threading.Thread(target=_run, name="session-sweeper", daemon=True)
        self._sweeper.start()
        logger.info("session_store: sweeper started (every %.0fs).", interval)

    def stop_sweeper(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def stats(self) -> Dict[str, Any]:
        """
        Get store statistics.

        Returns:
            Dictionary with hits, misses, evictions (expired + size),
            explicit removals and current size.
        """
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions[RemovalCause.EXPIRED] + self._evictions[RemovalCause.SIZE],
                "expired": self._evictions[RemovalCause.EXPIRED],
                "evicted_for_size": self._evictions[RemovalCause.SIZE],
                "explicit_removals": self._evictions[RemovalCause.EXPLICIT],
                "size": len(self._sessions),
            }
