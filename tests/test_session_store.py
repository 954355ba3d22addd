"""
test_session_store.py
---------------------
Loop AI - Hospital Network Assistant - Tests for session_store.py
-----------------------------------------------------------------
Turn bound, per-user isolation, idle expiry, LRU capacity eviction,
eviction listener causes, statistics, the background sweeper, and
concurrent appends for one user.

Run:
    pytest tests/test_session_store.py -v --tb=short

Project: Loop AI - Hospital Network Assistant
"""

import os
import sys
import threading
import time
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from schemas import Turn
from session_store import RemovalCause, SessionStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _turn(i):
    return Turn(human=f"question {i}", ai=f"answer {i}")


# ── Turn bound & isolation ────────────────────────────────────────────────────

class TestTurns:
    def test_get_creates_empty_session(self):
        store = SessionStore()
        assert store.get("u1") == []
        assert store.contains("u1")
        assert store.size() == 1

    def test_eleven_turns_keep_last_ten(self):
        store = SessionStore(max_turns=10)
        for i in range(11):
            store.append("u1", _turn(i))
        turns = store.snapshot("u1")
        assert len(turns) == 10
        assert turns[0].human == "question 1"
        assert turns[-1].human == "question 10"

    def test_users_are_isolated(self):
        store = SessionStore()
        store.append("alice", _turn(1))
        store.append("bob", _turn(2))
        assert [t.human for t in store.snapshot("alice")] == ["question 1"]
        assert [t.human for t in store.snapshot("bob")] == ["question 2"]

    def test_snapshot_is_a_copy(self):
        store = SessionStore()
        store.append("u1", _turn(1))
        snap = store.snapshot("u1")
        snap.append(_turn(99))
        assert len(store.snapshot("u1")) == 1

    def test_snapshot_of_unknown_user_creates_nothing(self):
        store = SessionStore()
        assert store.snapshot("ghost") == []
        assert store.size() == 0

    def test_append_rejects_non_turn(self):
        with pytest.raises(TypeError):
            SessionStore().append("u1", {"human": "hi", "ai": "hello"})

    def test_clear(self):
        store = SessionStore()
        store.append("u1", _turn(1))
        assert store.clear("u1") is True
        assert store.clear("u1") is False
        assert store.snapshot("u1") == []
        assert store.size() == 0

    def test_append_survives_clear_before_write(self):
        store = SessionStore()
        store.append("u1", _turn(0))
        acquire = store._acquire
        calls = []

        def acquire_then_clear(key):
            result = acquire(key)
            if not calls:
                calls.append(key)
                store.clear(key)
            return result

        store._acquire = acquire_then_clear
        store.append("u1", _turn(1))
        assert [t.human for t in store.snapshot("u1")] == ["question 1"]
        assert store.size() == 1

    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError):
            SessionStore(max_turns=0)
        with pytest.raises(ValueError):
            SessionStore(max_sessions=0)
        with pytest.raises(ValueError):
            SessionStore(idle_timeout_s=0)


# ── Idle expiry ───────────────────────────────────────────────────────────────

class TestExpiry:
    def test_idle_session_absent_then_recreated_empty(self):
        clock = FakeClock()
        store = SessionStore(idle_timeout_s=1800, clock=clock)
        store.append("u1", _turn(1))
        clock.advance(1801)
        assert store.contains("u1") is False
        assert store.get("u1") == []
        assert store.contains("u1") is True

    def test_access_refreshes_idle_window(self):
        clock = FakeClock()
        store = SessionStore(idle_timeout_s=100, clock=clock)
        store.append("u1", _turn(1))
        clock.advance(80)
        store.snapshot("u1")
        clock.advance(80)
        assert len(store.snapshot("u1")) == 1

    def test_expired_snapshot_is_empty_and_removed(self):
        clock = FakeClock()
        store = SessionStore(idle_timeout_s=100, clock=clock)
        store.append("u1", _turn(1))
        clock.advance(101)
        assert store.snapshot("u1") == []
        assert store.size() == 0

    def test_purge_expired(self):
        clock = FakeClock()
        listener = MagicMock()
        store = SessionStore(idle_timeout_s=100, clock=clock, on_evict=listener)
        store.append("old", _turn(1))
        clock.advance(60)
        store.append("fresh", _turn(2))
        clock.advance(60)
        assert store.purge_expired() == 1
        assert not store.contains("old")
        assert store.contains("fresh")
        user_id, turns, cause = listener.call_args[0]
        assert user_id == "old"
        assert turns[0].human == "question 1"
        assert cause is RemovalCause.EXPIRED

    def test_sweeper_purges_in_background(self):
        clock = FakeClock()
        store = SessionStore(idle_timeout_s=10, clock=clock)
        store.append("u1", _turn(1))
        clock.advance(11)
        store.start_sweeper(0.01)
        try:
            deadline = time.time() + 2
            while store.size() and time.time() < deadline:
                time.sleep(0.01)
        finally:
            store.stop_sweeper()
        assert store.size() == 0


# ── Capacity ──────────────────────────────────────────────────────────────────

class TestCapacity:
    def test_least_recently_accessed_is_evicted(self):
        clock = FakeClock()
        listener = MagicMock()
        store = SessionStore(max_sessions=2, clock=clock, on_evict=listener)
        store.get("a")
        clock.advance(1)
        store.get("b")
        clock.advance(1)
        store.get("a")
        clock.advance(1)
        store.get("c")
        assert store.size() == 2
        assert store.contains("a")
        assert store.contains("c")
        assert not store.contains("b")
        listener.assert_called_once()
        assert listener.call_args[0][0] == "b"
        assert listener.call_args[0][2] is RemovalCause.SIZE

    def test_size_never_exceeds_capacity(self):
        store = SessionStore(max_sessions=5)
        for i in range(50):
            store.append(f"user{i}", _turn(i))
            assert store.size() <= 5

    def test_listener_failure_is_swallowed_and_logged(self, caplog):
        store = SessionStore(on_evict=MagicMock(side_effect=RuntimeError("listener broke")))
        store.get("u1")
        assert store.clear("u1") is True
        assert "eviction listener failed" in caplog.text


# ── Stats ─────────────────────────────────────────────────────────────────────

def test_stats_counts():
    clock = FakeClock()
    store = SessionStore(max_sessions=1, idle_timeout_s=100, clock=clock)
    store.get("a")          # miss
    store.get("a")          # hit
    store.get("b")          # miss, evicts a
    store.clear("b")        # explicit
    stats = store.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 2
    assert stats["evictions"] == 1
    assert stats["evicted_for_size"] == 1
    assert stats["explicit_removals"] == 1
    assert stats["size"] == 0


# ── Concurrency ───────────────────────────────────────────────────────────────

def test_concurrent_appends_for_one_user_are_all_recorded():
    store = SessionStore(max_turns=1000)

    def worker(n):
        for i in range(50):
            store.append("caller", Turn(human=f"{n}-{i}", ai="ok"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    turns = store.snapshot("caller")
    assert len(turns) == 400
    assert len({t.human for t in turns}) == 400
