"""
Unit Tests for SessionStore

Tests:
- Create / duplicate / lookup
- Monotonic threat level
- Idle eviction strictly past the window
- Per-session FIFO locks and their cleanup
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from safecall.core.exceptions import DuplicateSession, SessionNotFound
from safecall.models.session import Message, MessageRole, SessionKind
from safecall.models.threat import ThreatLevel
from safecall.persistence.session_store import SessionStore

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return SessionStore()


class TestLifecycle:
    def test_create_and_get(self, store):
        session = store.create("s1", "u1", channel_handle="c1", kind=SessionKind.WALK, now=START)
        assert store.get("s1") is session
        assert "s1" in store
        assert len(store) == 1
        assert session.kind == SessionKind.WALK
        assert session.started_at == session.last_activity_at == START
        assert session.current_threat_level == ThreatLevel.NONE

    def test_duplicate_raises(self, store):
        store.create("s1", "u1")
        with pytest.raises(DuplicateSession):
            store.create("s1", "u2")

    def test_require_unknown_raises(self, store):
        with pytest.raises(SessionNotFound):
            store.require("missing")

    def test_remove_is_idempotent(self, store):
        store.create("s1", "u1")
        assert store.remove("s1") is not None
        assert store.remove("s1") is None
        assert store.get("s1") is None

    def test_sessions_for_connection(self, store):
        store.create("s1", "u1", channel_handle="c1")
        store.create("s2", "u2", channel_handle="c2")
        store.create("s3", "u1", channel_handle="c1")
        assert sorted(store.sessions_for_connection("c1")) == ["s1", "s3"]


class TestMutation:
    def test_append_message(self, store):
        store.create("s1", "u1")
        store.append_message("s1", Message(session_id="s1", role=MessageRole.USER, content="hi"))
        assert [m.content for m in store.get("s1").history] == ["hi"]

    def test_append_message_for_other_session_rejected(self, store):
        store.create("s1", "u1")
        with pytest.raises(ValueError):
            store.append_message("s1", Message(session_id="s2", role=MessageRole.USER, content="hi"))

    def test_threat_level_never_decreases(self, store):
        store.create("s1", "u1")
        assert store.set_threat_level("s1", ThreatLevel.HIGH) == ThreatLevel.HIGH
        assert store.set_threat_level("s1", ThreatLevel.LOW) == ThreatLevel.HIGH
        assert store.set_threat_level("s1", ThreatLevel.CRITICAL) == ThreatLevel.CRITICAL

    def test_explicit_reset(self, store):
        store.create("s1", "u1")
        store.set_threat_level("s1", ThreatLevel.CRITICAL)
        store.reset_threat_level("s1")
        assert store.get("s1").current_threat_level == ThreatLevel.NONE
        with pytest.raises(SessionNotFound):
            store.reset_threat_level("ghost")

    def test_recent_history_window(self, store):
        session = store.create("s1", "u1")
        for i in range(15):
            store.append_message("s1", Message(session_id="s1", role=MessageRole.USER, content=str(i)))
        assert [m.content for m in session.recent_history(10)] == [str(i) for i in range(5, 15)]
        assert session.recent_history(0) == []


class TestEvictIdle:
    def test_evicts_only_sessions_strictly_past_window(self, store):
        window = timedelta(minutes=30)
        store.create("fresh", "u", now=START)
        store.create("boundary", "u", now=START)
        store.create("stale", "u", now=START)
        store.touch("fresh", START + timedelta(minutes=20))
        store.touch("boundary", START + timedelta(minutes=1))
        evicted_records = []

        now = START + timedelta(minutes=31)
        evicted = store.evict_idle(now, window, on_evicted=evicted_records.append)

        assert evicted == ["stale"]
        assert [s.id for s in evicted_records] == ["stale"]
        assert sorted(store.ids()) == ["boundary", "fresh"]

    def test_accepts_seconds(self, store):
        store.create("s1", "u", now=START)
        assert store.evict_idle(START + timedelta(seconds=11), 10) == ["s1"]


class TestLocks:
    def test_same_id_shares_a_lock(self, store):
        assert store.lock("s1") is store.lock("s1")
        assert store.lock("s1") is not store.lock("s2")

    @pytest.mark.asyncio
    async def test_lock_waiters_run_in_arrival_order(self, store):
        order = []

        async def worker(label):
            async with store.lock("s1"):
                order.append(label)
                await asyncio.sleep(0)

        await asyncio.gather(*(worker(i) for i in range(5)))
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_lock_kept_while_session_is_live(self, store):
        store.create("s1", "u1")
        async with store.locked("s1"):
            pass

        assert store.lock_count() == 1
        store.remove("s1")
        assert store.lock_count() == 0

    @pytest.mark.asyncio
    async def test_lock_dropped_when_holder_leaves_removed_session(self, store):
        store.create("s1", "u1")
        async with store.locked("s1"):
            store.remove("s1")
            assert store.lock_count() == 1

        assert store.lock_count() == 0

    @pytest.mark.asyncio
    async def test_lock_survives_until_last_waiter_leaves(self, store):
        store.create("s1", "u1")
        release = asyncio.Event()
        order = []

        async def holder():
            async with store.locked("s1"):
                order.append("holder")
                await release.wait()

        async def waiter():
            async with store.locked("s1"):
                order.append("waiter")

        first = asyncio.create_task(holder())
        await asyncio.sleep(0)
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)

        store.remove("s1")
        assert store.lock_count() == 1
        release.set()
        await asyncio.gather(first, second)

        assert order == ["holder", "waiter"]
        assert store.lock_count() == 0
