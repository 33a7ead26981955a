"""
tests/test_session_store.py -- Integration tests for auth.sessions.SessionStore.

Runs against a real file-backed SQLite engine. Covers:
  - insert_with_capacity keeps count(valid) <= max_sessions
  - eviction is oldest-first by last_activity_at
  - invalidate is idempotent and never deletes rows
  - touch moves a session to the back of the eviction queue
  - normalize_session_id accepts uuid spellings and rejects everything else
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import Session
from auth.sessions import SessionStore, new_session_id, normalize_session_id
from conftest import FakeClock


@pytest.fixture
def store(engine, clock: FakeClock) -> SessionStore:
    return SessionStore(engine, clock=clock)


@pytest.fixture
def uid(make_user) -> int:
    return make_user()


def _session(user_id: int, clock: FakeClock) -> Session:
    now = clock()
    return Session(
        id=new_session_id(),
        user_id=user_id,
        access_token_hash="access-hash",
        refresh_token_hash="refresh-hash",
        expires_at=now + timedelta(days=7),
        last_activity_at=now,
        issuing_ip="203.0.113.7",
        issuing_user_agent="pytest",
        created_at=now,
    )


class TestCapacity:
    def test_under_capacity_evicts_nothing(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        for _ in range(3):
            assert store.insert_with_capacity(_session(uid, clock), max_sessions=5) == []
            clock.advance(seconds=1)
        assert store.count_valid(uid) == 3

    def test_count_never_exceeds_max(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        for _ in range(8):
            store.insert_with_capacity(_session(uid, clock), max_sessions=3)
            assert store.count_valid(uid) <= 3
            clock.advance(seconds=1)
        assert store.count_valid(uid) == 3
        assert len(store.list_for_user(uid)) == 8

    def test_eviction_order_oldest_first(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        a, b, c = (_session(uid, clock) for _ in range(3))
        store.insert_with_capacity(a, max_sessions=2)
        clock.advance(seconds=1)
        b.last_activity_at = clock()
        store.insert_with_capacity(b, max_sessions=2)
        clock.advance(seconds=1)
        c.last_activity_at = clock()
        evicted = store.insert_with_capacity(c, max_sessions=2)

        assert evicted == [a.id]
        assert [s.id for s in store.list_valid(uid)] == [b.id, c.id]
        assert store.get(a.id).is_valid is False

    def test_max_one_keeps_only_newest(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        first = _session(uid, clock)
        store.insert_with_capacity(first, max_sessions=1)
        clock.advance(seconds=1)
        second = _session(uid, clock)
        store.insert_with_capacity(second, max_sessions=1)
        assert [s.id for s in store.list_valid(uid)] == [second.id]

    def test_capacity_is_per_user(self, store: SessionStore, make_user, clock: FakeClock) -> None:
        alice = make_user("alice@example.com")
        bob = make_user("bob@example.com")
        for _ in range(2):
            store.insert_with_capacity(_session(alice, clock), max_sessions=2)
            clock.advance(seconds=1)
        store.insert_with_capacity(_session(bob, clock), max_sessions=2)
        assert store.count_valid(alice) == 2
        assert store.count_valid(bob) == 1

    def test_touch_protects_active_session(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        a = _session(uid, clock)
        store.insert_with_capacity(a, max_sessions=2)
        clock.advance(seconds=1)
        b = _session(uid, clock)
        store.insert_with_capacity(b, max_sessions=2)
        clock.advance(seconds=1)
        assert store.touch(a.id)
        clock.advance(seconds=1)
        store.insert_with_capacity(_session(uid, clock), max_sessions=2)

        assert store.get(a.id).is_valid is True
        assert store.get(b.id).is_valid is False


class TestInvalidate:
    def test_invalidate_is_idempotent(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        s = _session(uid, clock)
        store.insert_with_capacity(s, max_sessions=5)
        clock.advance(seconds=1)
        assert store.invalidate([s.id]) == 1
        stamped = store.get(s.id).invalidated_at
        clock.advance(seconds=1)
        assert store.invalidate([s.id]) == 0
        row = store.get(s.id)
        assert row.is_valid is False
        assert row.invalidated_at == stamped

    def test_invalidate_empty_list(self, store: SessionStore) -> None:
        assert store.invalidate([]) == 0

    def test_invalidate_all(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        for _ in range(3):
            store.insert_with_capacity(_session(uid, clock), max_sessions=5)
        assert store.invalidate_all(uid) == 3
        assert store.count_valid(uid) == 0
        assert len(store.list_for_user(uid)) == 3

    def test_touch_unknown_session(self, store: SessionStore) -> None:
        assert store.touch(new_session_id()) is False


class TestRowMapping:
    def test_timestamps_round_trip(self, store: SessionStore, uid: int, clock: FakeClock) -> None:
        s = _session(uid, clock)
        store.insert_with_capacity(s, max_sessions=5)
        loaded = store.get(s.id)
        assert loaded.expires_at == s.expires_at
        assert loaded.created_at == clock()
        assert loaded.issuing_ip == "203.0.113.7"
        assert loaded.is_valid is True
        assert loaded.invalidated_at is None

    def test_get_missing(self, store: SessionStore) -> None:
        assert store.get(new_session_id()) is None


class TestNormalizeSessionId:
    def test_hex_and_dashed_forms(self) -> None:
        sid = new_session_id()
        dashed = f"{sid[:8]}-{sid[8:12]}-{sid[12:16]}-{sid[16:20]}-{sid[20:]}"
        assert normalize_session_id(sid) == sid
        assert normalize_session_id(dashed.upper()) == sid

    @pytest.mark.parametrize("value", [None, "", "not-a-uuid", "1234", 42, "g" * 32])
    def test_rejects_malformed(self, value) -> None:
        assert normalize_session_id(value) is None
