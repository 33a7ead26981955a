"""
tests/test_concurrency.py -- Races the per-user critical sections.

Two requests for the same user are the realistic race: simultaneous logins
must not jointly exceed the session cap, and two simultaneous uses of one
reset secret must succeed exactly once. Threads hit one shared AuthService
over a file-backed SQLite database.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from auth.errors import InvalidOrExpiredToken, TokenInvalid
from auth.locks import KeyedLock
from auth.models import Purpose
from auth.service import AuthService
from conftest import PASSWORD


def test_concurrent_logins_respect_capacity(service: AuthService, make_user) -> None:
    uid = make_user()
    cap = service.config.max_sessions
    barrier = threading.Barrier(cap * 2)

    def login(i: int):
        barrier.wait()
        return service.login("alice@example.com", PASSWORD, "ip", f"worker-{i}")

    with ThreadPoolExecutor(max_workers=cap * 2) as pool:
        results = list(pool.map(login, range(cap * 2)))

    assert len({t.session_id for t in results}) == cap * 2
    assert service.session_store.count_valid(uid) == cap
    assert len(service.session_store.list_for_user(uid)) == cap * 2


def test_concurrent_reset_consumes_once(service: AuthService, make_user, notifier) -> None:
    uid = make_user()
    service.forgot_password("alice@example.com", "ip")
    secret = notifier.last_secret(Purpose.PASSWORD_RESET)
    workers = 4
    barrier = threading.Barrier(workers)

    def attempt(i: int) -> bool:
        barrier.wait()
        try:
            service.reset_password(uid, secret, f"new passphrase {i}")
        except InvalidOrExpiredToken:
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    assert outcomes.count(True) == 1


def test_concurrent_forgot_password_leaves_one_unused_token(service: AuthService, make_user, notifier) -> None:
    uid = make_user()
    workers = 4
    barrier = threading.Barrier(workers)

    def request(_: int) -> None:
        barrier.wait()
        service.forgot_password("alice@example.com", "ip")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(request, range(workers)))

    assert len(service.ledger.list_for_user(uid, Purpose.PASSWORD_RESET)) == workers
    assert len(service.ledger.unused_for(uid, Purpose.PASSWORD_RESET)) == 1
    assert len(notifier.sent) == workers


def test_concurrent_refreshes_redeem_once(service: AuthService, make_user) -> None:
    uid = make_user()
    tokens = service.login("alice@example.com", PASSWORD, "ip", "ua")
    workers = 4
    barrier = threading.Barrier(workers)

    def attempt(_: int) -> bool:
        barrier.wait()
        try:
            service.refresh(tokens.refresh_token, "ip", "ua")
        except TokenInvalid:
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    assert outcomes.count(True) == 1
    assert service.session_store.count_valid(uid) == 1


def test_keyed_lock_releases_entries() -> None:
    locks = KeyedLock()
    with locks.hold(1):
        with locks.hold(2):
            assert len(locks) == 2
    assert len(locks) == 0


def test_keyed_lock_serialises_same_key() -> None:
    locks = KeyedLock()
    inside = 0
    peak = 0
    guard = threading.Lock()

    def work(_: int) -> None:
        nonlocal inside, peak
        with locks.hold("user-1"):
            with guard:
                inside += 1
                peak = max(peak, inside)
            threading.Event().wait(0.01)
            with guard:
                inside -= 1

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(16)))

    assert peak == 1
