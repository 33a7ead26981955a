"""
auth/locks.py -- Per-key mutual exclusion for read-then-write sequences.

Two concurrent requests for the same user are the only realistic race in
the core (two logins both seeing "under capacity", two resets both seeing
an unused token). KeyedLock serialises those sequences per user inside one
process; requests for different users never wait on each other.

The database transaction around the same sequence still matters: it makes
the writes all-or-nothing, and on PostgreSQL the SELECT ... FOR UPDATE taken
by SessionStore.lock_user() extends the serialisation across processes.

Entries are reference-counted and dropped when the last holder leaves, so the
registry does not grow with the number of users ever seen.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
