"""
Per-book mutual exclusion for the read-modify-regenerate-write cycle.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class BookLockManager:
    """Hands out one lock per key; idle locks are dropped."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


book_locks = BookLockManager()
