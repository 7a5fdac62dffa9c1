"""Keyed locks for per-user and per-venue serialization."""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLocks:
    """Lazily created re-entrant lock per key.

    Operations on different keys never block each other; operations on the
    same key are serialized.

    Example:
        >>> locks = KeyedLocks()
        >>> with locks.hold("0xabc"):
        ...     pass
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
