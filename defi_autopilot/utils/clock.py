"""Time sources for the engine.

All engine timestamps are integer unix seconds taken from a clock object, so
callers never supply their own timestamps and tests can move time explicitly.
"""

import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of engine timestamps."""

    @abstractmethod
    def now(self) -> int:
        """Return the current time in unix seconds."""
        pass


class SystemClock(Clock):
    """Wall clock in whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock(Clock):
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(1_700_000_000)
        >>> clock.advance(3600)
        >>> clock.now()
        1700003600
    """

    def __init__(self, start: int = 1_700_000_000):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, seconds: int) -> None:
        if seconds < 0:
            raise ValueError(f"seconds must be non-negative, got {seconds}")
        with self._lock:
            self._now += seconds

    def set(self, timestamp: int) -> None:
        with self._lock:
            self._now = timestamp
