"""
CryptoEscrow - Clock sources

The escrow core reads the current time once per operation from an injected
clock; there is no background timer. Timestamps are float seconds since the
epoch.
"""

import threading
import time


class Clock:
    """Monotonically non-decreasing timestamp source."""

    def now(self) -> float:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()


class ManualClock(Clock):
    """Clock advanced explicitly; used by tests and simulations."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now
