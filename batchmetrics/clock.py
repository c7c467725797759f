"""Clock sources for collection windows."""
import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of epoch-nanosecond timestamps."""

    def now(self) -> int:
        """Return the current time in epoch nanoseconds."""
        ...


class SystemClock:
    """Wall clock backed by time.time_ns()."""

    def now(self) -> int:
        return time.time_ns()


class TestClock:
    """Manually advanced clock for deterministic collection windows."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, epoch_nanos: int = 1_557_212_400_123_456_789):
        self._lock = threading.Lock()
        self._now = epoch_nanos

    def now(self) -> int:
        with self._lock:
            return self._now

    def set_time(self, epoch_nanos: int):
        """Jump to an absolute time."""
        with self._lock:
            self._now = epoch_nanos

    def advance_nanos(self, nanos: int):
        """Move the clock forward by the given number of nanoseconds."""
        with self._lock:
            self._now += nanos

    def advance_millis(self, millis: int):
        self.advance_nanos(millis * 1_000_000)
