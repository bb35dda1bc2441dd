"""
Timing - Monotonic deadlines and interruptible waits.

Every wait in the engine goes through Sleeper so it can be cut short by a
cancel signal, and every budget is a Deadline measured on a monotonic clock
so wall-clock adjustments never stretch or shrink an in-flight wait.
"""

import asyncio
import time
from typing import Callable, Optional

Clock = Callable[[], float]


class Deadline:
    """
    An optional expiry point on a monotonic clock.

    A Deadline created without a timeout never expires, but still tracks
    elapsed time from its start.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Clock = time.monotonic):
        if timeout is not None and timeout < 0:
            raise ValueError(f"Deadline timeout must not be negative: {timeout}")
        self._clock = clock
        self.started_at = clock()
        self.expires_at: Optional[float] = (
            None if timeout is None else self.started_at + timeout
        )

    @classmethod
    def _at(cls, started_at: float, expires_at: Optional[float], clock: Clock) -> "Deadline":
        deadline = cls.__new__(cls)
        deadline._clock = clock
        deadline.started_at = started_at
        deadline.expires_at = expires_at
        return deadline

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> float:
        return self._clock()

    def elapsed(self) -> float:
        """Seconds since this deadline was started."""
        return self._clock() - self.started_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None if the deadline is unbounded."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    def child(self) -> "Deadline":
        """A deadline with the same expiry whose elapsed time starts now."""
        return Deadline._at(self._clock(), self.expires_at, self._clock)

    def bounded(self, timeout: Optional[float]) -> "Deadline":
        """The sooner of this deadline and ``timeout`` seconds from now."""
        now = self._clock()
        if timeout is None:
            return Deadline._at(now, self.expires_at, self._clock)
        expires_at = now + timeout
        if self.expires_at is not None:
            expires_at = min(expires_at, self.expires_at)
        return Deadline._at(now, expires_at, self._clock)

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()!r})"


class Sleeper:
    """Performs the engine's waits; the only intentional suspension point."""

    async def sleep(
        self, seconds: float, cancel_event: Optional[asyncio.Event] = None
    ) -> bool:
        """
        Wait ``seconds`` or until ``cancel_event`` is set.

        Args:
            seconds: How long to wait. Non-positive values do not wait.
            cancel_event: Optional caller cancellation signal.

        Returns:
            True if the wait was cut short by the cancel signal.
        """
        if cancel_event is not None and cancel_event.is_set():
            return True
        if seconds <= 0:
            return False
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
