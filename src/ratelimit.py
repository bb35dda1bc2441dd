"""
Client-side rate limiting per remote action.

Each action name gets its own leaky-bucket limiter so a burst of calls to one
endpoint cannot trip the provider's throttling for the whole account.
"""

import asyncio
import logging
from typing import Dict, Optional

from aiolimiter import AsyncLimiter

logger = logging.getLogger(__name__)


class ActionRateLimiter:
    """
    Registry of per-action AsyncLimiters, created lazily.

    Args:
        default_rate: Calls allowed per ``period`` for actions without an
            override. Zero or a negative value disables limiting.
        period: Length of the rate window in seconds.
        overrides: Per-action rates replacing ``default_rate``.
    """

    def __init__(
        self,
        default_rate: float = 20,
        period: float = 1.0,
        overrides: Optional[Dict[str, float]] = None,
    ):
        self.default_rate = default_rate
        self.period = period
        self._overrides = dict(overrides or {})
        self._limiters: Dict[str, AsyncLimiter] = {}

    def rate_for(self, action: str) -> float:
        return self._overrides.get(action, self.default_rate)

    def get_limiter(self, action: str) -> Optional[AsyncLimiter]:
        """Return the limiter for ``action``, or None when it is unlimited."""
        rate = self.rate_for(action)
        if rate <= 0:
            return None
        limiter = self._limiters.get(action)
        if limiter is None:
            limiter = AsyncLimiter(rate, self.period)
            self._limiters[action] = limiter
            logger.debug(f"Created rate limiter for {action}: {rate}/{self.period}s")
        return limiter

    async def acquire(
        self,
        action: Optional[str],
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bool:
        """
        Take one slot of ``action``'s limiter.

        Args:
            action: Remote action name; None or an unlimited action never waits.
            timeout: Longest time to wait for a slot.
            cancel_event: Optional caller cancellation signal.

        Returns:
            True once a slot is held, False if ``timeout`` ran out or
            ``cancel_event`` was set first.
        """
        if cancel_event is not None and cancel_event.is_set():
            return False
        limiter = self.get_limiter(action) if action else None
        if limiter is None:
            return True
        if limiter.has_capacity():
            await limiter.acquire()
            return True
        if timeout is not None and timeout <= 0:
            return False

        acquiring = asyncio.ensure_future(limiter.acquire())
        waiters = {acquiring}
        cancelled = None
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)
        try:
            await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if acquiring.done() and not acquiring.cancelled():
            acquiring.result()
            return True
        logger.debug(f"Gave up waiting for a {action} rate limit slot")
        return False
