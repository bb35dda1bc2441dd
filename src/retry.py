"""
Retrier - Classified retry loop around a single remote call.

Combines the ErrorClassifier and BackoffController: per-attempt failures are
handled here and callers only ever see a success value or one of the
surfaced errors.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from backoff import BackoffController, BackoffPolicy, RetryDecision, StopReason
from errors import (
    DeadlineExceededError,
    ErrorCategory,
    ErrorClassifier,
    OperationCancelledError,
    ReconcileError,
    error_for_category,
)
from plugins.base import CallClass
from ratelimit import ActionRateLimiter
from timing import Deadline, Sleeper

logger = logging.getLogger(__name__)

AttemptFactory = Callable[[], Awaitable[Any]]
PageFetcher = Callable[[int, int], Awaitable[Sequence[Any]]]


class Retrier:
    """
    Runs remote calls with classification, backoff and rate limiting.

    Args:
        classifier: Maps raw failures to categories.
        policies: Backoff policy per call class.
        rate_limiter: Optional per-action client-side limiter.
        sleeper: Performs the backoff waits.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        policies: Optional[Dict[CallClass, BackoffPolicy]] = None,
        rate_limiter: Optional[ActionRateLimiter] = None,
        sleeper: Optional[Sleeper] = None,
        rng: Optional[random.Random] = None,
    ):
        self.classifier = classifier or ErrorClassifier()
        self.policies = {
            CallClass.READ: BackoffPolicy.read(),
            CallClass.WRITE: BackoffPolicy.write(),
        }
        if policies:
            self.policies.update(policies)
        self.rate_limiter = rate_limiter
        self.sleeper = sleeper or Sleeper()
        self._rng = rng or random.Random()

    def policy_for(self, call_class: CallClass) -> BackoffPolicy:
        return self.policies[call_class]

    async def call(
        self,
        func: AttemptFactory,
        *,
        deadline: Deadline,
        call_class: CallClass = CallClass.READ,
        policy: Optional[BackoffPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
        action: Optional[str] = None,
    ) -> Any:
        """
        Call ``func`` until it succeeds or a terminal outcome is reached.

        Args:
            func: Zero-argument coroutine factory performing one attempt.
            deadline: Overall caller deadline.
            call_class: Selects the backoff policy when ``policy`` is not given.
            policy: Explicit backoff policy.
            cancel_event: Caller cancellation signal.
            action: Remote action name, used for rate limiting and logs.

        Returns:
            The value returned by the successful attempt.

        Raises:
            DeadlineExceededError: The caller deadline ran out.
            OperationCancelledError: ``cancel_event`` was set.
            ReconcileError: The surfaced error for the final failure category.
        """
        controller = BackoffController(policy or self.policy_for(call_class), self._rng)
        # Category budgets are measured from the first attempt of this call
        call_deadline = deadline.child()
        label = action or "remote call"
        history: List[ErrorCategory] = []
        last_error: Optional[BaseException] = None
        attempt = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(f"{label} cancelled") from last_error
            if deadline.expired():
                raise DeadlineExceededError(
                    f"Deadline exceeded before attempt {attempt + 1} of {label}"
                ) from last_error

            try:
                return await self._attempt(func, deadline, action, label, cancel_event)
            except DeadlineExceededError:
                raise
            except ReconcileError as e:
                if e.category is None:
                    raise
                exc: BaseException = e
            except Exception as e:
                exc = e

            last_error = exc
            category = self.classifier.classify(exc)
            decision = controller.next(attempt, category, call_deadline, history)

            if not decision.should_retry:
                surfaced = self._surface(label, attempt, category, decision, exc)
                if surfaced is exc:
                    raise exc
                raise surfaced from exc

            logger.warning(
                f"{label} attempt {attempt + 1} failed ({category.value}): {exc}; "
                f"retrying in {decision.wait:.2f}s "
                f"({decision.attempts_remaining} attempts left)"
            )
            if await self.sleeper.sleep(decision.wait, cancel_event):
                raise OperationCancelledError(f"{label} cancelled") from exc

            history.append(category)
            attempt += 1

    async def paginate(
        self,
        fetch_page: PageFetcher,
        *,
        deadline: Deadline,
        page_size: int = 100,
        call_class: CallClass = CallClass.READ,
        cancel_event: Optional[asyncio.Event] = None,
        action: Optional[str] = None,
    ) -> List[Any]:
        """
        Collect every item of an offset/limit listing.

        Each page is fetched through ``call`` under the shared ``deadline``,
        so a failed page is retried on its own. Paging stops at the first
        page shorter than ``page_size``.

        Args:
            fetch_page: Coroutine function taking ``(offset, limit)`` and
                returning the items of that page.
            deadline: Overall deadline for the whole listing.
            page_size: Items requested per page.
            call_class: Selects the backoff policy.
            cancel_event: Caller cancellation signal.
            action: Remote action name, used for rate limiting and logs.

        Returns:
            All items, in page order.
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        items: List[Any] = []
        offset = 0
        while True:
            page = await self.call(
                functools.partial(fetch_page, offset, page_size),
                deadline=deadline,
                call_class=call_class,
                cancel_event=cancel_event,
                action=action,
            )
            page = list(page or [])
            items.extend(page)
            if len(page) < page_size:
                logger.debug(
                    f"{action or 'listing'} returned {len(items)} item(s) in "
                    f"{offset // page_size + 1} page(s)"
                )
                return items
            offset += page_size

    async def _attempt(
        self,
        func: AttemptFactory,
        deadline: Deadline,
        action: Optional[str],
        label: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        if self.rate_limiter is not None:
            acquired = await self.rate_limiter.acquire(
                action, deadline.remaining(), cancel_event
            )
            if not acquired:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(
                        f"{label} cancelled while waiting for a rate limit slot"
                    )
                raise DeadlineExceededError(
                    f"Deadline exceeded while waiting for a rate limit slot for {label}"
                )
        return await self._bounded(func, deadline, label)

    @staticmethod
    async def _bounded(func: AttemptFactory, deadline: Deadline, label: str) -> Any:
        remaining = deadline.remaining()
        if remaining is None:
            return await func()
        try:
            return await asyncio.wait_for(func(), timeout=remaining)
        except asyncio.TimeoutError:
            if deadline.expired():
                raise DeadlineExceededError(
                    f"Deadline exceeded while waiting for {label}"
                )
            raise

    @staticmethod
    def _surface(
        label: str,
        attempt: int,
        category: ErrorCategory,
        decision: RetryDecision,
        exc: BaseException,
    ) -> BaseException:
        attempts = attempt + 1
        if decision.reason == StopReason.DEADLINE:
            logger.error(f"{label} ran out of time after {attempts} attempt(s): {exc}")
            return DeadlineExceededError(
                f"Deadline exceeded for {label} after {attempts} attempt(s); "
                f"last error ({category.value}): {exc}"
            )
        if isinstance(exc, ReconcileError):
            return exc
        if category not in (ErrorCategory.NOT_FOUND, ErrorCategory.PERMANENT_INVALID_INPUT):
            logger.error(
                f"{label} failed after {attempts} attempt(s) "
                f"({category.value}, {decision.reason.value}): {exc}"
            )
        return error_for_category(
            category, f"{label} failed after {attempts} attempt(s): {exc}", exc
        )
