"""
Backoff Controller - Decides whether and when to retry a failed remote call.

Exponential backoff with jitter, parameterized per call class. Read calls
use a short base and cap, mutating calls a longer one.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from errors import ErrorCategory
from timing import Deadline

logger = logging.getLogger(__name__)


class RetryOutcome(Enum):
    """What the caller should do after an attempt."""

    RETRY = "retry"
    FAIL = "fail"
    SUCCEED = "succeed"


class StopReason(Enum):
    """Why a RetryDecision is FAIL."""

    FATAL = "fatal"  # category is never retried
    UNKNOWN_RECURRED = "unknown_recurred"
    ATTEMPTS = "attempts"  # hard ceiling reached
    BUDGET = "budget"  # per-category retry budget spent
    DEADLINE = "deadline"  # caller deadline cannot fit another wait


@dataclass(frozen=True)
class BackoffPolicy:
    """Backoff parameters for one call class."""

    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter_factor: float = 0.5  # wait * (1 ± jitter_factor)
    max_attempts: int = 20
    retry_timeout: Optional[float] = 180.0
    conflict_timeout: Optional[float] = 600.0
    rate_limited_min_delay: float = 5.0

    def __post_init__(self):
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must not be negative")
        if not 0 <= self.jitter_factor <= 0.5:
            raise ValueError(
                f"jitter_factor must be within [0, 0.5], got {self.jitter_factor}"
            )
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def read(cls, **overrides) -> "BackoffPolicy":
        """Defaults for read calls."""
        params = dict(
            base_delay=1.0,
            max_delay=10.0,
            retry_timeout=180.0,
            conflict_timeout=600.0,
            rate_limited_min_delay=5.0,
        )
        params.update(overrides)
        return cls(**params)

    @classmethod
    def write(cls, **overrides) -> "BackoffPolicy":
        """Defaults for mutating and creation calls."""
        params = dict(
            base_delay=5.0,
            max_delay=60.0,
            retry_timeout=300.0,
            conflict_timeout=1800.0,
            rate_limited_min_delay=15.0,
        )
        params.update(overrides)
        return cls(**params)

    def budget_for(self, category: ErrorCategory) -> Optional[float]:
        if category == ErrorCategory.CONFLICT:
            return self.conflict_timeout
        return self.retry_timeout


@dataclass(frozen=True)
class RetryDecision:
    """Per-attempt decision; recomputed on every call, never persisted."""

    outcome: RetryOutcome
    wait: float = 0.0
    attempts_remaining: int = 0
    reason: Optional[StopReason] = None

    @property
    def should_retry(self) -> bool:
        return self.outcome == RetryOutcome.RETRY


_NEVER_RETRIED = (ErrorCategory.PERMANENT_INVALID_INPUT, ErrorCategory.NOT_FOUND)


class BackoffController:
    """
    Computes RetryDecisions for a single BackoffPolicy.

    Args:
        policy: The backoff parameters for this call class.
        rng: Random source for jitter (injectable for tests).
    """

    def __init__(self, policy: BackoffPolicy, rng: Optional[random.Random] = None):
        self.policy = policy
        self._rng = rng or random.Random()

    def base_wait(self, attempt: int) -> float:
        """Jitter-free wait after the given 0-based failed attempt."""
        if attempt < 0:
            return 0.0
        # Avoid float overflow for large attempt numbers
        exponent = min(attempt, 62)
        return min(self.policy.max_delay, self.policy.base_delay * (2**exponent))

    def wait_for(self, attempt: int, classification: ErrorCategory) -> float:
        """Jittered wait after ``attempt`` failed with ``classification``."""
        wait = self.base_wait(attempt)
        jitter = self.policy.jitter_factor
        if jitter:
            wait = wait * (1 + self._rng.uniform(-jitter, jitter))
        wait = min(max(wait, 0.0), self.policy.max_delay)
        if classification == ErrorCategory.RATE_LIMITED:
            wait = max(wait, self.policy.rate_limited_min_delay)
        return wait

    def next(
        self,
        attempt: int,
        classification: Optional[ErrorCategory],
        deadline: Deadline,
        previous: Sequence[ErrorCategory] = (),
    ) -> RetryDecision:
        """
        Decide what to do after ``attempt`` (0-based) finished.

        Args:
            attempt: Index of the attempt that just finished.
            classification: Category of its failure, or None if it succeeded.
            deadline: Caller deadline; its elapsed time is the category budget
                clock.
            previous: Categories of earlier failed attempts of this call.

        Returns:
            A RetryDecision.
        """
        remaining_attempts = max(0, self.policy.max_attempts - attempt - 1)

        if classification is None:
            return RetryDecision(RetryOutcome.SUCCEED, 0.0, remaining_attempts)

        if classification in _NEVER_RETRIED:
            return self._fail(StopReason.FATAL)

        if classification == ErrorCategory.UNKNOWN:
            if ErrorCategory.UNKNOWN in previous:
                return self._fail(StopReason.UNKNOWN_RECURRED)
            remaining_attempts = min(remaining_attempts, 1)

        if remaining_attempts <= 0:
            return self._fail(StopReason.ATTEMPTS)

        budget = self.policy.budget_for(classification)
        if budget is not None and deadline.elapsed() >= budget:
            return self._fail(StopReason.BUDGET)

        wait = self.wait_for(attempt, classification)
        remaining = deadline.remaining()
        if remaining is not None and wait >= remaining:
            return self._fail(StopReason.DEADLINE)

        return RetryDecision(RetryOutcome.RETRY, wait, remaining_attempts)

    @staticmethod
    def _fail(reason: StopReason) -> RetryDecision:
        return RetryDecision(RetryOutcome.FAIL, 0.0, 0, reason)
