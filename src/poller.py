"""
Operation Poller - Drives an asynchronous remote operation to a terminal state.

State machine:

    SUBMITTED -> RUNNING -> SUCCEEDED | FAILED | TIMED_OUT | CANCELLED

Status checks are themselves remote calls and go through the Retrier, so a
transient failure of the *check* is retried independently of the
operation's own outcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, Optional

from errors import (
    DeadlineExceededError,
    OperationCancelledError,
    OperationFailedError,
    OperationTimedOutError,
)
from plugins.base import (
    CallClass,
    OperationHandle,
    OperationStatus,
    OperationStatusState,
)
from plugins.clients.base import RemoteClient
from retry import Retrier
from timing import Deadline, Sleeper

logger = logging.getLogger(__name__)


class OperationState(Enum):
    """States of the polling state machine."""

    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (OperationState.SUBMITTED, OperationState.RUNNING)


@dataclass
class PollResult:
    """Outcome of a successful wait."""

    handle: OperationHandle
    state: OperationState
    result: Dict[str, Any] = field(default_factory=dict)
    polls: int = 0
    waited: float = 0.0


def interpret_status(
    value: Any,
    success_states: Collection[Any],
    failure_states: Collection[Any] = (),
) -> OperationStatusState:
    """
    Map a provider status value to an OperationStatusState.

    Values in neither collection are treated as still running.
    """
    if value in success_states:
        return OperationStatusState.SUCCEEDED
    if value in failure_states:
        return OperationStatusState.FAILED
    return OperationStatusState.RUNNING


class OperationPoller:
    """
    Waits for OperationHandles to finish.

    Args:
        retrier: Runs the status-check calls.
        interval: Seconds between status checks.
        max_interval: Upper bound for the interval when it grows.
        backoff_factor: Interval multiplier per poll; 1.0 keeps it fixed.
        timeout: Default overall wait budget per operation.
        sleeper: Performs the waits (defaults to the retrier's).
    """

    def __init__(
        self,
        retrier: Retrier,
        interval: float = 3.0,
        max_interval: float = 30.0,
        backoff_factor: float = 1.0,
        timeout: Optional[float] = 1800.0,
        sleeper: Optional[Sleeper] = None,
    ):
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        if backoff_factor < 1.0:
            raise ValueError(f"Poll backoff_factor must be >= 1.0, got {backoff_factor}")
        self.retrier = retrier
        self.interval = interval
        self.max_interval = max(max_interval, interval)
        self.backoff_factor = backoff_factor
        self.timeout = timeout
        self.sleeper = sleeper or retrier.sleeper

    async def wait(
        self,
        handle: OperationHandle,
        client: RemoteClient,
        deadline: Deadline,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> PollResult:
        """
        Poll ``handle`` until it reaches a terminal state.

        Args:
            handle: The operation to wait for.
            client: Client bound to the handle's scope.
            deadline: Caller's overall deadline.
            cancel_event: Stops the wait (not the remote operation) when set.
            timeout: Wait budget for this operation; defaults to the poller's.

        Returns:
            PollResult in state SUCCEEDED with the operation's final result.

        Raises:
            OperationFailedError: The operation reported terminal failure.
            OperationTimedOutError: The wait budget or deadline ran out.
            OperationCancelledError: ``cancel_event`` was set.
        """
        poll_deadline = deadline.bounded(timeout if timeout is not None else self.timeout)
        state = OperationState.SUBMITTED
        interval = self.interval
        polls = 0
        waited = 0.0
        label = f"operation {handle.token}" + (f" ({handle.kind})" if handle.kind else "")

        logger.info(f"Waiting for {label} in scope {handle.scope}")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                await self._cancel(handle, client, label, state, waited)
            if poll_deadline.expired():
                self._time_out(handle, label, state, polls, poll_deadline)

            try:
                status: OperationStatus = await self.retrier.call(
                    lambda: client.get_operation_status(handle),
                    deadline=poll_deadline,
                    call_class=CallClass.READ,
                    cancel_event=cancel_event,
                    action=f"DescribeOperation:{handle.kind}" if handle.kind else None,
                )
            except OperationCancelledError:
                await self._cancel(handle, client, label, state, waited)
            except DeadlineExceededError as e:
                self._time_out(handle, label, state, polls, poll_deadline, e)
            polls += 1

            if status.state == OperationStatusState.SUCCEEDED:
                logger.info(
                    f"{label}: {state.value} -> {OperationState.SUCCEEDED.value} "
                    f"after {polls} poll(s), {waited:.1f}s waited"
                )
                return PollResult(
                    handle=handle,
                    state=OperationState.SUCCEEDED,
                    result=dict(status.result or {}),
                    polls=polls,
                    waited=waited,
                )

            if status.state == OperationStatusState.FAILED:
                reason = status.reason or "no reason reported"
                logger.error(
                    f"{label}: {state.value} -> {OperationState.FAILED.value}: {reason}"
                )
                raise OperationFailedError(f"{label} failed: {reason}", handle, reason)

            if state != OperationState.RUNNING:
                logger.debug(f"{label}: {state.value} -> {OperationState.RUNNING.value}")
                state = OperationState.RUNNING

            remaining = poll_deadline.remaining()
            sleep_for = interval if remaining is None else min(interval, remaining)
            logger.debug(f"{label} still running, next check in {sleep_for:.1f}s")
            started = poll_deadline.elapsed()
            cancelled = await self.sleeper.sleep(sleep_for, cancel_event)
            # A cancelled sleep ends early
            waited += poll_deadline.elapsed() - started
            if cancelled:
                await self._cancel(handle, client, label, state, waited)
            interval = min(self.max_interval, interval * self.backoff_factor)

    def _time_out(
        self,
        handle: OperationHandle,
        label: str,
        state: OperationState,
        polls: int,
        deadline: Deadline,
        cause: Optional[BaseException] = None,
    ) -> None:
        logger.error(
            f"{label}: {state.value} -> {OperationState.TIMED_OUT.value} "
            f"after {polls} poll(s), {deadline.elapsed():.1f}s"
        )
        raise OperationTimedOutError(
            f"Timed out waiting for {label}; it may still complete", handle
        ) from cause

    async def _cancel(
        self,
        handle: OperationHandle,
        client: RemoteClient,
        label: str,
        state: OperationState,
        waited: float,
    ) -> None:
        logger.info(
            f"{label}: {state.value} -> {OperationState.CANCELLED.value} "
            f"after {waited:.1f}s waited"
        )
        if handle.cancellable:
            try:
                await client.cancel_operation(handle)
                logger.info(f"Requested remote cancellation of {label}")
            except Exception as e:
                logger.error(f"Failed to cancel {label} remotely: {e}")
        raise OperationCancelledError(f"Stopped waiting for {label}", handle)
