"""Bounded-duration retry loop for remote operations.

An attempt is a plain async function over an explicit context object that
returns an :class:`AttemptOutcome`.  Only rate limiting (HTTP 429) is
retryable; any other failure ends the loop after a single attempt.

The loop moves through three states::

    RUNNING --success/fatal--> DONE
    RUNNING --retryable------> RETRY_PENDING --backoff--> RUNNING
    RETRY_PENDING --budget exhausted--> DONE (RetryTimeoutError)

The final wait is shortened to end exactly at the deadline, so the budget is
used in full: one last attempt always runs when the deadline is reached.

Cancellation of the surrounding task interrupts the backoff sleep (or the
attempt in flight) and propagates ``asyncio.CancelledError`` immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from gridsync.errors import GridsyncError, RateLimitedError, RetryTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C")

DEFAULT_INITIAL_BACKOFF_SECONDS = 0.5
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_BACKOFF_SECONDS = 10.0


class AttemptStatus(StrEnum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class RetryState(StrEnum):
    RUNNING = "running"
    RETRY_PENDING = "retry_pending"
    DONE = "done"


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    """Tagged result of one attempt: success, retryable error or fatal error."""

    status: AttemptStatus
    value: T | None = None
    error: GridsyncError | None = None

    @classmethod
    def success(cls, value: T) -> AttemptOutcome[T]:
        return cls(status=AttemptStatus.SUCCESS, value=value)

    @classmethod
    def retryable(cls, error: GridsyncError) -> AttemptOutcome[T]:
        return cls(status=AttemptStatus.RETRYABLE, error=error)

    @classmethod
    def fatal(cls, error: GridsyncError) -> AttemptOutcome[T]:
        return cls(status=AttemptStatus.FATAL, error=error)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``initial * multiplier**n`` capped at ``maximum``."""

    initial_seconds: float = DEFAULT_INITIAL_BACKOFF_SECONDS
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    maximum_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS

    def delay(self, retry_number: int, *, hint: float | None = None) -> float:
        """Delay before retry *retry_number* (0-based).

        A server-provided ``Retry-After`` *hint* replaces the computed value.
        """
        if hint is not None:
            return min(hint, self.maximum_seconds)
        return min(self.initial_seconds * (self.multiplier**retry_number), self.maximum_seconds)


def classify_error(exc: GridsyncError) -> AttemptOutcome[Any]:
    if isinstance(exc, RateLimitedError):
        return AttemptOutcome.retryable(exc)
    return AttemptOutcome.fatal(exc)


async def outcome_of(operation: Awaitable[T]) -> AttemptOutcome[T]:
    """Await *operation* and fold its ``GridsyncError`` into an outcome.

    Exceptions outside the error model propagate unchanged.
    """
    try:
        value = await operation
    except GridsyncError as exc:
        return classify_error(exc)
    return AttemptOutcome.success(value)


async def run_with_retry(
    attempt: Callable[[C], Awaitable[AttemptOutcome[T]]],
    context: C,
    *,
    timeout_seconds: float,
    operation: str,
    identifier: str | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Run ``attempt(context)`` until it succeeds, fails fatally or the budget runs out.

    Raises
    ------
    GridsyncError
        The fatal error of the last attempt.
    RetryTimeoutError
        When a retryable failure arrives after ``timeout_seconds`` have elapsed.
    asyncio.CancelledError
        When the surrounding task is cancelled.
    """
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")

    policy = backoff or BackoffPolicy()
    deadline = clock() + timeout_seconds
    attempts = 0
    state = RetryState.RUNNING

    try:
        while True:
            state = RetryState.RUNNING
            attempts += 1
            outcome = await attempt(context)

            if outcome.status is AttemptStatus.SUCCESS:
                state = RetryState.DONE
                if attempts > 1:
                    logger.info(
                        "%s succeeded after %d attempt(s)", operation, attempts
                    )
                return outcome.value  # type: ignore[return-value]

            error = outcome.error
            assert error is not None
            if outcome.status is AttemptStatus.FATAL:
                state = RetryState.DONE
                raise error

            state = RetryState.RETRY_PENDING
            remaining = deadline - clock()
            if remaining <= 0:
                state = RetryState.DONE
                logger.info(
                    "%s still rate-limited after %d attempt(s); retry budget of %.1fs exhausted",
                    operation,
                    attempts,
                    timeout_seconds,
                )
                raise RetryTimeoutError(
                    operation=operation,
                    identifier=identifier,
                    attempts=attempts,
                    timeout_seconds=timeout_seconds,
                    last_error=error,
                ) from error

            hint = error.retry_after if isinstance(error, RateLimitedError) else None
            # The last wait is cut short so one final attempt lands on the deadline.
            delay = min(policy.delay(attempts - 1, hint=hint), remaining)

            logger.warning(
                "%s rate-limited (status=%d), retrying in %.1fs (attempt %d)",
                operation,
                error.status_code,
                delay,
                attempts,
            )
            await sleep(delay)
    except asyncio.CancelledError:
        logger.warning(
            "%s cancelled in state %s after %d attempt(s)", operation, state, attempts
        )
        raise
