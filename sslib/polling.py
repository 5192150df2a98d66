"""
sslib.polling — Bounded poll-until-condition helper.

Every asynchronous AWS operation the toolkit waits on without a native botocore
waiter (snapshot creation, snapshot export) goes through poll_until(). The
sleep and clock functions are injectable so tests run instantly.

Zero dependency on utils.py.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from sslib.errors import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollResult(Generic[T]):
    """Outcome of a successful poll."""

    value: T
    attempts: int
    elapsed_seconds: float


def poll_until(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    description: str,
    interval: float = 30,
    max_attempts: int = 60,
    sleep: Callable[[float], Any] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    timeout: Optional[float] = None,
    sleep_first: bool = False,
    on_pending: Optional[Callable[[T, int, int], None]] = None,
) -> PollResult[T]:
    """
    Call ``fetch`` until ``is_done`` accepts its result or the bound is reached.

    ``is_done`` may raise to abort the poll immediately (e.g. on a terminal
    failure status); the exception propagates unchanged.

    Args:
        fetch: Zero-argument callable returning the observed value
        is_done: Predicate on the observed value
        description: Human-readable subject used in log lines and errors
        interval: Seconds to sleep between attempts
        max_attempts: Upper bound on calls to ``fetch`` (must be >= 1)
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
        timeout: Optional wall-clock bound in seconds, checked before each sleep
        sleep_first: Sleep once before the first attempt
        on_pending: Callback(value, attempt, max_attempts) for non-terminal observations

    Returns:
        PollResult: the accepted value, the number of attempts used, elapsed time

    Raises:
        PollTimeoutError: when max_attempts or timeout is exhausted
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = clock()
    value: Any = None

    if sleep_first:
        sleep(interval)

    for attempt in range(1, max_attempts + 1):
        value = fetch()
        if is_done(value):
            elapsed = clock() - started
            logger.debug("%s reached after %d attempt(s) in %.1fs", description, attempt, elapsed)
            return PollResult(value=value, attempts=attempt, elapsed_seconds=elapsed)

        if on_pending is not None:
            on_pending(value, attempt, max_attempts)
        else:
            logger.info("Waiting for %s: %r (attempt %d/%d)", description, value, attempt, max_attempts)

        if attempt == max_attempts:
            break
        if timeout is not None and clock() - started + interval > timeout:
            raise PollTimeoutError(description, attempt, value)
        sleep(interval)

    raise PollTimeoutError(description, max_attempts, value)
