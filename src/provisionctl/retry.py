"""
Bounded retry with exponential backoff.

Used for network sensitive steps inside adapters (package cache updates,
reachability polling). Phase-level retry is always operator triggered; this
module never retries a whole transition.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from provisionctl.contracts.timeouts import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
)
from provisionctl.errors import (
    DeadlineExceeded,
    OperationCancelled,
    ProcessError,
    ReadinessTimeout,
)

logger = logging.getLogger(__name__)

__all__ = ["retry_with_backoff"]

T = TypeVar("T")


def retry_with_backoff(
    operation: Callable[[], T],
    description: str,
    max_attempts: Optional[int] = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_RETRY_DELAY_S,
    max_delay: Optional[float] = None,
    backoff: float = DEFAULT_RETRY_BACKOFF,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (ProcessError,),
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call `operation` until it succeeds, backing off between attempts.

    Args:
        operation: Zero-argument callable
        description: Human readable name used in logs and errors
        max_attempts: Attempt limit (None for unlimited, bounded by timeout)
        initial_delay: Delay after the first failure
        max_delay: Upper bound for the delay
        backoff: Delay multiplier per attempt
        timeout: Overall deadline in seconds
        retry_on: Exception types that trigger another attempt
        cancel: Event that stops retrying when set
        clock: Monotonic clock, replaceable in tests

    Returns:
        The operation's result

    Raises:
        The last error once max_attempts is exhausted
        ReadinessTimeout: If the deadline passes first
        OperationCancelled: If `cancel` is set
        DeadlineExceeded: Raised by `operation` itself, never retried
    """
    if max_attempts is None and timeout is None:
        raise ValueError("retry_with_backoff needs max_attempts or timeout")

    started = clock()
    deadline = started + timeout if timeout is not None else None
    delay = initial_delay
    attempt = 0

    while True:
        attempt += 1
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{description} was cancelled")
        try:
            return operation()
        except retry_on as e:
            if isinstance(e, (OperationCancelled, DeadlineExceeded)):
                raise
            if max_attempts is not None and attempt >= max_attempts:
                logger.warning(f"{description} failed after {attempt} attempts: {e}")
                raise

            now = clock()
            if deadline is not None and now + delay > deadline:
                raise ReadinessTimeout(
                    f"{description} did not succeed within {timeout:.0f}s "
                    f"({attempt} attempts): {e}",
                    attempts=attempt,
                ) from e

            logger.info(
                f"{description} failed (attempt {attempt}), retrying in {delay:.1f}s: {e}"
            )
            if cancel is not None:
                if cancel.wait(delay):
                    raise OperationCancelled(f"{description} was cancelled") from e
            else:
                time.sleep(delay)

            delay *= backoff
            if max_delay is not None:
                delay = min(delay, max_delay)
