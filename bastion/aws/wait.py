"""Fixed-interval polling with a deadline and optional cancellation.

Used by the instance readiness checks. Polling is a plain fixed interval,
no backoff; the window is bounded by ``timeout`` seconds from the first
attempt.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from loguru import logger
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_delay,
    stop_any,
    wait_fixed,
)

from bastion.core.exceptions import CancelledError, TimeoutError

log = logger.bind(component="wait")


def poll_until[T](
    poll_fn: Callable[[], T],
    ready_check: Callable[[T], bool],
    *,
    timeout: float = 300.0,
    interval: float = 5.0,
    cancel: threading.Event | None = None,
    description: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call poll_fn until its result passes ready_check.

    Exceptions raised by poll_fn are not retried: they propagate at once.

    Args:
        poll_fn: Fetches the current state.
        ready_check: Returns True when the state is the target.
        timeout: Maximum time to wait in seconds.
        interval: Time between polls in seconds.
        cancel: Optional event checked after every attempt.
        description: Description for log and error messages.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The first result that passed ready_check.

    Raises:
        TimeoutError: If the window elapses first.
        CancelledError: If cancel is set first.
    """
    stop = stop_after_delay(timeout)
    if cancel is not None:
        stop = stop_any(stop, lambda _: cancel.is_set())

    def _before_sleep(state: RetryCallState) -> None:
        log.trace(
            "Waiting for {what}: attempt {n}, {elapsed:.1f}s elapsed",
            what=description,
            n=state.attempt_number,
            elapsed=state.seconds_since_start or 0.0,
        )

    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not ready_check(result)),
        sleep=sleep,
        before_sleep=_before_sleep,
    )

    try:
        return retrying(poll_fn)
    except RetryError as e:
        if cancel is not None and cancel.is_set():
            raise CancelledError(f"Cancelled while waiting for {description}") from e
        raise TimeoutError(f"Timeout waiting for {description} after {timeout:.1f}s") from e
