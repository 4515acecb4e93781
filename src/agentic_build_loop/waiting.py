"""Deadline-bounded, cancellable waiting."""

import threading
import time
from typing import Callable, Optional


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float,
    stop_event: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], object]] = None,
) -> bool:
    """
    Poll *predicate* until it holds, the deadline passes, or a stop is requested.

    Args:
        predicate: Condition to wait for
        timeout: Seconds until giving up
        interval: Seconds between polls
        stop_event: If set while waiting, returns False early
        clock: Monotonic time source
        sleep: Sleep function (defaults to the stop event's wait, else time.sleep)

    Returns:
        True if the predicate held before the deadline, False otherwise.
    """
    if sleep is None:
        sleep = stop_event.wait if stop_event is not None else time.sleep

    deadline = clock() + timeout
    while True:
        if predicate():
            return True
        if stop_event is not None and stop_event.is_set():
            return False
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(interval, remaining))
