"""
Retry Policy
Fixed-interval polling loops with an injectable clock
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class RetryPolicy:
    """
    Timing budget for starting and stopping services

    Attributes:
        start_timeout: Seconds to wait for a unit to become active
        active_poll_interval: Seconds between is-active checks
        port_attempts: Number of port checks before giving up
        port_interval: Seconds between port checks
        stop_grace: Seconds between a stop request and the kill sweep
        restart_pause: Seconds between stop-all and start-all
    """
    start_timeout: float = 30.0
    active_poll_interval: float = 1.0
    port_attempts: int = 10
    port_interval: float = 2.0
    stop_grace: float = 2.0
    restart_pause: float = 3.0

    def __post_init__(self):
        if self.port_attempts < 1:
            raise ValueError("port_attempts must be at least 1")
        for name in ("start_timeout", "active_poll_interval", "port_interval",
                     "stop_grace", "restart_pause"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


class Clock:
    """Time source used by polling loops"""

    def monotonic(self) -> float:
        raise NotImplementedError

    def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock backed by the time module"""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def poll_until(
    check: Callable[[], bool],
    attempts: int,
    interval: float,
    clock: Clock,
    on_retry: Optional[Callable[[int, int], None]] = None
) -> bool:
    """
    Call ``check`` up to ``attempts`` times, sleeping ``interval`` between calls

    Args:
        check: Predicate, polled until it returns True
        attempts: Maximum number of calls
        interval: Seconds to sleep between calls
        clock: Time source
        on_retry: Called with (attempt, attempts) after each failed check

    Returns:
        True if the predicate succeeded within the budget
    """
    for attempt in range(1, attempts + 1):
        if check():
            return True
        if on_retry:
            on_retry(attempt, attempts)
        if attempt < attempts:
            clock.sleep(interval)
    return False


def wait_until(
    check: Callable[[], bool],
    timeout: float,
    interval: float,
    clock: Clock
) -> bool:
    """
    Poll ``check`` until it succeeds or ``timeout`` seconds have elapsed

    The predicate is always evaluated at least once, and once more at the
    deadline.
    """
    deadline = clock.monotonic() + timeout
    while True:
        if check():
            return True
        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            return False
        clock.sleep(min(interval, remaining) if interval > 0 else remaining)
