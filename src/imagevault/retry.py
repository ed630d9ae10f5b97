"""Retry-with-backoff primitive shared by polling call sites."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff bounded by a per-wait cap and an overall deadline."""

    initial_delay: float = 0.25
    multiplier: float = 2.0
    max_delay: float = 1.5
    deadline: float = 10.0

    def delays(self):
        """Yield the successive wait durations (unbounded)."""
        delay = max(0.0, float(self.initial_delay))
        while True:
            yield min(delay, self.max_delay)
            delay = min(delay * self.multiplier, self.max_delay)


def poll_with_backoff(
    check: Callable[[], bool],
    policy: BackoffPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Call ``check`` until it returns True or the deadline elapses.

    Returns False on timeout instead of raising; exceptions from ``check``
    propagate to the caller.
    """
    started_at = clock()
    for delay in policy.delays():
        if check():
            return True
        elapsed = clock() - started_at
        remaining = policy.deadline - elapsed
        if remaining <= 0:
            return False
        sleep(min(delay, remaining))
