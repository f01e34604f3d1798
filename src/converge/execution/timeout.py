"""Deadline bookkeeping for polling loops.

A ``Deadline`` is started once per poll loop and answers two questions:
how much time is left, and has it run out. The clock is injectable so
tests can drive a loop through twenty simulated minutes instantly.

Example:
    >>> deadline = Deadline.start(180.0, operation="DescribeDBInstances")
    >>> deadline.remaining() > 0
    True
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class Deadline:
    """Tracks an absolute deadline on a monotonic clock.

    Attributes:
        expires_at: Absolute deadline on ``clock``
        timeout_seconds: Original timeout value in seconds
        operation: Name/description of the operation
        start_time: When the deadline started
        clock: Monotonic clock used for all readings
    """

    expires_at: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = 0.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def start(
        cls,
        seconds: float,
        operation: str = "operation",
        clock: Callable[[], float] = time.monotonic,
    ) -> Deadline:
        """Start a deadline ``seconds`` from now.

        Raises:
            ValueError: If seconds is negative
        """
        if seconds < 0:
            raise ValueError(f"Timeout must be non-negative, got {seconds}")
        now = clock()
        return cls(
            expires_at=now + seconds,
            timeout_seconds=seconds,
            operation=operation,
            start_time=now,
            clock=clock,
        )

    def remaining(self) -> float:
        """Remaining time until deadline in seconds (negative once expired)."""
        return self.expires_at - self.clock()

    @property
    def elapsed(self) -> float:
        """Elapsed time since start in seconds."""
        return self.clock() - self.start_time

    def is_expired(self) -> bool:
        """True if deadline has passed."""
        return self.clock() >= self.expires_at


__all__ = ["Deadline"]
