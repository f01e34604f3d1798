"""Rate Limiting — per-action token buckets for outbound remote calls.

Manifesto:
The remote control plane enforces a call budget per API action. Exceeding it
turns every call into a ``RequestLimitExceeded`` error. Throttling locally,
*before* the call is issued, keeps the budget without burning retries.

ARCHITECTURE
────────────
::

    TokenBucketLimiter         ─ steady rate + burst capacity, non-blocking

    ActionRateLimiter          ─ one TokenBucketLimiter per action name,
                                 blocking acquire with a fail-open watchdog

    All limiters are thread-safe (internal Lock); sleeping always happens
    outside the lock.

Example::

    limiter = ActionRateLimiter(default_rate=20, action_rates={"DescribeFlowStatus": 5})
    limiter.acquire("DescribeFlowStatus")   # blocks until a token is free
    client.invoke("DescribeFlowStatus", request)

Tags:
    converge-core, execution, rate-limit, throttle, token-bucket
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from converge.core.logging import get_logger

if TYPE_CHECKING:
    from converge.core.settings import ConvergeSettings

logger = get_logger(__name__)


@dataclass
class TokenBucketLimiter:
    """Token bucket rate limiter.

    Tokens are added at a fixed rate up to capacity.
    Allows bursts up to capacity, then limits to rate. A non-positive rate
    never refills: once the bucket is drained, ``try_acquire`` reports an
    infinite wait.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens (burst size)
    """

    rate: float  # tokens per second
    capacity: float  # max tokens

    _tokens: float = field(default=0.0, init=False)
    _last_update: float = field(default_factory=time.monotonic, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self):
        """Initialize with full bucket."""
        self._tokens = self.capacity

    def _refill(self) -> None:
        """Add tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self._last_update
        if self.rate > 0:
            self._tokens = min(self.capacity, self._tokens + (elapsed * self.rate))
        self._last_update = now

    def _wait_time_locked(self, tokens: int) -> float:
        if self._tokens >= tokens:
            return 0.0
        if self.rate <= 0:
            return math.inf
        return (tokens - self._tokens) / self.rate

    def try_acquire(self, tokens: int = 1) -> float:
        """Take tokens if available; otherwise return the wait needed.

        Returns:
            0.0 when the tokens were taken, else seconds until they could be
        """
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return 0.0
            return self._wait_time_locked(tokens)


@dataclass
class ActionRateLimiter:
    """Per-action rate limiter shared by every call site of one process.

    Each action name gets its own bucket, so one action exhausting its budget
    never delays callers of another. ``acquire`` blocks, but never longer
    than ``max_wait``: when the watchdog fires the call is admitted anyway
    (fail open) and a warning is logged.

    Attributes:
        default_rate: Calls per second for actions without an override
        default_burst: Bucket capacity for actions without an override
        action_rates: Per-action calls-per-second overrides
        max_wait: Watchdog bound for a single acquire, in seconds
    """

    default_rate: float = 20.0
    default_burst: float = 20.0
    action_rates: dict[str, float] = field(default_factory=dict)
    max_wait: float = 10.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    _buckets: dict[str, TokenBucketLimiter] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @classmethod
    def from_settings(cls, settings: ConvergeSettings) -> ActionRateLimiter:
        return cls(
            default_rate=settings.default_rate,
            default_burst=settings.default_burst,
            action_rates=dict(settings.action_limits),
            max_wait=settings.rate_limit_max_wait,
        )

    def _bucket(self, action: str) -> TokenBucketLimiter:
        """Get or create the bucket for ``action``."""
        with self._lock:
            bucket = self._buckets.get(action)
            if bucket is None:
                if action in self.action_rates:
                    rate = self.action_rates[action]
                    capacity = max(rate, 1.0)
                else:
                    rate = self.default_rate
                    capacity = max(self.default_burst, 1.0)
                bucket = TokenBucketLimiter(rate=rate, capacity=capacity)
                self._buckets[action] = bucket
            return bucket

    def acquire(self, action: str) -> None:
        """Block until a call to ``action`` may be issued."""
        bucket = self._bucket(action)
        waited = 0.0
        while True:
            wait_time = bucket.try_acquire()
            if wait_time == 0.0:
                if waited > 0:
                    logger.debug("rate_limit.admitted", action=action, waited=round(waited, 3))
                return
            remaining = self.max_wait - waited
            if remaining <= 0:
                logger.warning(
                    "rate_limit.watchdog_fail_open",
                    action=action,
                    waited=round(waited, 3),
                    max_wait=self.max_wait,
                )
                return
            delay = min(wait_time, remaining)
            self.sleep(delay)
            waited += delay

    def get(self, action: str) -> TokenBucketLimiter | None:
        """Get the bucket for ``action`` if one was created."""
        with self._lock:
            return self._buckets.get(action)

    def actions(self) -> list[str]:
        """Action names seen so far."""
        with self._lock:
            return sorted(self._buckets)

    def reset(self) -> None:
        """Forget every bucket."""
        with self._lock:
            self._buckets.clear()


__all__ = [
    "ActionRateLimiter",
    "TokenBucketLimiter",
]
