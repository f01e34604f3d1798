"""Deadline-bounded retry polling.

``RetryPoller.run`` calls an action until it reports ``Done``, a fatal error
is raised, or the profile's deadline passes. Between attempts it sleeps a
fixed interval. Every raised error is classified exactly once, either by the
``ConvergeError`` it already is or by the caller's classifier.

Two deadline profiles cover every call site:

- ``SHORT_READ``: transient network/API errors on simple calls
- ``LONG_CONVERGE``: asynchronous task convergence, several multiples longer

Example:
    >>> from converge.execution.retry import RetryPoller, Done, Pending, SHORT_READ
    >>>
    >>> def instance_ready():
    ...     status = describe_instance()
    ...     return Done(status) if status == RUNNING else Pending(f"status {status}")
    >>>
    >>> RetryPoller().run(instance_ready, SHORT_READ)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from converge.core.errors import (
    ContractViolationError,
    ConvergeError,
    DeadlineExceededError,
    ErrorClass,
    ErrorContext,
    classify_error,
    wrap_error,
)
from converge.core.logging import get_logger
from converge.execution.timeout import Deadline

if TYPE_CHECKING:
    from converge.core.settings import ConvergeSettings

T = TypeVar("T")

Classifier = Callable[[BaseException], ErrorClass]

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryProfile:
    """Fixed-interval retry window.

    Attributes:
        name: Profile name for logging
        interval: Seconds to sleep between attempts
        deadline: Total seconds before giving up
    """

    name: str
    interval: float
    deadline: float

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.deadline <= 0:
            raise ValueError(f"deadline must be positive, got {self.deadline}")

    def scaled(self, factor: float) -> RetryProfile:
        """Same interval, deadline multiplied by ``factor``."""
        return replace(self, deadline=self.deadline * factor)


SHORT_READ = RetryProfile("short_read", interval=5.0, deadline=180.0)
LONG_CONVERGE = RetryProfile("long_converge", interval=10.0, deadline=1200.0)


def profiles_from_settings(settings: ConvergeSettings) -> dict[str, RetryProfile]:
    """Build both named profiles from settings."""
    return {
        "short_read": RetryProfile(
            "short_read",
            interval=settings.short_read_interval,
            deadline=settings.short_read_deadline,
        ),
        "long_converge": RetryProfile(
            "long_converge",
            interval=settings.long_converge_interval,
            deadline=settings.long_converge_deadline,
        ),
    }


def profile_for(name: str, settings: ConvergeSettings | None = None) -> RetryProfile:
    """Look up a named profile, from settings when given."""
    if settings is not None:
        profiles = profiles_from_settings(settings)
    else:
        profiles = {SHORT_READ.name: SHORT_READ, LONG_CONVERGE.name: LONG_CONVERGE}
    try:
        return profiles[name]
    except KeyError:
        raise ValueError(f"unknown retry profile {name!r}; expected one of {sorted(profiles)}") from None


@dataclass(frozen=True)
class Done(Generic[T]):
    """The polled action finished with ``value``."""

    value: T = None


@dataclass(frozen=True)
class Pending:
    """The polled action has not finished yet."""

    reason: str = "pending"


class NotFoundPolicy(str, Enum):
    """What a ``NOT_FOUND`` classification means at one call site.

    - ``FATAL``: absence aborts the loop; the not-found error propagates
    - ``ABSENT``: absence is a valid terminal outcome; ``run`` returns None
    - ``RETRY``: absence is transient (eventually consistent reads)
    """

    FATAL = "fatal"
    ABSENT = "absent"
    RETRY = "retry"


def fatal_classifier(error: BaseException) -> ErrorClass:
    """Default classifier: every unclassified error is fatal."""
    return ErrorClass.FATAL


def transient_classifier(error: BaseException) -> ErrorClass:
    """Treat every unclassified error as transient."""
    return ErrorClass.TRANSIENT


@dataclass
class RetryPoller:
    """Runs an action until done, fatal, or out of time.

    Attributes:
        classifier: Default classifier for errors that carry no class
        clock: Monotonic clock
        sleep: Sleep function (local to the calling thread)
        on_retry: Callback before each sleep (attempt, condition, delay)
    """

    classifier: Classifier = fatal_classifier
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    on_retry: Callable[[int, Any, float], None] | None = None

    def _classify(self, error: Exception, classifier: Classifier) -> ErrorClass | None:
        if isinstance(error, ConvergeError):
            return classify_error(error)
        return classifier(error)

    def run(
        self,
        action: Callable[[], Done[T] | Pending],
        profile: RetryProfile,
        *,
        classifier: Classifier | None = None,
        not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
        operation: str | None = None,
    ) -> T | None:
        """Poll ``action`` within ``profile``.

        Returns:
            The ``Done`` value, or None when absence is accepted
            (``NotFoundPolicy.ABSENT``)

        Raises:
            FatalError: An error classified fatal (cause wrapped)
            NotFoundError: Absence under ``NotFoundPolicy.FATAL``
            DeadlineExceededError: Deadline reached on transient conditions
        """
        classify = classifier or self.classifier
        operation = operation or getattr(action, "__name__", "operation")
        deadline = Deadline.start(profile.deadline, operation, clock=self.clock)
        attempts = 0
        last_condition: Any = None

        while True:
            attempts += 1
            try:
                outcome = action()
            except Exception as e:
                error_class = self._classify(e, classify)
                if error_class is None:
                    # Already a timeout from a nested loop.
                    raise
                if error_class == ErrorClass.NOT_FOUND:
                    if not_found == NotFoundPolicy.ABSENT:
                        logger.debug("retry.absent", operation=operation, attempts=attempts)
                        return None
                    if not_found == NotFoundPolicy.RETRY:
                        error_class = ErrorClass.TRANSIENT
                if error_class != ErrorClass.TRANSIENT:
                    logger.error(
                        "retry.fatal",
                        operation=operation,
                        attempts=attempts,
                        error_class=error_class.value,
                        reason=str(e),
                    )
                    if isinstance(e, ConvergeError):
                        raise e.with_context(action=operation)
                    raise wrap_error(e, error_class, action=operation) from e
                last_condition = e
            else:
                if isinstance(outcome, Done):
                    if attempts > 1:
                        logger.info("retry.converged", operation=operation, attempts=attempts)
                    return outcome.value
                if not isinstance(outcome, Pending):
                    raise ContractViolationError(
                        f"poll action returned {type(outcome).__name__}, expected Done or Pending",
                        context=ErrorContext(action=operation),
                    )
                last_condition = outcome.reason

            remaining = deadline.remaining()
            if remaining > 0:
                delay = min(profile.interval, remaining)
                logger.debug(
                    "retry.pending",
                    operation=operation,
                    attempt=attempts,
                    condition=str(last_condition),
                    delay=delay,
                )
                if self.on_retry:
                    self.on_retry(attempts, last_condition, delay)
                self.sleep(delay)

            if deadline.is_expired():
                logger.warning(
                    "retry.deadline_exceeded",
                    operation=operation,
                    profile=profile.name,
                    attempts=attempts,
                    condition=str(last_condition),
                )
                context = None
                if isinstance(last_condition, ConvergeError):
                    context = ErrorContext(
                        action=last_condition.context.action or operation,
                        request_id=last_condition.context.request_id,
                    )
                raise DeadlineExceededError(
                    operation,
                    profile.deadline,
                    elapsed=deadline.elapsed,
                    attempts=attempts,
                    last_error=last_condition,
                    context=context or ErrorContext(action=operation),
                )

    def call(
        self,
        func: Callable[[], T],
        profile: RetryProfile,
        *,
        classifier: Classifier | None = None,
        not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
        operation: str | None = None,
    ) -> T | None:
        """Retry a plain call that returns a value or raises."""

        def attempt() -> Done[T]:
            return Done(func())

        return self.run(
            attempt,
            profile,
            classifier=classifier,
            not_found=not_found,
            operation=operation or getattr(func, "__name__", "call"),
        )


def retry_call(
    func: Callable[[], T],
    profile: RetryProfile = SHORT_READ,
    *,
    poller: RetryPoller | None = None,
    classifier: Classifier | None = None,
    not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
    operation: str | None = None,
) -> T | None:
    """Module-level shortcut for ``RetryPoller.call``."""
    poller = poller or RetryPoller()
    return poller.call(
        func,
        profile,
        classifier=classifier,
        not_found=not_found,
        operation=operation,
    )


__all__ = [
    "Classifier",
    "Done",
    "LONG_CONVERGE",
    "NotFoundPolicy",
    "Pending",
    "RetryPoller",
    "RetryProfile",
    "SHORT_READ",
    "fatal_classifier",
    "profile_for",
    "profiles_from_settings",
    "retry_call",
    "transient_classifier",
]
