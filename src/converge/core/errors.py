"""
Structured error types for the convergence engine.

Every failure the engine surfaces is a ``ConvergeError`` that knows its
classification (transient, not-found, fatal), the remote action it came
from, and the request trace id the remote service attached to it.

Manifesto:
    - **Classify once:** The lowest layer that can see the concrete error
      decides its ``ErrorClass``; every layer above forwards it unchanged.
    - **Timeouts are not fatal:** ``DeadlineExceededError`` is its own branch
      so callers can decide whether to extend and retry a whole workflow.
    - **Contract violations are loud:** An empty response, a missing deal or
      a malformed identifier is a programmer/integration error and is never
      retried.
    - **Keep the cause:** Wrapped exceptions travel as ``cause``.

Architecture:
    ::

        ConvergeError (error_class, context, cause)
        ├── TransientError              TRANSIENT
        ├── NotFoundError               NOT_FOUND
        ├── FatalError                  FATAL
        │   ├── ContractViolationError
        │   │   ├── EmptyResponseError
        │   │   └── CardinalityError
        │   ├── MalformedIdentifierError
        │   └── TaskFailedError
        └── DeadlineExceededError       (deadline, no class)

Examples:
    >>> err = TransientError("flow still running").with_context(action="DescribeFlowStatus")
    >>> err.error_class
    <ErrorClass.TRANSIENT: 'TRANSIENT'>
    >>> err.context.action
    'DescribeFlowStatus'

Tags:
    error-handling, classification, retry-logic, converge-core
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorClass(str, Enum):
    """Closed classification of remote failures.

    The classification governs retry behaviour:

    - ``TRANSIENT``: retry within the current deadline
    - ``NOT_FOUND``: absence; the caller's ``NotFoundPolicy`` decides
    - ``FATAL``: abort immediately, never retry
    """

    TRANSIENT = "TRANSIENT"
    NOT_FOUND = "NOT_FOUND"
    FATAL = "FATAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields relevant to a failure are set; ``to_dict()`` drops the
    rest so log lines stay short.

    Attributes:
        action: Remote action name (also the rate-limit key)
        request_id: Trace id returned by the remote service
        resource_id: Resource the operation targeted
        handle: Asynchronous handle (flow/deal id) being polled
        status_code: Last remote status code observed
        metadata: Additional key-value pairs
    """

    action: str | None = None
    request_id: str | None = None
    resource_id: str | None = None
    handle: Any = None
    status_code: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["action", "request_id", "resource_id", "handle", "status_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConvergeError(Exception):
    """
    Base exception for every error the engine raises.

    Subclasses set ``default_class``; ``DeadlineExceededError`` leaves it
    unset because a timeout is not a classification of a remote error.

    Args:
        message: Human-readable description
        context: Optional ``ErrorContext``
        cause: Underlying exception, kept for root cause analysis
    """

    default_class: ErrorClass | None = None

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_class(self) -> ErrorClass | None:
        return self.default_class

    @property
    def retryable(self) -> bool:
        return self.error_class == ErrorClass.TRANSIENT

    def with_context(self, **kwargs: Any) -> ConvergeError:
        """Set context fields in place and return self for chaining.

        Fields already set are kept, so the lowest layer wins.
        """
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self.context, key) and key != "metadata":
                if getattr(self.context, key) is None:
                    setattr(self.context, key, value)
            else:
                self.context.metadata.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_class": self.error_class.value if self.error_class else None,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __str__(self) -> str:
        parts = [self.message]
        if self.context.action:
            parts.append(f"action={self.context.action}")
        if self.context.request_id:
            parts.append(f"request_id={self.context.request_id}")
        if len(parts) == 1:
            return self.message
        return f"{parts[0]} [{', '.join(parts[1:])}]"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class TransientError(ConvergeError):
    """A condition expected to clear on its own (throttling, task running)."""

    default_class = ErrorClass.TRANSIENT


class NotFoundError(ConvergeError):
    """The remote resource does not exist (or no longer exists)."""

    default_class = ErrorClass.NOT_FOUND


class FatalError(ConvergeError):
    """Unrecoverable failure; surfaced to the caller, never retried."""

    default_class = ErrorClass.FATAL


class ContractViolationError(FatalError):
    """The remote adapter broke its contract."""


class EmptyResponseError(ContractViolationError):
    """A call reported success but returned no payload."""

    def __init__(self, action: str, message: str | None = None):
        super().__init__(
            message or f"remote service returned an empty response for {action}",
            context=ErrorContext(action=action),
        )


class CardinalityError(ContractViolationError):
    """Zero or multiple results where exactly one was expected."""

    def __init__(self, what: str, count: int, *, action: str | None = None):
        if count == 0:
            message = f"expected exactly one {what}, got none"
        else:
            message = f"expected exactly one {what}, got {count}"
        super().__init__(message, context=ErrorContext(action=action))
        self.what = what
        self.count = count


class MalformedIdentifierError(FatalError):
    """A composite identifier cannot be built or parsed."""

    def __init__(self, message: str, identifier: str | None = None):
        super().__init__(message)
        self.identifier = identifier
        if identifier is not None:
            self.context.resource_id = identifier


class TaskFailedError(FatalError):
    """An asynchronous task reached a failed terminal status."""

    def __init__(
        self,
        handle: Any,
        status_code: Any,
        *,
        action: str | None = None,
        request_id: str | None = None,
    ):
        super().__init__(
            f"task {handle} finished with failed status {status_code}",
            context=ErrorContext(
                action=action,
                request_id=request_id,
                handle=handle,
                status_code=status_code,
            ),
        )
        self.handle = handle
        self.status_code = status_code


class DeadlineExceededError(ConvergeError):
    """Deadline reached while only transient conditions were observed.

    Attributes:
        operation: Name of the polled operation
        deadline: Deadline in seconds
        elapsed: Seconds spent before giving up
        attempts: Number of attempts made
        last_error: The last transient condition seen, if any
    """

    def __init__(
        self,
        operation: str,
        deadline: float,
        *,
        elapsed: float,
        attempts: int,
        last_error: BaseException | str | None = None,
        context: ErrorContext | None = None,
    ):
        message = f"'{operation}' did not converge within {deadline}s after {attempts} attempts"
        if last_error is not None:
            message += f"; last condition: {last_error}"
        super().__init__(
            message,
            context=context,
            cause=last_error if isinstance(last_error, BaseException) else None,
        )
        self.operation = operation
        self.deadline = deadline
        self.elapsed = elapsed
        self.attempts = attempts
        self.last_error = last_error


def classify_error(error: BaseException) -> ErrorClass | None:
    """Return the classification carried by ``error``, if it has one."""
    if isinstance(error, ConvergeError):
        return error.error_class
    return None


def is_retryable(error: BaseException) -> bool:
    """True only for errors already classified as transient."""
    return classify_error(error) == ErrorClass.TRANSIENT


def wrap_error(error: BaseException, error_class: ErrorClass, **context: Any) -> ConvergeError:
    """Wrap an unclassified exception into the ``ConvergeError`` for ``error_class``.

    ``ConvergeError`` instances are returned as-is (with missing context
    filled in) so a classification is never overwritten.
    """
    if isinstance(error, ConvergeError):
        return error.with_context(**context)
    wrapper = {
        ErrorClass.TRANSIENT: TransientError,
        ErrorClass.NOT_FOUND: NotFoundError,
        ErrorClass.FATAL: FatalError,
    }[error_class]
    return wrapper(str(error) or type(error).__name__, cause=error).with_context(**context)


__all__ = [
    "ErrorClass",
    "ErrorContext",
    "ConvergeError",
    "TransientError",
    "NotFoundError",
    "FatalError",
    "ContractViolationError",
    "EmptyResponseError",
    "CardinalityError",
    "MalformedIdentifierError",
    "TaskFailedError",
    "DeadlineExceededError",
    "classify_error",
    "is_retryable",
    "wrap_error",
]
