"""Converge core primitives: errors, identifiers, settings and logging."""

from converge.core.errors import (
    CardinalityError,
    ContractViolationError,
    ConvergeError,
    DeadlineExceededError,
    EmptyResponseError,
    ErrorClass,
    ErrorContext,
    FatalError,
    MalformedIdentifierError,
    NotFoundError,
    TaskFailedError,
    TransientError,
    classify_error,
    is_retryable,
    wrap_error,
)
from converge.core.ids import (
    COMMA_CODEC,
    FIELD_CODEC,
    CompositeIdCodec,
    IdLayout,
)
from converge.core.logging import (
    LogContext,
    configure_logging,
    get_logger,
)
from converge.core.settings import ConvergeSettings, get_settings

__all__ = [
    # Errors
    "CardinalityError",
    "ContractViolationError",
    "ConvergeError",
    "DeadlineExceededError",
    "EmptyResponseError",
    "ErrorClass",
    "ErrorContext",
    "FatalError",
    "MalformedIdentifierError",
    "NotFoundError",
    "TaskFailedError",
    "TransientError",
    "classify_error",
    "is_retryable",
    "wrap_error",
    # Identifiers
    "COMMA_CODEC",
    "FIELD_CODEC",
    "CompositeIdCodec",
    "IdLayout",
    # Logging
    "LogContext",
    "configure_logging",
    "get_logger",
    # Settings
    "ConvergeSettings",
    "get_settings",
]
