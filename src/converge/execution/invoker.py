"""Remote-client adapter seam.

The engine never talks to a vendor SDK directly. A ``RemoteClient`` exposes
one method, ``invoke(action, request)``, and raises ``RemoteServiceError``
(or any exception) on failure. ``Invoker`` wraps that contract:

1. acquire the per-action rate limit
2. invoke the remote action
3. reject a ``None`` response as ``EmptyResponseError``
4. classify failures once, into ``TransientError`` / ``NotFoundError`` /
   ``FatalError``, tagged with the action name and request id

Only classifiers look inside ``RemoteServiceError``; call sites see the
classified ``ConvergeError`` and nothing else.

Example:
    >>> invoker = Invoker(client, ActionRateLimiter(), classifier=CodeClassifier())
    >>> response = invoker.call("DescribeDBInstances", {"InstanceIdSet": ["mssql-1"]})
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from converge.core.errors import (
    ConvergeError,
    EmptyResponseError,
    ErrorClass,
    classify_error,
    wrap_error,
)
from converge.core.logging import get_logger
from converge.core.settings import DEFAULT_NOT_FOUND_PREFIXES, DEFAULT_TRANSIENT_CODES
from converge.execution.rate_limit import ActionRateLimiter
from converge.execution.retry import (
    Classifier,
    NotFoundPolicy,
    RetryPoller,
    RetryProfile,
    SHORT_READ,
    fatal_classifier,
)

if TYPE_CHECKING:
    from converge.core.settings import ConvergeSettings

logger = get_logger(__name__)


class RemoteServiceError(Exception):
    """Error shape reported by the remote service.

    Attributes:
        code: Vendor error code, e.g. ``ResourceNotFound.InstanceNotFound``
        message: Vendor error message
        request_id: Request trace id, if the service returned one
    """

    def __init__(self, code: str, message: str = "", request_id: str | None = None):
        self.code = code
        self.message = message
        self.request_id = request_id
        text = f"[{code}] {message}" if message else f"[{code}]"
        if request_id:
            text += f" (request_id={request_id})"
        super().__init__(text)


@runtime_checkable
class RemoteClient(Protocol):
    """The fundamental RPC contract of a remote-client adapter."""

    def invoke(self, action: str, request: Any) -> Any:
        """Call ``action`` with ``request``; return the response or raise."""
        ...


@dataclass
class CodeClassifier:
    """Classify ``RemoteServiceError``s by their vendor code.

    Codes listed in ``transient_codes`` (exact match) are transient; codes
    starting with any of ``not_found_prefixes`` are not-found; everything
    else, including non-vendor exceptions, falls through to ``fallback``.
    """

    transient_codes: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_TRANSIENT_CODES))
    not_found_prefixes: tuple[str, ...] = tuple(DEFAULT_NOT_FOUND_PREFIXES)
    fallback: Classifier = fatal_classifier

    @classmethod
    def from_settings(cls, settings: ConvergeSettings) -> CodeClassifier:
        return cls(
            transient_codes=frozenset(settings.transient_error_codes),
            not_found_prefixes=tuple(settings.not_found_error_prefixes),
        )

    def with_transient(self, codes: Iterable[str]) -> CodeClassifier:
        """Copy with extra transient codes for one call site."""
        return CodeClassifier(
            transient_codes=self.transient_codes | frozenset(codes),
            not_found_prefixes=self.not_found_prefixes,
            fallback=self.fallback,
        )

    def __call__(self, error: BaseException) -> ErrorClass:
        if isinstance(error, RemoteServiceError):
            if error.code in self.transient_codes:
                return ErrorClass.TRANSIENT
            if error.code.startswith(self.not_found_prefixes):
                return ErrorClass.NOT_FOUND
        return self.fallback(error)


@dataclass
class Invoker:
    """Rate-limited, classified calls through a ``RemoteClient``.

    Attributes:
        client: The remote-client adapter
        rate_limiter: Shared per-action limiter
        classifier: Turns raw failures into an ``ErrorClass``
        poller: Used by ``call_with_retry``
        profile: Default window for ``call_with_retry``
    """

    client: RemoteClient
    rate_limiter: ActionRateLimiter = field(default_factory=ActionRateLimiter)
    classifier: Classifier = fatal_classifier
    poller: RetryPoller = field(default_factory=RetryPoller)
    profile: RetryProfile = SHORT_READ

    def call(self, action: str, request: Any = None, *, classifier: Classifier | None = None) -> Any:
        """Invoke ``action`` once.

        Raises:
            EmptyResponseError: The client returned None without raising
            TransientError / NotFoundError / FatalError: The classified failure
        """
        self.rate_limiter.acquire(action)
        try:
            response = self.client.invoke(action, request)
        except Exception as e:
            error_class = classify_error(e) or (classifier or self.classifier)(e)
            request_id = getattr(e, "request_id", None)
            log = logger.warning if error_class == ErrorClass.TRANSIENT else logger.error
            log(
                "invoker.call_failed",
                action=action,
                request_id=request_id,
                error_class=error_class.value,
                reason=str(e),
            )
            if isinstance(e, ConvergeError):
                raise e.with_context(action=action, request_id=request_id)
            raise wrap_error(e, error_class, action=action, request_id=request_id) from e
        if response is None:
            logger.error("invoker.empty_response", action=action)
            raise EmptyResponseError(action)
        return response

    def call_with_retry(
        self,
        action: str,
        request: Any = None,
        profile: RetryProfile | None = None,
        *,
        classifier: Classifier | None = None,
        not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
    ) -> Any:
        """Invoke ``action``, retrying transient failures within ``profile``.

        Each retry acquires the rate limit again. Without a ``profile`` the
        invoker's own ``profile`` applies.
        """
        return self.poller.call(
            lambda: self.call(action, request, classifier=classifier),
            profile or self.profile,
            not_found=not_found,
            operation=action,
        )


__all__ = [
    "CodeClassifier",
    "Invoker",
    "RemoteClient",
    "RemoteServiceError",
]
