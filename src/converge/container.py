"""
Lazy-initialised component container.

:class:`ConvergeContainer` holds the components one process shares (the
per-action rate limiter above all, since every call site must draw from
the same buckets) and creates them from settings on first access.

Usage::

    from converge import ConvergeContainer

    container = ConvergeContainer()
    limiter  = container.rate_limiter     # lazy-created, shared
    workflow = container.workflow         # same pattern

    invoker = container.invoker(client)   # bound to the shared limiter

    # As a context manager for automatic cleanup:
    with ConvergeContainer(settings) as c:
        c.paginator.collect_all(list_accounts, c.settings.default_page_size)
"""

from __future__ import annotations

from converge.core.ids import CompositeIdCodec
from converge.core.logging import get_logger
from converge.core.settings import ConvergeSettings, get_settings
from converge.execution.convergence import ConvergenceWorkflow
from converge.execution.invoker import CodeClassifier, Invoker, RemoteClient
from converge.execution.pagination import Paginator
from converge.execution.rate_limit import ActionRateLimiter
from converge.execution.retry import RetryPoller, RetryProfile, profiles_from_settings

logger = get_logger(__name__)


class ConvergeContainer:
    """Lazy-initialised component container.

    Components are created on first property access and released via
    :meth:`close` (or the context-manager protocol).
    """

    def __init__(self, settings: ConvergeSettings | None = None) -> None:
        self._settings = settings
        self._rate_limiter: ActionRateLimiter | None = None
        self._classifier: CodeClassifier | None = None
        self._poller: RetryPoller | None = None
        self._paginator: Paginator | None = None
        self._workflow: ConvergenceWorkflow | None = None
        self._codec: CompositeIdCodec | None = None
        self._profiles: dict[str, RetryProfile] | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> ConvergeSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def rate_limiter(self) -> ActionRateLimiter:
        """The process-wide per-action limiter."""
        if self._rate_limiter is None:
            self._rate_limiter = ActionRateLimiter.from_settings(self.settings)
            logger.debug(
                "container.rate_limiter_created",
                default_rate=self.settings.default_rate,
                overrides=len(self.settings.action_limits),
            )
        return self._rate_limiter

    @property
    def classifier(self) -> CodeClassifier:
        if self._classifier is None:
            self._classifier = CodeClassifier.from_settings(self.settings)
        return self._classifier

    @property
    def poller(self) -> RetryPoller:
        if self._poller is None:
            self._poller = RetryPoller(classifier=self.classifier)
        return self._poller

    @property
    def profiles(self) -> dict[str, RetryProfile]:
        """``short_read`` and ``long_converge`` as configured."""
        if self._profiles is None:
            self._profiles = profiles_from_settings(self.settings)
        return self._profiles

    @property
    def short_read(self) -> RetryProfile:
        return self.profiles["short_read"]

    @property
    def long_converge(self) -> RetryProfile:
        return self.profiles["long_converge"]

    @property
    def paginator(self) -> Paginator:
        if self._paginator is None:
            self._paginator = Paginator(rate_limiter=self.rate_limiter, poller=self.poller)
        return self._paginator

    @property
    def workflow(self) -> ConvergenceWorkflow:
        if self._workflow is None:
            self._workflow = ConvergenceWorkflow(
                poller=self.poller,
                rate_limiter=self.rate_limiter,
                read_profile=self.short_read,
                converge_profile=self.long_converge,
            )
        return self._workflow

    @property
    def codec(self) -> CompositeIdCodec:
        if self._codec is None:
            self._codec = CompositeIdCodec(self.settings.id_delimiter)
        return self._codec

    def invoker(self, client: RemoteClient) -> Invoker:
        """An ``Invoker`` for ``client`` sharing this container's limiter."""
        return Invoker(
            client=client,
            rate_limiter=self.rate_limiter,
            classifier=self.classifier,
            poller=self.poller,
            profile=self.short_read,
        )

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Drop every component; the next access builds fresh ones."""
        if self._rate_limiter is not None:
            self._rate_limiter.reset()
        self._rate_limiter = None
        self._classifier = None
        self._poller = None
        self._paginator = None
        self._workflow = None
        self._codec = None
        self._profiles = None

    def __enter__(self) -> ConvergeContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# ── Global convenience ───────────────────────────────────────────────────

_global_container: ConvergeContainer | None = None


def get_container() -> ConvergeContainer:
    """Get (or create) the module-level :class:`ConvergeContainer`."""
    global _global_container
    if _global_container is None:
        _global_container = ConvergeContainer()
    return _global_container


def reset_container() -> None:
    """Close and forget the module-level container."""
    global _global_container
    if _global_container is not None:
        _global_container.close()
    _global_container = None


__all__ = [
    "ConvergeContainer",
    "get_container",
    "reset_container",
]
