"""Offset/limit traversal of paginated list endpoints.

The remote list APIs take ``Offset`` and ``Limit`` and return at most
``Limit`` items. They do not say whether more remain, so the only
termination signal is a short page: an exactly-full last page costs one
more round trip that comes back empty.

Example:
    >>> def list_accounts(offset, limit):
    ...     response = invoker.call("DescribeAccounts", {"InstanceId": iid, "Offset": offset, "Limit": limit})
    ...     return response["Accounts"]
    >>>
    >>> accounts = Paginator(limiter).collect_all(list_accounts, 20, action="DescribeAccounts")
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from converge.core.errors import CardinalityError, EmptyResponseError
from converge.core.logging import get_logger
from converge.execution.rate_limit import ActionRateLimiter
from converge.execution.retry import RetryPoller, RetryProfile

T = TypeVar("T")

ListAction = Callable[[int, int], "Page[T] | Sequence[T] | None"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class Page(Generic[T]):
    """One bounded slice of a result set.

    Attributes:
        items: Items in remote order
        limit: The limit that was requested for this page
        offset: The offset this page was requested at
    """

    items: tuple[T, ...]
    limit: int
    offset: int = 0

    @classmethod
    def of(cls, items: Sequence[T], limit: int, offset: int = 0) -> Page[T]:
        return cls(items=tuple(items), limit=limit, offset=offset)

    @property
    def has_more(self) -> bool:
        """A full page means more items may remain."""
        return len(self.items) >= self.limit

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class Paginator:
    """Sequential page-by-page traversal with accumulation.

    Attributes:
        rate_limiter: Acquired once per page under the list action's name
        poller: Retries a page fetch when a retry profile is given
    """

    rate_limiter: ActionRateLimiter = field(default_factory=ActionRateLimiter)
    poller: RetryPoller = field(default_factory=RetryPoller)

    def _fetch(
        self,
        list_action: ListAction,
        offset: int,
        page_size: int,
        action: str,
    ) -> Page[T]:
        self.rate_limiter.acquire(action)
        response = list_action(offset, page_size)
        if response is None:
            raise EmptyResponseError(action, f"list action {action} returned no payload at offset {offset}")
        if isinstance(response, Page):
            return response
        return Page.of(response, page_size, offset)

    def iter_pages(
        self,
        list_action: ListAction,
        page_size: int,
        *,
        action: str | None = None,
        profile: RetryProfile | None = None,
    ) -> Iterator[Page[T]]:
        """Yield every page until a short page ends the traversal.

        Args:
            list_action: ``(offset, limit) -> Page | sequence``; None is a
                contract violation
            page_size: Requested limit per page (>= 1)
            action: Rate-limit key (defaults to the callable's name)
            profile: When given, each page fetch is retried within it

        Raises:
            EmptyResponseError: A page came back as None
        """
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        action = action or getattr(list_action, "__name__", "list")
        offset = 0
        round_trips = 0
        while True:
            if profile is None:
                page = self._fetch(list_action, offset, page_size, action)
            else:
                # Default argument pins the current offset for the retry closure.
                page = self.poller.call(
                    lambda offset=offset: self._fetch(list_action, offset, page_size, action),
                    profile,
                    operation=action,
                )
            round_trips += 1
            logger.debug(
                "pagination.page",
                action=action,
                offset=offset,
                count=len(page.items),
                limit=page_size,
            )
            yield page
            if len(page.items) < page_size:
                logger.debug("pagination.done", action=action, round_trips=round_trips)
                return
            offset += page_size

    def collect_all(
        self,
        list_action: ListAction,
        page_size: int,
        *,
        filter: Callable[[T], bool] | None = None,
        action: str | None = None,
        profile: RetryProfile | None = None,
    ) -> list[T]:
        """Traverse every page and accumulate the items.

        ``filter`` narrows items client-side after the termination check,
        so a page that filters down to nothing still advances the scan.
        """
        results: list[T] = []
        for page in self.iter_pages(list_action, page_size, action=action, profile=profile):
            if filter is None:
                results.extend(page.items)
            else:
                results.extend(item for item in page.items if filter(item))
        return results

    def find_one(
        self,
        list_action: ListAction,
        predicate: Callable[[T], bool],
        page_size: int,
        *,
        action: str | None = None,
        profile: RetryProfile | None = None,
        what: str = "item",
    ) -> T | None:
        """Return the single item matching ``predicate``, or None when absent.

        Raises:
            CardinalityError: More than one item matched
        """
        matches = self.collect_all(
            list_action, page_size, filter=predicate, action=action, profile=profile
        )
        if not matches:
            return None
        if len(matches) > 1:
            raise CardinalityError(what, len(matches), action=action)
        return matches[0]


__all__ = [
    "ListAction",
    "Page",
    "Paginator",
]
