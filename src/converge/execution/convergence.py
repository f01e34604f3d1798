"""Convergence workflow for asynchronous remote operations.

Long-running remote operations (instance creation, account creation,
database creation, privilege changes) return before the work is done. What
comes back is either a handle for the provisioning task, or an order/deal
reference that first has to be resolved into a resource id and a task
handle. ``ConvergenceWorkflow`` turns such a submission into a blocking call
that returns only once the task reaches a terminal status.

Manifesto:
    Every kind of submission follows the same state machine; the only
    variation is where the handle comes from and which status table
    applies. One workflow replaces a hand-written wait loop per resource.

Architecture:
    ::

        SUBMITTED ──(order ref)──► RESOLVING ──► POLLING ──► SUCCEEDED
            │                                      │
            └───────────(handle)───────────────────┘──────► FAILED

    - RESOLVING: exactly one deal entry with exactly one resource id,
      anything else is a ``CardinalityError``
    - POLLING: ``RetryPoller`` (long profile) queries the task status; the
      ``StatusTable`` maps each code to a ``PollOutcome``
    - FAILED: ``TaskFailedError`` with the status code and request id

Example:
    >>> workflow = ConvergenceWorkflow(rate_limiter=limiter)
    >>> instance_id = workflow.await_completion(
    ...     Submission.order(deal_name, action="CreateDBInstances"),
    ...     FLOW_STATUS_TABLE,
    ...     resolve_order=lookup_deal,
    ...     query_status=describe_flow,
    ...     status_action="DescribeFlowStatus",
    ... )

Tags:
    converge-core, execution, convergence, polling, state-machine
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from converge.core.errors import (
    CardinalityError,
    EmptyResponseError,
    ErrorContext,
    FatalError,
    NotFoundError,
    TaskFailedError,
)
from converge.core.logging import get_logger
from converge.execution.rate_limit import ActionRateLimiter
from converge.execution.retry import (
    LONG_CONVERGE,
    SHORT_READ,
    Done,
    NotFoundPolicy,
    Pending,
    RetryPoller,
    RetryProfile,
)

logger = get_logger(__name__)


class PollOutcome(str, Enum):
    """What a remote status code means for the polling loop."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WorkflowState(str, Enum):
    """States of one ``await_completion`` invocation."""

    SUBMITTED = "submitted"
    RESOLVING = "resolving"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusTable:
    """Maps remote status codes to ``PollOutcome``.

    Codes not in ``outcomes`` map to ``default`` (``PENDING`` unless the
    table says otherwise), so an unknown code keeps the loop polling.
    """

    name: str
    outcomes: Mapping[Any, PollOutcome]
    default: PollOutcome = PollOutcome.PENDING

    @classmethod
    def build(
        cls,
        name: str,
        *,
        succeeded: Iterable[Any] = (),
        failed: Iterable[Any] = (),
        pending: Iterable[Any] = (),
        default: PollOutcome = PollOutcome.PENDING,
    ) -> StatusTable:
        outcomes: dict[Any, PollOutcome] = {}
        for codes, outcome in (
            (pending, PollOutcome.PENDING),
            (succeeded, PollOutcome.SUCCEEDED),
            (failed, PollOutcome.FAILED),
        ):
            for code in codes:
                if code in outcomes and outcomes[code] != outcome:
                    raise ValueError(f"status code {code!r} mapped to both {outcomes[code].value} and {outcome.value}")
                outcomes[code] = outcome
        return cls(name=name, outcomes=MappingProxyType(outcomes), default=default)

    def outcome(self, code: Any) -> PollOutcome:
        return self.outcomes.get(code, self.default)


# Flow status of the database control plane: 0 success, 1 running, 2 failed.
FLOW_STATUS_TABLE = StatusTable.build("flow", succeeded=[0], pending=[1], failed=[2])


@dataclass(frozen=True)
class StatusReport:
    """One status-query response for a task handle."""

    code: Any
    request_id: str | None = None


@dataclass(frozen=True)
class DealEntry:
    """One entry of an order lookup: the resources and the task handle."""

    resource_ids: tuple[str, ...]
    handle: Any = None

    @classmethod
    def of(cls, resource_ids: Sequence[str], handle: Any = None) -> DealEntry:
        return cls(resource_ids=tuple(resource_ids), handle=handle)


@dataclass(frozen=True)
class Submission:
    """What the initiating call returned.

    Either a direct result (``resource_id`` and/or ``handle``) or an
    ``order_ref`` that must be resolved first.
    """

    resource_id: str | None = None
    handle: Any = None
    order_ref: str | None = None
    action: str | None = None

    def __post_init__(self):
        if self.order_ref is not None and (self.resource_id is not None or self.handle is not None):
            raise ValueError("an order submission carries neither resource_id nor handle")

    @classmethod
    def direct(cls, resource_id: str | None = None, handle: Any = None, *, action: str | None = None) -> Submission:
        return cls(resource_id=resource_id, handle=handle, action=action)

    @classmethod
    def order(cls, order_ref: str, *, action: str | None = None) -> Submission:
        return cls(order_ref=order_ref, action=action)

    @property
    def requires_resolution(self) -> bool:
        return self.order_ref is not None


QueryStatus = Callable[[Any], "StatusReport | Any"]
ResolveOrder = Callable[[str], Sequence[DealEntry]]


def _has_handle(handle: Any) -> bool:
    # A zero flow id means the call finished synchronously.
    return handle is not None and handle != 0 and handle != ""


@dataclass
class ConvergenceWorkflow:
    """Drives a submission to a terminal status.

    Attributes:
        poller: Runs the status and resolution loops
        rate_limiter: When set, every status query acquires ``status_action``
        read_profile: Window for the order lookup and ``await_state``
        converge_profile: Window for ``await_completion`` polling
    """

    poller: RetryPoller = field(default_factory=RetryPoller)
    rate_limiter: ActionRateLimiter | None = None
    read_profile: RetryProfile = SHORT_READ
    converge_profile: RetryProfile = LONG_CONVERGE

    def _transition(self, state: WorkflowState, **fields: Any) -> None:
        logger.info("convergence.state", state=state.value, **fields)

    def resolve(self, order_ref: str, resolve_order: ResolveOrder, *, action: str | None = None) -> DealEntry:
        """Resolve an order reference to exactly one deal entry."""
        entries = self.poller.call(
            lambda: resolve_order(order_ref),
            self.read_profile,
            operation=action or "resolve_order",
        )
        if entries is None:
            raise EmptyResponseError(action or "resolve_order", f"order {order_ref} resolved to no payload")
        entries = list(entries)
        if len(entries) != 1:
            raise CardinalityError("deal", len(entries), action=action)
        entry = entries[0]
        if len(entry.resource_ids) != 1:
            raise CardinalityError("resource id in deal", len(entry.resource_ids), action=action)
        return entry

    def await_completion(
        self,
        submission: Submission,
        status_table: StatusTable,
        *,
        query_status: QueryStatus,
        resolve_order: ResolveOrder | None = None,
        profile: RetryProfile | None = None,
        not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
        status_action: str | None = None,
        resolve_action: str | None = None,
    ) -> str | None:
        """Block until the submission's task is terminal.

        Args:
            submission: What the initiating call returned
            status_table: Status code → outcome for this operation kind
            query_status: ``handle -> StatusReport`` (a bare code is accepted)
            resolve_order: Order lookup, required for order submissions
            profile: Polling window, ``converge_profile`` when None
            not_found: What a not-found task handle means; ``ABSENT`` counts
                it as converged
            status_action: Rate-limit key and error context for status queries
            resolve_action: Error context for the order lookup

        Returns:
            The resolved resource id, or None when there is none to resolve

        Raises:
            CardinalityError: The order did not resolve to exactly one resource
            TaskFailedError: The task reached a failed status
            DeadlineExceededError: The task stayed pending past the deadline
        """
        operation = status_action or "query_status"
        self._transition(
            WorkflowState.SUBMITTED,
            action=submission.action,
            resource_id=submission.resource_id,
            order_ref=submission.order_ref,
        )

        resource_id = submission.resource_id
        handle = submission.handle
        try:
            if submission.requires_resolution:
                if resolve_order is None:
                    raise ValueError("order submissions need a resolve_order callable")
                self._transition(WorkflowState.RESOLVING, order_ref=submission.order_ref)
                entry = self.resolve(submission.order_ref, resolve_order, action=resolve_action)
                resource_id = entry.resource_ids[0]
                handle = entry.handle

            if not _has_handle(handle):
                self._transition(WorkflowState.SUCCEEDED, resource_id=resource_id, polls=0)
                return resource_id

            polls = 0

            def poll() -> Done[StatusReport] | Pending:
                nonlocal polls
                polls += 1
                if self.rate_limiter is not None:
                    self.rate_limiter.acquire(operation)
                report = query_status(handle)
                if report is None:
                    raise EmptyResponseError(operation)
                if not isinstance(report, StatusReport):
                    report = StatusReport(code=report)
                outcome = status_table.outcome(report.code)
                if outcome == PollOutcome.SUCCEEDED:
                    return Done(report)
                if outcome == PollOutcome.FAILED:
                    raise TaskFailedError(
                        handle,
                        report.code,
                        action=operation,
                        request_id=report.request_id,
                    )
                reason = f"task {handle} status is {report.code} ({status_table.name})"
                if report.request_id:
                    reason += f", request_id {report.request_id}"
                return Pending(reason)

            self._transition(WorkflowState.POLLING, resource_id=resource_id, handle=handle)
            self.poller.run(poll, profile or self.converge_profile, not_found=not_found, operation=operation)
        except FatalError as e:
            e.with_context(resource_id=resource_id, handle=handle)
            self._transition(WorkflowState.FAILED, resource_id=resource_id, handle=handle, reason=str(e))
            raise

        self._transition(WorkflowState.SUCCEEDED, resource_id=resource_id, handle=handle, polls=polls)
        return resource_id

    def await_state(
        self,
        describe: Callable[[], Any],
        status_table: StatusTable,
        *,
        profile: RetryProfile | None = None,
        not_found: NotFoundPolicy = NotFoundPolicy.FATAL,
        operation: str = "describe",
        resource_id: str | None = None,
    ) -> Any:
        """Poll a resource's own status field until it is terminal.

        ``describe()`` returns the current status code; returning None (or
        raising ``NotFoundError``) means the resource is absent, which the
        ``not_found`` policy resolves. ``NotFoundPolicy.ABSENT`` makes
        absence a successful outcome (waiting for a delete). Without a
        ``profile`` the workflow's ``read_profile`` applies.

        Returns:
            The terminal status code, or None when absence was accepted
        """

        def check() -> Done[Any] | Pending:
            code = describe()
            if code is None:
                raise NotFoundError(
                    f"{resource_id or 'resource'} not found",
                    context=ErrorContext(action=operation, resource_id=resource_id),
                )
            outcome = status_table.outcome(code)
            if outcome == PollOutcome.SUCCEEDED:
                return Done(code)
            if outcome == PollOutcome.FAILED:
                raise TaskFailedError(resource_id or operation, code, action=operation)
            return Pending(f"{resource_id or 'resource'} status is {code} ({status_table.name})")

        return self.poller.run(check, profile or self.read_profile, not_found=not_found, operation=operation)


def check_operation_result(
    result_code: Any,
    *,
    success_codes: Iterable[Any] = ("0",),
    action: str | None = None,
    request_id: str | None = None,
) -> None:
    """Raise ``FatalError`` unless a synchronous return code means success."""
    if result_code is None:
        raise EmptyResponseError(action or "operation", "operation returned no result code")
    if result_code not in tuple(success_codes):
        raise FatalError(
            f"operation returned code {result_code}",
            context=ErrorContext(action=action, request_id=request_id, status_code=result_code),
        )


__all__ = [
    "ConvergenceWorkflow",
    "DealEntry",
    "FLOW_STATUS_TABLE",
    "PollOutcome",
    "StatusReport",
    "StatusTable",
    "Submission",
    "WorkflowState",
    "check_operation_result",
]
