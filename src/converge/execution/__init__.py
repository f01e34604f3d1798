"""Converge Execution — rate limiting, retry polling, pagination, convergence.

WHY
───
Every remote resource operation needs the same four things: stay inside
the per-action call budget, retry transient failures within a deadline,
walk offset/limit list endpoints, and wait for asynchronous tasks to
finish. ``converge.execution`` provides each once, so resource managers
only describe *what* to call.

ARCHITECTURE
────────────
::

    Invoker (rate-limited, classified remote calls)
      ├── ActionRateLimiter ─ one token bucket per action, fail-open watchdog
      └── CodeClassifier    ─ vendor error code → ErrorClass
      │
      ▼
    RetryPoller (fixed interval, deadline-bounded)
      ├── SHORT_READ        ─ simple reads/writes
      └── LONG_CONVERGE     ─ asynchronous task convergence
      │
      ▼
    Paginator            ─ offset/limit traversal, short page terminates
    ConvergenceWorkflow  ─ SUBMITTED → RESOLVING → POLLING → SUCCEEDED/FAILED
"""

from converge.execution.convergence import (
    FLOW_STATUS_TABLE,
    ConvergenceWorkflow,
    DealEntry,
    PollOutcome,
    StatusReport,
    StatusTable,
    Submission,
    WorkflowState,
    check_operation_result,
)
from converge.execution.invoker import (
    CodeClassifier,
    Invoker,
    RemoteClient,
    RemoteServiceError,
)
from converge.execution.pagination import Page, Paginator
from converge.execution.rate_limit import ActionRateLimiter, TokenBucketLimiter
from converge.execution.retry import (
    LONG_CONVERGE,
    SHORT_READ,
    Done,
    NotFoundPolicy,
    Pending,
    RetryPoller,
    RetryProfile,
    fatal_classifier,
    profile_for,
    retry_call,
    transient_classifier,
)
from converge.execution.timeout import Deadline

__all__ = [
    # Convergence
    "ConvergenceWorkflow",
    "DealEntry",
    "FLOW_STATUS_TABLE",
    "PollOutcome",
    "StatusReport",
    "StatusTable",
    "Submission",
    "WorkflowState",
    "check_operation_result",
    # Invoker
    "CodeClassifier",
    "Invoker",
    "RemoteClient",
    "RemoteServiceError",
    # Pagination
    "Page",
    "Paginator",
    # Rate limiting
    "ActionRateLimiter",
    "TokenBucketLimiter",
    # Retry
    "Done",
    "LONG_CONVERGE",
    "NotFoundPolicy",
    "Pending",
    "RetryPoller",
    "RetryProfile",
    "SHORT_READ",
    "fatal_classifier",
    "profile_for",
    "retry_call",
    "transient_classifier",
    # Timeout
    "Deadline",
]
