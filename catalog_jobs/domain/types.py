"""
catalog_jobs.domain.types -- Pure frozen dataclasses for jobs, items and the
sync queue.  ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ORM models convert to these via ``to_dto()``.

Invariants enforced:
    - ``processed_items = succeeded_items + failed_items <= total_items``
      (checked by ``Job.__post_init__``).
    - ``retry_count <= max_retries`` (checked by ``JobItem.__post_init__``).
    - Status transitions are whitelisted in ``JOB_TRANSITIONS``,
      ``ITEM_TRANSITIONS`` and ``QUEUE_TRANSITIONS``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class JobKind(str, Enum):
    IMPORT = "import"  # CSV catalog import
    SYNC = "sync"  # ERP queue processing run


class JobStatus(str, Enum):
    """Job-level lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES


_TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

# A job that is not running (PENDING or PAUSED) can still be cancelled or failed outright.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.PAUSED: frozenset(
        {JobStatus.PROCESSING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class ItemStatus(str, Enum):
    """Per-item lifecycle status within a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"
    SKIPPED = "skipped"


ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset(
        {ItemStatus.PROCESSING, ItemStatus.SKIPPED, ItemStatus.FAILED_PERMANENT}
    ),
    ItemStatus.PROCESSING: frozenset(
        {
            ItemStatus.SUCCESS,
            ItemStatus.FAILED_RETRYABLE,
            ItemStatus.FAILED_PERMANENT,
            ItemStatus.SKIPPED,
        }
    ),
    ItemStatus.FAILED_RETRYABLE: frozenset(
        {ItemStatus.PENDING, ItemStatus.PROCESSING, ItemStatus.FAILED_PERMANENT}
    ),
    ItemStatus.SUCCESS: frozenset(),
    ItemStatus.FAILED_PERMANENT: frozenset(),
    ItemStatus.SKIPPED: frozenset(),
}


class FailureClass(str, Enum):
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


class QueuePriority(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Sort key: lower ranks are dequeued first."""
        return PRIORITY_RANK[self]


PRIORITY_RANK: dict[QueuePriority, int] = {
    QueuePriority.HIGH: 1,
    QueuePriority.NORMAL: 2,
    QueuePriority.LOW: 3,
}


class QueueStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"


QUEUE_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING, QueueStatus.FAILED}),
    # PROCESSING -> PENDING re-queues a retryable failure
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.DONE, QueueStatus.FAILED, QueueStatus.PENDING}
    ),
    QueueStatus.DONE: frozenset(),
    QueueStatus.FAILED: frozenset(),
}


# =============================================================================
# Job / Item DTOs
# =============================================================================


@dataclass(frozen=True)
class Job:
    """Immutable snapshot of a persisted job."""

    job_id: UUID
    job_uuid: UUID  # external-facing identifier
    kind: JobKind
    status: JobStatus
    total_items: int = 0
    processed_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: UUID | None = None
    source_filename: str | None = None
    error_summary: str | None = None

    def __post_init__(self) -> None:
        if self.processed_items != self.succeeded_items + self.failed_items:
            raise ValueError(
                f"processed_items ({self.processed_items}) must equal "
                f"succeeded_items + failed_items "
                f"({self.succeeded_items} + {self.failed_items})"
            )
        if self.processed_items > self.total_items:
            raise ValueError(
                f"processed_items ({self.processed_items}) exceeds "
                f"total_items ({self.total_items})"
            )


@dataclass(frozen=True)
class JobItem:
    """Immutable snapshot of one unit of work within a job."""

    item_id: UUID
    job_id: UUID
    source_code: str | None
    source_row_number: int
    status: ItemStatus
    retry_count: int = 0
    max_retries: int = 3
    last_error_type: str | None = None
    last_error_message: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    first_attempted_at: datetime | None = None
    last_attempted_at: datetime | None = None
    succeeded_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count ({self.retry_count}) exceeds "
                f"max_retries ({self.max_retries})"
            )


@dataclass(frozen=True)
class NewItem:
    """Input for creating an item row: one source row or one queued event."""

    source_row_number: int
    source_code: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Failure classification
# =============================================================================


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of applying a failure to an item's retry budget."""

    failure_class: FailureClass
    status: ItemStatus
    retry_count: int
    error_type: str
    error_message: str

    @property
    def will_retry(self) -> bool:
        return self.status == ItemStatus.FAILED_RETRYABLE


# =============================================================================
# Progress tracking
# =============================================================================


@dataclass(frozen=True)
class ProgressDelta:
    """Counter changes passed to ``ProgressTracker.update``.

    Counters are absolute values for the job so far, not increments.
    """

    processed_items: int | None = None
    succeeded_items: int | None = None
    failed_items: int | None = None
    current_row: int | None = None
    total_items: int | None = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Full view of a tracked job delivered to every listener."""

    job_id: Any
    kind: JobKind
    status: JobStatus
    total_items: int
    processed_items: int
    succeeded_items: int
    failed_items: int
    current_row: int
    progress_percent: float
    estimated_time_remaining: float | None  # seconds
    start_time: datetime
    last_update: datetime
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


ProgressListener = Callable[[ProgressSnapshot], None]


@dataclass(frozen=True)
class RowResult:
    """Optional processor return value; ``success=False`` rejects the row
    without raising."""

    success: bool
    error: str | None = None
    error_type: str | None = None


@dataclass(frozen=True)
class RowError:
    """A row that the batch processor rejected."""

    row: int
    error: str
    data: Any = None
    error_type: str | None = None


@dataclass(frozen=True)
class BatchOutcome:
    """Result of ``ProgressTracker.process_batch``."""

    processed: int
    succeeded: int
    failed: int
    errors: tuple[RowError, ...] = ()
    stopped_early: bool = False


@dataclass(frozen=True)
class JobStatistics:
    """Derived statistics for a tracked job."""

    job_id: Any
    status: JobStatus
    total_items: int
    processed_items: int
    succeeded_items: int
    failed_items: int
    success_rate: float  # percent, 2 decimals
    failure_rate: float  # percent, 2 decimals
    remaining_items: int
    duration_seconds: float
    progress_percent: float


# =============================================================================
# Sync queue
# =============================================================================


@dataclass(frozen=True)
class QueueEntry:
    """A normalized sync queue record; never a positional row."""

    entry_id: UUID
    subject_id: str
    event_type: str
    priority: QueuePriority
    status: QueueStatus
    event_data: Any  # opaque; only the transformer interprets it
    created_at: datetime
    retry_count: int = 0
    max_retries: int = 3
    error_message: str | None = None
    processed_at: datetime | None = None
    next_attempt_at: datetime | None = None


@dataclass(frozen=True)
class SyncRunResult:
    """Summary of one pass over the sync queue."""

    job_id: UUID | None
    claimed: int
    done: int
    requeued: int
    failed: int
    errors: tuple[RowError, ...] = ()
