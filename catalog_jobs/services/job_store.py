"""
JobStore -- persistence of jobs, items and their statuses.

Contract:
    - ``create_job()`` writes a PENDING job plus one PENDING item per input.
    - ``transition_job()`` is the only way job status changes; it enforces
      the whitelist in ``JOB_TRANSITIONS``.
    - Item methods stamp attempt timestamps and apply the retry policy.
    - ``get_pending_items()`` returns work in source-row order, which makes
      ``source_row_number`` the resume cursor.

Architecture: catalog_jobs/services.  Imports from catalog_jobs.domain,
    catalog_jobs.models and the kernel.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT hold in-memory progress; that belongs to ProgressTracker.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import (
    InvalidItemTransitionError,
    InvalidJobTransitionError,
    ItemNotFoundError,
    JobNotFoundError,
)
from catalog_kernel.logging_config import get_logger

from catalog_jobs.domain import retry_policy
from catalog_jobs.domain.types import (
    ITEM_TRANSITIONS,
    JOB_TRANSITIONS,
    ItemStatus,
    Job,
    JobItem,
    JobKind,
    JobStatus,
    NewItem,
    RetryDecision,
)
from catalog_jobs.models.job import JobItemModel, JobModel

logger = get_logger("jobs.store")


class JobStore:
    """Job and item persistence over one SQLAlchemy session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def create_job(
        self,
        kind: JobKind,
        items: Sequence[NewItem] = (),
        created_by: UUID | None = None,
        source_filename: str | None = None,
        max_retries: int = retry_policy.DEFAULT_MAX_RETRIES,
    ) -> Job:
        """Create a PENDING job with one PENDING item per input."""
        now = self._clock.now()
        job = JobModel(
            kind=kind.value,
            status=JobStatus.PENDING.value,
            total_items=len(items),
            processed_items=0,
            succeeded_items=0,
            failed_items=0,
            source_filename=source_filename,
            created_by_id=created_by,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        self._session.flush()

        for item in items:
            self._session.add(
                JobItemModel.from_new_item(
                    item, job_id=job.id, max_retries=max_retries, created_at=now,
                )
            )
        self._session.flush()

        logger.info(
            "job_created",
            extra={
                "job_id": str(job.id),
                "job_uuid": str(job.job_uuid),
                "kind": kind.value,
                "total_items": len(items),
            },
        )
        return job.to_dto()

    def _load_job(self, job_id: UUID, lock: bool = False) -> JobModel:
        stmt = select(JobModel).where(JobModel.id == job_id)
        if lock:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise JobNotFoundError(job_id)
        return model

    def get_job(self, job_id: UUID) -> Job:
        return self._load_job(job_id).to_dto()

    def get_job_by_uuid(self, job_uuid: UUID) -> Job:
        model = self._session.execute(
            select(JobModel).where(JobModel.job_uuid == job_uuid)
        ).scalar_one_or_none()
        if model is None:
            raise JobNotFoundError(job_uuid)
        return model.to_dto()

    def list_jobs(
        self,
        status: JobStatus | None = None,
        kind: JobKind | None = None,
        limit: int = 50,
    ) -> list[Job]:
        stmt = select(JobModel).order_by(JobModel.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(JobModel.status == status.value)
        if kind is not None:
            stmt = stmt.where(JobModel.kind == kind.value)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def transition_job(self, job_id: UUID, new_status: JobStatus) -> Job:
        """Move a job to ``new_status``.

        Stamps ``started_at`` on the first move to PROCESSING and
        ``completed_at`` on any terminal status.

        Raises:
            JobNotFoundError: If job_id does not exist.
            InvalidJobTransitionError: If the move is not whitelisted.
        """
        job = self._load_job(job_id, lock=True)
        current = JobStatus(job.status)
        if new_status not in JOB_TRANSITIONS[current]:
            raise InvalidJobTransitionError(job_id, current.value, new_status.value)

        now = self._clock.now()
        job.status = new_status.value
        if new_status == JobStatus.PROCESSING and job.started_at is None:
            job.started_at = now
        if new_status.is_terminal:
            job.completed_at = now
        self._session.flush()

        logger.info(
            "job_status_changed",
            extra={
                "job_id": str(job_id),
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        return job.to_dto()

    def record_progress(
        self,
        job_id: UUID,
        succeeded_items: int,
        failed_items: int,
        total_items: int | None = None,
    ) -> Job:
        """Persist counters; ``processed_items`` is always their sum."""
        job = self._load_job(job_id)
        if total_items is not None:
            job.total_items = total_items
        processed = succeeded_items + failed_items
        if processed > job.total_items:
            raise ValueError(
                f"processed_items ({processed}) exceeds total_items "
                f"({job.total_items}) for job {job_id}"
            )
        job.succeeded_items = succeeded_items
        job.failed_items = failed_items
        job.processed_items = processed
        self._session.flush()
        return job.to_dto()

    def finalize_job(
        self,
        job_id: UUID,
        status: JobStatus,
        succeeded_items: int,
        failed_items: int,
        error_summary: str | None = None,
    ) -> Job:
        """Persist final counters and move the job to a terminal status."""
        if not status.is_terminal:
            raise ValueError(f"finalize_job requires a terminal status, got {status.value}")
        self.record_progress(job_id, succeeded_items, failed_items)
        job = self.transition_job(job_id, status)
        if error_summary is not None:
            model = self._load_job(job_id)
            model.error_summary = error_summary
            self._session.flush()
            job = model.to_dto()
        return job

    def delete_job(self, job_id: UUID) -> None:
        """Delete a job; its items go with it."""
        self._session.delete(self._load_job(job_id))
        self._session.flush()
        logger.info("job_deleted", extra={"job_id": str(job_id)})

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def add_items(
        self,
        job_id: UUID,
        items: Iterable[NewItem],
        max_retries: int = retry_policy.DEFAULT_MAX_RETRIES,
    ) -> int:
        """Append items to an existing job and grow ``total_items``."""
        job = self._load_job(job_id)
        now = self._clock.now()
        added = 0
        for item in items:
            self._session.add(
                JobItemModel.from_new_item(
                    item, job_id=job_id, max_retries=max_retries, created_at=now,
                )
            )
            added += 1
        job.total_items += added
        self._session.flush()
        return added

    def _load_item(self, item_id: UUID) -> JobItemModel:
        model = self._session.get(JobItemModel, item_id)
        if model is None:
            raise ItemNotFoundError(item_id)
        return model

    def get_item(self, item_id: UUID) -> JobItem:
        return self._load_item(item_id).to_dto()

    def get_item_by_row(self, job_id: UUID, source_row_number: int) -> JobItem:
        model = self._session.execute(
            select(JobItemModel).where(
                JobItemModel.job_id == job_id,
                JobItemModel.source_row_number == source_row_number,
            )
        ).scalar_one_or_none()
        if model is None:
            raise ItemNotFoundError(f"{job_id}#row{source_row_number}")
        return model.to_dto()

    def get_items(self, job_id: UUID) -> list[JobItem]:
        stmt = (
            select(JobItemModel)
            .where(JobItemModel.job_id == job_id)
            .order_by(JobItemModel.source_row_number)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def get_pending_items(
        self,
        job_id: UUID,
        limit: int | None = None,
        after_row: int | None = None,
    ) -> list[JobItem]:
        """Items still owed an attempt, in source-row order.

        PENDING items, plus FAILED_RETRYABLE items with retry budget left.
        ``after_row`` restricts to rows past the cursor.
        """
        stmt = (
            select(JobItemModel)
            .where(
                JobItemModel.job_id == job_id,
                or_(
                    JobItemModel.status == ItemStatus.PENDING.value,
                    and_(
                        JobItemModel.status == ItemStatus.FAILED_RETRYABLE.value,
                        JobItemModel.retry_count < JobItemModel.max_retries,
                    ),
                ),
            )
            .order_by(JobItemModel.source_row_number)
        )
        if after_row is not None:
            stmt = stmt.where(JobItemModel.source_row_number > after_row)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def get_failed_items(
        self, job_id: UUID, status: ItemStatus | None = None,
    ) -> list[JobItem]:
        """Failed items of a job, for inspection without re-running it."""
        statuses = (
            (status.value,)
            if status is not None
            else (ItemStatus.FAILED_RETRYABLE.value, ItemStatus.FAILED_PERMANENT.value)
        )
        stmt = (
            select(JobItemModel)
            .where(JobItemModel.job_id == job_id, JobItemModel.status.in_(statuses))
            .order_by(JobItemModel.source_row_number)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def count_items_by_status(self, job_id: UUID) -> dict[ItemStatus, int]:
        rows = self._session.execute(
            select(JobItemModel.status, func.count())
            .where(JobItemModel.job_id == job_id)
            .group_by(JobItemModel.status)
        ).all()
        counts = {status: 0 for status in ItemStatus}
        for status, count in rows:
            counts[ItemStatus(status)] = count
        return counts

    def last_attempted_row(self, job_id: UUID) -> int:
        """Highest source row that has left PENDING; 0 if none has."""
        row = self._session.execute(
            select(func.max(JobItemModel.source_row_number)).where(
                JobItemModel.job_id == job_id,
                JobItemModel.status != ItemStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        return row or 0

    def _transition_item(self, item: JobItemModel, new_status: ItemStatus) -> ItemStatus:
        current = ItemStatus(item.status)
        if new_status not in ITEM_TRANSITIONS[current]:
            raise InvalidItemTransitionError(item.id, current.value, new_status.value)
        item.status = new_status.value
        return current

    def mark_processing(self, item_id: UUID) -> JobItem:
        item = self._load_item(item_id)
        self._transition_item(item, ItemStatus.PROCESSING)
        now = self._clock.now()
        if item.first_attempted_at is None:
            item.first_attempted_at = now
        item.last_attempted_at = now
        self._session.flush()
        return item.to_dto()

    def mark_success(self, item_id: UUID) -> JobItem:
        item = self._load_item(item_id)
        self._transition_item(item, ItemStatus.SUCCESS)
        item.succeeded_at = self._clock.now()
        item.last_error_type = None
        item.last_error_message = None
        self._session.flush()
        return item.to_dto()

    def mark_skipped(self, item_id: UUID, reason: str | None = None) -> JobItem:
        item = self._load_item(item_id)
        self._transition_item(item, ItemStatus.SKIPPED)
        item.last_error_message = reason
        self._session.flush()
        return item.to_dto()

    def mark_failed(self, item_id: UUID, error: BaseException) -> RetryDecision:
        """Classify ``error`` and record the resulting failure status."""
        item = self._load_item(item_id)
        decision = retry_policy.decide(error, item.retry_count, item.max_retries)
        return self.apply_decision(item_id, decision)

    def apply_decision(self, item_id: UUID, decision: RetryDecision) -> RetryDecision:
        item = self._load_item(item_id)
        previous = self._transition_item(item, decision.status)
        item.retry_count = decision.retry_count
        item.last_error_type = decision.error_type
        item.last_error_message = decision.error_message
        self._session.flush()

        logger.info(
            "item_failed",
            extra={
                "job_id": str(item.job_id),
                "item_id": str(item_id),
                "row": item.source_row_number,
                "from_status": previous.value,
                "status": decision.status.value,
                "failure_class": decision.failure_class.value,
                "retry_count": decision.retry_count,
                "max_retries": item.max_retries,
                "error_type": decision.error_type,
            },
        )
        return decision

    def reset_retryable_items(self, job_id: UUID) -> int:
        """Move FAILED_RETRYABLE items with budget left back to PENDING."""
        items = self._session.execute(
            select(JobItemModel).where(
                JobItemModel.job_id == job_id,
                JobItemModel.status == ItemStatus.FAILED_RETRYABLE.value,
                JobItemModel.retry_count < JobItemModel.max_retries,
            )
        ).scalars().all()
        for item in items:
            self._transition_item(item, ItemStatus.PENDING)
        self._session.flush()
        logger.info(
            "retryable_items_reset",
            extra={"job_id": str(job_id), "count": len(items)},
        )
        return len(items)

    def recover_interrupted_items(self, job_id: UUID) -> int:
        """Return items left PROCESSING by a crashed run to the retry pool.

        The interrupted attempt does not consume retry budget.
        """
        items = self._session.execute(
            select(JobItemModel).where(
                JobItemModel.job_id == job_id,
                JobItemModel.status == ItemStatus.PROCESSING.value,
            )
        ).scalars().all()
        for item in items:
            self._transition_item(item, ItemStatus.FAILED_RETRYABLE)
            item.last_error_type = "INTERRUPTED"
            item.last_error_message = "Processing was interrupted before the item finished"
        self._session.flush()
        if items:
            logger.warning(
                "interrupted_items_recovered",
                extra={"job_id": str(job_id), "count": len(items)},
            )
        return len(items)
