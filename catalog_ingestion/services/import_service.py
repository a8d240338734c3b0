"""
Import service: validate -> create job -> run batches -> finalize.

Orchestrates the CSV adapter, whole-file validators, row transformer, upsert
executor, job store and progress tracker.  Uses structured logging
(LogContext, get_logger("ingestion.*")).

Run model:
    - Pass 1 walks PENDING items in source-row order, ``batch_size`` at a
      time, through ``ProgressTracker.process_batch``.  The highest row
      already attempted is the cursor, so a resumed job never re-counts a
      row it has already reported.
    - Retry passes then re-attempt FAILED_RETRYABLE items that still have
      retry budget.  Counters are re-read from the item rows after each pass,
      so a retried row moves from failed to succeeded without being counted
      twice.
    - Pause and cancel are observed between rows and batches.  A pause
      persists PAUSED and returns; ``resume_job`` continues from the cursor.
      A cancel persists CANCELLED and returns.
    - A job with items and no successes ends FAILED; otherwise COMPLETED.

Failure modes:
    - Storage errors outside the per-operation savepoints are engine-fatal:
      tracking is released and the error propagates.  The job stays
      PROCESSING in the store and ``run_job`` can resume it later.

Non-goals:
    - Does NOT call ``session.commit()``.  Pass ``checkpoint`` (for example
      ``session.commit``) to make each batch durable.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_config.settings import EngineSettings
from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import (
    InvalidJobTransitionError,
    ItemError,
    JobNotTrackedError,
    OperationFailedError,
    RowRejectedError,
)
from catalog_kernel.logging_config import LogContext, get_logger

from catalog_ingestion.adapters.base import SourceAdapter
from catalog_ingestion.adapters.csv_adapter import CsvSourceAdapter
from catalog_ingestion.domain.field_map import CsvField
from catalog_ingestion.domain.types import CsvValidationResult
from catalog_ingestion.domain.validators import clean, validate_rows
from catalog_ingestion.mapping.transformer import RowTransformer
from catalog_ingestion.services.upsert_executor import UpsertExecutor
from catalog_jobs.domain.types import (
    ItemStatus,
    Job,
    JobItem,
    JobKind,
    JobStatus,
    NewItem,
    ProgressDelta,
    ProgressSnapshot,
    RowResult,
)
from catalog_jobs.services.job_store import JobStore
from catalog_jobs.services.progress_tracker import ProgressTracker

logger = get_logger("ingestion.import_service")

# Errors that mean storage itself is unusable, not that one row is bad
_FATAL_ERRORS = (SQLAlchemyError, ItemError)


@dataclass(frozen=True)
class JobReport:
    """Outcome of a run, or a point-in-time view of a job."""

    job: Job
    item_counts: Mapping[ItemStatus, int] = field(default_factory=dict)
    failed_items: tuple[JobItem, ...] = ()
    progress: ProgressSnapshot | None = None

    @property
    def errors(self) -> tuple[tuple[int, str], ...]:
        return tuple(
            (item.source_row_number, item.last_error_message or "")
            for item in self.failed_items
        )


class ImportService:
    """Runs catalog CSV imports as tracked, resumable jobs."""

    def __init__(
        self,
        session: Session,
        tracker: ProgressTracker,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        transformer: RowTransformer | None = None,
        executor: UpsertExecutor | None = None,
        adapter: SourceAdapter | None = None,
    ):
        self._session = session
        self._tracker = tracker
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._store = JobStore(session, self._clock)
        self._transformer = transformer or RowTransformer()
        self._executor = executor or UpsertExecutor(
            session, self._clock, timeout_seconds=self._settings.statement_timeout_seconds,
        )
        self._adapter = adapter or CsvSourceAdapter()

    @property
    def store(self) -> JobStore:
        return self._store

    # -------------------------------------------------------------------------
    # Load / validate / submit
    # -------------------------------------------------------------------------

    def read_file(self, source_path: Path) -> tuple[list[dict[str, Any]], tuple[str, ...]]:
        """All rows of a CSV file plus its header columns."""
        rows = list(self._adapter.read(Path(source_path), {}))
        columns = self._adapter.inspect(Path(source_path), {}).columns
        return rows, columns

    def validate_file(self, source_path: Path) -> CsvValidationResult:
        rows, columns = self.read_file(source_path)
        result = validate_rows(rows, columns)
        logger.info(
            "file_validated",
            extra={
                "source_filename": Path(source_path).name,
                "is_valid": result.is_valid,
                "total_rows": result.summary.total_rows,
                "invalid_rows": result.summary.invalid_rows,
            },
        )
        return result

    def create_import_job(
        self,
        rows: Sequence[Mapping[str, Any]],
        source_filename: str | None = None,
        created_by: UUID | None = None,
    ) -> Job:
        """Create a PENDING import job with one item per row (1-based rows)."""
        items = [
            NewItem(
                source_row_number=row_number,
                source_code=clean(row.get(CsvField.ITEM_CODE.value)),
                raw_data=dict(row),
            )
            for row_number, row in enumerate(rows, start=1)
        ]
        return self._store.create_job(
            JobKind.IMPORT,
            items,
            created_by=created_by,
            source_filename=source_filename,
            max_retries=self._settings.max_retries,
        )

    def submit_file(
        self,
        source_path: Path,
        created_by: UUID | None = None,
    ) -> tuple[CsvValidationResult, Job | None]:
        """Validate a file and, if it passes, create its import job."""
        source_path = Path(source_path)
        rows, columns = self.read_file(source_path)
        result = validate_rows(rows, columns)
        if not result.is_valid:
            logger.warning(
                "import_rejected",
                extra={
                    "source_filename": source_path.name,
                    "error_count": len(result.errors),
                    "invalid_rows": result.summary.invalid_rows,
                },
            )
            return result, None
        job = self.create_import_job(rows, source_filename=source_path.name, created_by=created_by)
        return result, job

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    def run_job(
        self,
        job_id: UUID,
        checkpoint: Callable[[], None] | None = None,
    ) -> JobReport:
        """Process a PENDING, PAUSED or interrupted PROCESSING job.

        Raises:
            JobNotFoundError: If job_id does not exist.
            InvalidJobTransitionError: If the job is already terminal.
        """
        checkpoint = checkpoint or (lambda: None)
        job = self._store.get_job(job_id)
        if job.status.is_terminal:
            raise InvalidJobTransitionError(
                job_id, job.status.value, JobStatus.PROCESSING.value,
            )

        with LogContext.bind(job_id=str(job_id), producer="ingestion"):
            if job.status == JobStatus.PROCESSING:
                self._store.recover_interrupted_items(job_id)
            else:
                self._store.transition_job(job_id, JobStatus.PROCESSING)
            self._begin_tracking(job)
            checkpoint()

            try:
                stopped = self._run_pending(job_id, checkpoint)
                if stopped is None:
                    stopped = self._run_retries(job_id, checkpoint)
                if stopped is None:
                    stopped = self._check_control(job_id)
            except Exception as exc:
                if self._tracker.is_tracked(job_id):
                    self._tracker.fail(job_id, exc)
                raise

            if stopped is None:
                self._finish(job_id)
            checkpoint()
            return self.get_job_report(job_id)

    def _item_counts(self, job_id: UUID) -> ProgressDelta:
        counts = self._store.count_items_by_status(job_id)
        succeeded = counts[ItemStatus.SUCCESS] + counts[ItemStatus.SKIPPED]
        failed = counts[ItemStatus.FAILED_RETRYABLE] + counts[ItemStatus.FAILED_PERMANENT]
        return ProgressDelta(
            processed_items=succeeded + failed,
            succeeded_items=succeeded,
            failed_items=failed,
        )

    def _begin_tracking(self, job: Job) -> None:
        snapshot = self._tracker.get_progress(job.job_id)
        if snapshot is not None:
            if snapshot.status == JobStatus.PAUSED:
                self._tracker.resume(job.job_id)
            return
        counts = self._item_counts(job.job_id)
        self._tracker.start(
            job.job_id,
            job.total_items,
            kind=job.kind,
            metadata={"source_filename": job.source_filename},
            succeeded_items=counts.succeeded_items,
            failed_items=counts.failed_items,
            current_row=self._store.last_attempted_row(job.job_id),
        )

    def _run_pending(self, job_id: UUID, checkpoint: Callable[[], None]) -> JobStatus | None:
        snapshot = self._tracker.get_progress(job_id)
        cursor = snapshot.current_row if snapshot is not None else 0
        while True:
            stopped = self._check_control(job_id)
            if stopped is not None:
                return stopped
            items = self._store.get_pending_items(
                job_id, limit=self._settings.batch_size, after_row=cursor,
            )
            if not items:
                return None
            self._tracker.process_batch(
                job_id,
                items,
                self._process_item,
                row_number_of=lambda item: item.source_row_number,
                fatal=_FATAL_ERRORS,
            )
            cursor = items[-1].source_row_number
            checkpoint()

    def _run_retries(self, job_id: UUID, checkpoint: Callable[[], None]) -> JobStatus | None:
        for attempt in range(self._settings.max_retries):
            items = self._store.get_pending_items(job_id)
            if not items:
                return None
            logger.info(
                "retry_pass_started",
                extra={"attempt": attempt + 1, "items": len(items)},
            )
            for item in items:
                stopped = self._check_control(job_id)
                if stopped is not None:
                    return stopped
                self._process_item(item, item.source_row_number)
            self._tracker.update(job_id, self._item_counts(job_id))
            checkpoint()
        return None

    def _check_control(self, job_id: UUID) -> JobStatus | None:
        """Persist a pause or cancel requested through the tracker."""
        snapshot = self._tracker.get_progress(job_id)
        if snapshot is not None and snapshot.status != JobStatus.PAUSED:
            return None
        target = JobStatus.CANCELLED if snapshot is None else JobStatus.PAUSED
        counts = self._item_counts(job_id)
        self._store.record_progress(job_id, counts.succeeded_items, counts.failed_items)
        self._store.transition_job(job_id, target)
        logger.info(
            "job_run_stopped",
            extra={
                "status": target.value,
                "processed_items": counts.processed_items,
            },
        )
        return target

    def _finish(self, job_id: UUID) -> Job | None:
        counts = self._item_counts(job_id)
        job = self._store.get_job(job_id)
        status = (
            JobStatus.FAILED
            if job.total_items > 0 and counts.succeeded_items == 0
            else JobStatus.COMPLETED
        )
        summary = f"{counts.failed_items} item(s) failed" if counts.failed_items else None
        return self._tracker.complete(
            job_id,
            final_stats=counts,
            status=status,
            error_summary=summary,
            job_store=self._store,
        )

    def _process_item(self, item: JobItem, row_number: int) -> RowResult:
        """Transform and execute one item; record its outcome on the item row."""
        self._store.mark_processing(item.item_id)

        result = self._transformer.transform(item.raw_data, row_number)
        error: Exception | None = None
        if not result.is_valid:
            error = RowRejectedError(
                f"Row {row_number}",
                result.error_code,
                "; ".join(result.errors),
                retryable=result.retryable,
            )
        else:
            execution = self._executor.execute(result.operations)
            if not execution.all_succeeded:
                first = execution.failures[0]
                error = OperationFailedError(
                    f"Row {row_number}",
                    first.operation_type.value,
                    first.error_type,
                    first.error or "",
                    retryable=first.retryable,
                )

        if error is None:
            self._store.mark_success(item.item_id)
            return RowResult(success=True)

        decision = self._store.mark_failed(item.item_id, error)
        return RowResult(success=False, error=str(error), error_type=decision.error_type)

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def pause_job(self, job_id: UUID) -> ProgressSnapshot:
        """Request a pause; the running loop persists it before the next row.

        Raises:
            JobNotTrackedError: If the job is not running in this tracker.
            InvalidJobTransitionError: If the job is already paused.
        """
        return self._tracker.pause(job_id)

    def resume_job(
        self,
        job_id: UUID,
        checkpoint: Callable[[], None] | None = None,
    ) -> JobReport:
        """Continue a PAUSED job from its cursor.

        Raises:
            InvalidJobTransitionError: If the job is not paused.
        """
        job = self._store.get_job(job_id)
        snapshot = self._tracker.get_progress(job_id)
        paused_here = snapshot is not None and snapshot.status == JobStatus.PAUSED
        if job.status != JobStatus.PAUSED and not paused_here:
            raise InvalidJobTransitionError(
                job_id, job.status.value, JobStatus.PROCESSING.value,
            )
        return self.run_job(job_id, checkpoint)

    def cancel_job(self, job_id: UUID) -> Job:
        """Cancel a job.

        A job running in this tracker is cancelled cooperatively: the run
        loop persists CANCELLED before its next row.  A PROCESSING job that
        no tracker holds is an interrupted run; its in-flight items are
        recovered and the job is cancelled here.

        Raises:
            JobNotFoundError: If job_id does not exist.
            InvalidJobTransitionError: If the job is already terminal.
        """
        job = self._store.get_job(job_id)
        if job.status.is_terminal:
            raise InvalidJobTransitionError(
                job_id, job.status.value, JobStatus.CANCELLED.value,
            )

        try:
            self._tracker.cancel(job_id)
        except JobNotTrackedError:
            tracked = False
        else:
            tracked = True

        if tracked and job.status == JobStatus.PROCESSING:
            return job

        if job.status == JobStatus.PROCESSING:
            recovered = self._store.recover_interrupted_items(job_id)
            counts = self._item_counts(job_id)
            self._store.record_progress(job_id, counts.succeeded_items, counts.failed_items)
            logger.info(
                "interrupted_job_cancelled",
                extra={"job_id": str(job_id), "recovered_items": recovered},
            )
        return self._store.transition_job(job_id, JobStatus.CANCELLED)

    def retry_failed_items(
        self,
        job_id: UUID,
        checkpoint: Callable[[], None] | None = None,
    ) -> JobReport:
        """Return retryable failures of a stopped job to PENDING and run it.

        Raises:
            InvalidJobTransitionError: If the job is already terminal.
        """
        job = self._store.get_job(job_id)
        if job.status.is_terminal:
            raise InvalidJobTransitionError(
                job_id, job.status.value, JobStatus.PROCESSING.value,
            )
        self._store.reset_retryable_items(job_id)
        return self.run_job(job_id, checkpoint)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_job_report(self, job_id: UUID) -> JobReport:
        return JobReport(
            job=self._store.get_job(job_id),
            item_counts=self._store.count_items_by_status(job_id),
            failed_items=tuple(self._store.get_failed_items(job_id)),
            progress=self._tracker.get_progress(job_id),
        )

    def import_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        source_filename: str | None = None,
        created_by: UUID | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> JobReport:
        """Create a job for ``rows`` and run it to the end."""
        job = self.create_import_job(list(rows), source_filename, created_by)
        return self.run_job(job.job_id, checkpoint)
