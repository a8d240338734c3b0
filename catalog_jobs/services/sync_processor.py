"""
SyncQueueProcessor -- drains the ERP sync queue as tracked SYNC jobs.

Contract:
    - ``run_once()`` claims the next batch (priority first, then age), moves
      every claimed entry to PROCESSING, and records the batch as one SYNC
      job with an item per entry.
    - Each entry's ``event_data`` goes through the same row transformer and
      upsert executor as a CSV row.  Success marks the entry DONE.
    - A failure is classified once.  The queue entry's own retry budget
      decides between re-queueing it (PENDING, held back by exponential
      backoff) and failing it.
    - Entries claimed but not reached because the job was cancelled go back
      to PENDING untouched.

Failure modes:
    - Storage errors outside the per-operation savepoints propagate.
      Tracking is released and the claimed entries stay PROCESSING until the
      surrounding transaction is rolled back.

Non-goals:
    - Does NOT call ``session.commit()``; ``checkpoint`` makes the run durable.
    - Does NOT poll.  Looping and sleeping belong to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_config.settings import EngineSettings
from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import (
    InvalidEventPayloadError,
    ItemError,
    OperationFailedError,
    QueueError,
    RowRejectedError,
)
from catalog_kernel.logging_config import LogContext, get_logger

from catalog_ingestion.mapping.transformer import RowTransformer, row_from_event
from catalog_ingestion.services.upsert_executor import UpsertExecutor
from catalog_jobs.domain import retry_policy
from catalog_jobs.domain.types import (
    ItemStatus,
    JobItem,
    JobKind,
    JobStatus,
    NewItem,
    ProgressDelta,
    QueueEntry,
    QueueStatus,
    RowResult,
    SyncRunResult,
)
from catalog_jobs.services.job_store import JobStore
from catalog_jobs.services.progress_tracker import ProgressTracker
from catalog_jobs.services.queue_dequeuer import QueueDequeuer

logger = get_logger("jobs.sync_processor")

_FATAL_ERRORS = (SQLAlchemyError, ItemError, QueueError)


class SyncQueueProcessor:
    """Processes queued ERP events through the catalog upsert pipeline."""

    def __init__(
        self,
        session: Session,
        tracker: ProgressTracker,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        transformer: RowTransformer | None = None,
        executor: UpsertExecutor | None = None,
    ):
        self._session = session
        self._tracker = tracker
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._store = JobStore(session, self._clock)
        self._dequeuer = QueueDequeuer(session, self._clock)
        self._transformer = transformer or RowTransformer(warn_on_empty_optional=False)
        self._executor = executor or UpsertExecutor(
            session, self._clock, timeout_seconds=self._settings.statement_timeout_seconds,
        )

    @property
    def dequeuer(self) -> QueueDequeuer:
        return self._dequeuer

    @property
    def store(self) -> JobStore:
        return self._store

    def run_once(
        self,
        limit: int | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> SyncRunResult:
        """Claim and process one batch of queue entries."""
        checkpoint = checkpoint or (lambda: None)
        entries = self._dequeuer.get_next_batch(limit or self._settings.queue_batch_size)
        if not entries:
            return SyncRunResult(job_id=None, claimed=0, done=0, requeued=0, failed=0)

        for entry in entries:
            self._dequeuer.update_status(entry.entry_id, QueueStatus.PROCESSING)

        job = self._store.create_job(
            JobKind.SYNC,
            [
                NewItem(
                    source_row_number=position,
                    source_code=entry.subject_id,
                    raw_data={
                        "queue_entry_id": str(entry.entry_id),
                        "event_type": entry.event_type,
                    },
                )
                for position, entry in enumerate(entries, start=1)
            ],
            max_retries=self._settings.max_retries,
        )
        self._store.transition_job(job.job_id, JobStatus.PROCESSING)
        checkpoint()

        items = self._store.get_items(job.job_id)
        pairs = list(zip(items, entries))
        outcomes: dict[UUID, QueueStatus] = {}

        with LogContext.bind(job_id=str(job.job_id), producer="sync"):
            self._tracker.start(job.job_id, len(pairs), kind=JobKind.SYNC)
            try:
                batch = self._tracker.process_batch(
                    job.job_id,
                    pairs,
                    lambda pair, row: self._process_entry(pair, row, outcomes),
                    row_number_of=lambda pair: pair[0].source_row_number,
                    fatal=_FATAL_ERRORS,
                )
            except Exception as exc:
                if self._tracker.is_tracked(job.job_id):
                    self._tracker.fail(job.job_id, exc)
                raise

            released = self._release_unreached(pairs, outcomes)
            self._finish(job.job_id, cancelled=not self._tracker.is_tracked(job.job_id))
            checkpoint()

        result = SyncRunResult(
            job_id=job.job_id,
            claimed=len(entries),
            done=sum(1 for s in outcomes.values() if s == QueueStatus.DONE),
            requeued=sum(1 for s in outcomes.values() if s == QueueStatus.PENDING),
            failed=sum(1 for s in outcomes.values() if s == QueueStatus.FAILED),
            errors=batch.errors,
        )
        logger.info(
            "sync_run_completed",
            extra={
                "job_id": str(job.job_id),
                "claimed": result.claimed,
                "done": result.done,
                "requeued": result.requeued,
                "failed": result.failed,
                "released": released,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _process_entry(
        self,
        pair: tuple[JobItem, QueueEntry],
        row_number: int,
        outcomes: dict[UUID, QueueStatus],
    ) -> RowResult:
        item, entry = pair
        self._store.mark_processing(item.item_id)

        error: Exception | None = None
        if not isinstance(entry.event_data, Mapping):
            error = InvalidEventPayloadError(
                entry.entry_id, f"expected an object, got {type(entry.event_data).__name__}",
            )
        else:
            result = self._transformer.transform(row_from_event(entry.event_data), row_number)
            if not result.is_valid:
                error = RowRejectedError(
                    f"Queue entry {entry.entry_id}",
                    result.error_code,
                    "; ".join(result.errors),
                    retryable=result.retryable,
                )
            else:
                execution = self._executor.execute(result.operations)
                if not execution.all_succeeded:
                    first = execution.failures[0]
                    error = OperationFailedError(
                        f"Queue entry {entry.entry_id}",
                        first.operation_type.value,
                        first.error_type,
                        first.error or "",
                        retryable=first.retryable,
                    )

        if error is None:
            self._store.mark_success(item.item_id)
            self._dequeuer.update_status(entry.entry_id, QueueStatus.DONE)
            outcomes[entry.entry_id] = QueueStatus.DONE
            return RowResult(success=True)

        self._store.mark_failed(item.item_id, error)
        decision = retry_policy.decide(error, entry.retry_count, entry.max_retries)
        delay = retry_policy.retry_delay(
            decision.retry_count,
            self._settings.retry_delay_base_seconds,
            self._settings.max_retry_delay_seconds,
        )
        updated = self._dequeuer.record_failure(entry.entry_id, decision, delay)
        outcomes[entry.entry_id] = updated.status
        return RowResult(success=False, error=str(error), error_type=decision.error_type)

    def _release_unreached(
        self,
        pairs: list[tuple[JobItem, QueueEntry]],
        outcomes: dict[UUID, QueueStatus],
    ) -> int:
        """Return claimed entries the run never reached to PENDING."""
        released = 0
        for _, entry in pairs:
            if entry.entry_id not in outcomes:
                self._dequeuer.update_status(entry.entry_id, QueueStatus.PENDING)
                released += 1
        return released

    def _finish(self, job_id: UUID, cancelled: bool) -> None:
        counts = self._store.count_items_by_status(job_id)
        succeeded = counts[ItemStatus.SUCCESS] + counts[ItemStatus.SKIPPED]
        failed = counts[ItemStatus.FAILED_RETRYABLE] + counts[ItemStatus.FAILED_PERMANENT]
        if cancelled:
            self._store.record_progress(job_id, succeeded, failed)
            self._store.transition_job(job_id, JobStatus.CANCELLED)
            return
        status = JobStatus.FAILED if succeeded == 0 else JobStatus.COMPLETED
        self._tracker.complete(
            job_id,
            final_stats=ProgressDelta(
                processed_items=succeeded + failed,
                succeeded_items=succeeded,
                failed_items=failed,
            ),
            status=status,
            error_summary=f"{failed} event(s) failed" if failed else None,
            job_store=self._store,
        )
