"""
ProgressTracker -- in-memory per-job progress, listeners and control surface.

Contract:
    - One explicitly constructed instance owns its registry of tracked jobs
      and its listener lists.  There is no module-level instance; callers
      receive the tracker by injection.
    - ``start()`` registers a job; a second ``start()`` for the same job is a
      no-op that keeps the existing state.
    - ``update()`` merges counters, recomputes percent/ETA and notifies every
      listener synchronously.  Unknown jobs log a warning and return None.
    - ``pause()`` / ``resume()`` are strict two-state toggles.
    - ``cancel()`` drops the job and its listeners immediately.
    - ``complete()`` / ``fail()`` persist final counters to a JobStore first,
      then drop the job.
    - ``process_batch()`` runs rows sequentially through a processor and
      accumulates per-row outcomes.

Threading:
    Jobs are independent; a re-entrant lock guards the registry so control
    calls may arrive from a different thread than the one processing rows.
    Processors and listeners always run outside the lock.

Non-goals:
    - Does NOT touch the job store for pause/resume/cancel; the component
      running the job observes those states between batches and persists
      them with its own session.
    - Does NOT pre-empt in-flight rows.  Cancellation is cooperative.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import InvalidJobTransitionError, JobNotTrackedError
from catalog_kernel.logging_config import get_logger

from catalog_jobs.domain.retry_policy import error_type_of
from catalog_jobs.domain.types import (
    BatchOutcome,
    JobKind,
    JobStatistics,
    JobStatus,
    ProgressDelta,
    ProgressListener,
    ProgressSnapshot,
    RowError,
    RowResult,
)

if TYPE_CHECKING:
    from catalog_jobs.domain.types import Job
    from catalog_jobs.services.job_store import JobStore

logger = get_logger("jobs.progress")

DEFAULT_UPDATE_INTERVAL = 10


@dataclass
class _JobState:
    job_id: Hashable
    kind: JobKind
    total_items: int
    start_time: datetime
    last_update: datetime
    status: JobStatus = JobStatus.PROCESSING
    processed_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    current_row: int = 0
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ProgressTracker:
    """Registry of running jobs with listener notification."""

    def __init__(
        self,
        clock: Clock | None = None,
        job_store: JobStore | None = None,
        update_interval: int = DEFAULT_UPDATE_INTERVAL,
    ):
        if update_interval < 1:
            raise ValueError("update_interval must be at least 1")
        self._clock = clock or SystemClock()
        self._job_store = job_store
        self._update_interval = update_interval
        self._jobs: dict[Hashable, _JobState] = {}
        self._listeners: dict[Hashable, list[ProgressListener]] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def start(
        self,
        job_id: Hashable,
        total_items: int,
        kind: JobKind = JobKind.IMPORT,
        metadata: dict[str, Any] | None = None,
        succeeded_items: int = 0,
        failed_items: int = 0,
        current_row: int = 0,
    ) -> ProgressSnapshot:
        """Begin tracking a job.  Returns the existing snapshot if tracked."""
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None:
                logger.debug("job_already_tracked", extra={"job_id": str(job_id)})
                return self._snapshot(existing)

            now = self._clock.now()
            state = _JobState(
                job_id=job_id,
                kind=kind,
                total_items=total_items,
                start_time=now,
                last_update=now,
                succeeded_items=succeeded_items,
                failed_items=failed_items,
                processed_items=succeeded_items + failed_items,
                current_row=current_row,
                metadata=dict(metadata or {}),
            )
            self._jobs[job_id] = state
            self._listeners.setdefault(job_id, [])
            snapshot = self._snapshot(state)

        logger.info(
            "job_tracking_started",
            extra={
                "job_id": str(job_id),
                "kind": kind.value,
                "total_items": total_items,
                "processed_items": state.processed_items,
            },
        )
        return snapshot

    def is_tracked(self, job_id: Hashable) -> bool:
        with self._lock:
            return job_id in self._jobs

    def active_jobs(self) -> tuple[Hashable, ...]:
        with self._lock:
            return tuple(self._jobs)

    def get_progress(self, job_id: Hashable) -> ProgressSnapshot | None:
        with self._lock:
            state = self._jobs.get(job_id)
            return self._snapshot(state) if state is not None else None

    def register(self, job_id: Hashable, listener: ProgressListener) -> None:
        """Attach a listener; it receives a snapshot on every update."""
        with self._lock:
            self._listeners.setdefault(job_id, []).append(listener)

    def unregister(self, job_id: Hashable, listener: ProgressListener) -> bool:
        """Detach a listener.  Returns False if it was not registered."""
        with self._lock:
            listeners = self._listeners.get(job_id, [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def update(
        self, job_id: Hashable, delta: ProgressDelta | None = None,
    ) -> ProgressSnapshot | None:
        """Merge counters and notify listeners.  No-op for unknown jobs."""
        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                logger.warning(
                    "progress_update_for_untracked_job",
                    extra={"job_id": str(job_id)},
                )
                return None
            if delta is not None:
                self._merge(state, delta)
            state.last_update = self._clock.now()
            snapshot = self._snapshot(state)
            listeners = list(self._listeners.get(job_id, ()))

        self._notify(listeners, snapshot)
        return snapshot

    @staticmethod
    def _merge(state: _JobState, delta: ProgressDelta) -> None:
        if delta.total_items is not None:
            state.total_items = delta.total_items
        if delta.succeeded_items is not None:
            state.succeeded_items = delta.succeeded_items
        if delta.failed_items is not None:
            state.failed_items = delta.failed_items
        processed = state.processed_items
        if delta.succeeded_items is not None or delta.failed_items is not None:
            processed = max(processed, state.succeeded_items + state.failed_items)
        if delta.processed_items is not None:
            processed = max(processed, delta.processed_items)
        # processed_items never moves backwards and never passes total_items
        state.processed_items = processed
        ProgressTracker._clamp(state)
        if delta.current_row is not None:
            state.current_row = delta.current_row

    @staticmethod
    def _clamp(state: _JobState) -> None:
        if state.processed_items > state.total_items:
            logger.warning(
                "processed_items_clamped",
                extra={
                    "job_id": str(state.job_id),
                    "processed_items": state.processed_items,
                    "total_items": state.total_items,
                },
            )
            state.processed_items = state.total_items

    def _notify(
        self, listeners: Iterable[ProgressListener], snapshot: ProgressSnapshot,
    ) -> None:
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception(
                    "progress_listener_failed",
                    extra={
                        "job_id": str(snapshot.job_id),
                        "listener": getattr(listener, "__name__", repr(listener)),
                    },
                )

    def _snapshot(self, state: _JobState) -> ProgressSnapshot:
        total = state.total_items
        processed = state.processed_items
        percent = round(processed / total * 100, 2) if total > 0 else 0.0
        eta: float | None = None
        if processed > 0:
            elapsed = (state.last_update - state.start_time).total_seconds()
            eta = elapsed * (total - processed) / processed
        return ProgressSnapshot(
            job_id=state.job_id,
            kind=state.kind,
            status=state.status,
            total_items=total,
            processed_items=processed,
            succeeded_items=state.succeeded_items,
            failed_items=state.failed_items,
            current_row=state.current_row,
            progress_percent=percent,
            estimated_time_remaining=eta,
            start_time=state.start_time,
            last_update=state.last_update,
            paused_at=state.paused_at,
            resumed_at=state.resumed_at,
            metadata=dict(state.metadata),
        )

    # -------------------------------------------------------------------------
    # Control surface
    # -------------------------------------------------------------------------

    def _require(self, job_id: Hashable) -> _JobState:
        state = self._jobs.get(job_id)
        if state is None:
            raise JobNotTrackedError(job_id)
        return state

    def pause(self, job_id: Hashable) -> ProgressSnapshot:
        """
        Raises:
            JobNotTrackedError: If the job is not tracked.
            InvalidJobTransitionError: If the job is already paused.
        """
        with self._lock:
            state = self._require(job_id)
            if state.status != JobStatus.PROCESSING:
                raise InvalidJobTransitionError(
                    job_id, state.status.value, JobStatus.PAUSED.value,
                )
            state.status = JobStatus.PAUSED
            state.paused_at = self._clock.now()
            state.last_update = state.paused_at
            snapshot = self._snapshot(state)
            listeners = list(self._listeners.get(job_id, ()))

        logger.info("job_paused", extra={"job_id": str(job_id)})
        self._notify(listeners, snapshot)
        return snapshot

    def resume(self, job_id: Hashable) -> ProgressSnapshot:
        """
        Raises:
            JobNotTrackedError: If the job is not tracked.
            InvalidJobTransitionError: If the job is not paused.
        """
        with self._lock:
            state = self._require(job_id)
            if state.status != JobStatus.PAUSED:
                raise InvalidJobTransitionError(
                    job_id, state.status.value, JobStatus.PROCESSING.value,
                )
            state.status = JobStatus.PROCESSING
            state.resumed_at = self._clock.now()
            state.last_update = state.resumed_at
            snapshot = self._snapshot(state)
            listeners = list(self._listeners.get(job_id, ()))

        logger.info("job_resumed", extra={"job_id": str(job_id)})
        self._notify(listeners, snapshot)
        return snapshot

    def cancel(self, job_id: Hashable) -> ProgressSnapshot:
        """Stop tracking a job and drop its listeners.

        Rows already handed to a processor run to completion.

        Raises:
            JobNotTrackedError: If the job is not tracked.
        """
        with self._lock:
            state = self._require(job_id)
            state.status = JobStatus.CANCELLED
            state.last_update = self._clock.now()
            snapshot = self._snapshot(state)
            del self._jobs[job_id]
            self._listeners.pop(job_id, None)

        logger.info(
            "job_cancelled",
            extra={"job_id": str(job_id), "processed_items": snapshot.processed_items},
        )
        return snapshot

    def complete(
        self,
        job_id: Hashable,
        final_stats: ProgressDelta | None = None,
        status: JobStatus = JobStatus.COMPLETED,
        error_summary: str | None = None,
        job_store: JobStore | None = None,
    ) -> Job | None:
        """Persist final counters, notify listeners, then stop tracking.

        ``status`` must be terminal.  Store errors propagate and leave the
        job tracked.  Returns the persisted Job, or None when no store is
        available or the job is not tracked.
        """
        if not status.is_terminal:
            raise ValueError(f"complete() needs a terminal status, got {status.value}")

        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                logger.warning(
                    "complete_for_untracked_job",
                    extra={"job_id": str(job_id), "status": status.value},
                )
                return None
            if final_stats is not None:
                self._merge(state, final_stats)
            succeeded = state.succeeded_items
            failed = state.failed_items

        store = job_store or self._job_store
        persisted = None
        if store is not None:
            persisted = store.finalize_job(
                job_id, status, succeeded, failed, error_summary=error_summary,
            )

        with self._lock:
            state = self._jobs.pop(job_id, None)
            listeners = self._listeners.pop(job_id, [])
            if state is None:
                return persisted
            state.status = status
            state.last_update = self._clock.now()
            snapshot = self._snapshot(state)

        self._notify(listeners, snapshot)
        logger.info(
            "job_tracking_completed",
            extra={
                "job_id": str(job_id),
                "status": status.value,
                "succeeded_items": succeeded,
                "failed_items": failed,
                "total_items": snapshot.total_items,
            },
        )
        return persisted

    def fail(
        self,
        job_id: Hashable,
        error: BaseException | str,
        job_store: JobStore | None = None,
    ) -> Job | None:
        """Persist a FAILED job with the error as its summary, then stop tracking."""
        logger.error(
            "job_failed",
            extra={"job_id": str(job_id), "error": str(error)},
        )
        return self.complete(
            job_id,
            status=JobStatus.FAILED,
            error_summary=str(error),
            job_store=job_store,
        )

    # -------------------------------------------------------------------------
    # Batch processing
    # -------------------------------------------------------------------------

    def _advance(
        self, job_id: Hashable, succeeded: int, failed: int, current_row: int,
    ) -> bool:
        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                return False
            state.succeeded_items += succeeded
            state.failed_items += failed
            state.processed_items += succeeded + failed
            self._clamp(state)
            state.current_row = max(state.current_row, current_row)
            return True

    def process_batch(
        self,
        job_id: Hashable,
        rows: Iterable[Any],
        processor: Callable[[Any, int], Any],
        row_number_of: Callable[[Any], int] | None = None,
        fatal: tuple[type[BaseException], ...] = (),
    ) -> BatchOutcome:
        """Run ``processor(row, row_number)`` for each row, in order.

        A processor that raises, or returns ``RowResult(success=False)``,
        marks the row failed; every other return marks it succeeded.  Row
        numbers continue from the job's ``current_row`` unless
        ``row_number_of`` supplies them.  Listeners are updated every
        ``update_interval`` rows and after the last row.  Processing stops
        between rows if the job is cancelled.

        Exceptions matching ``fatal`` are not row failures: they propagate
        after the counters for earlier rows have been recorded.

        Raises:
            JobNotTrackedError: If the job is not tracked.
        """
        rows = list(rows)
        with self._lock:
            base_row = self._require(job_id).current_row

        logger.info(
            "batch_started",
            extra={"job_id": str(job_id), "batch_size": len(rows), "base_row": base_row},
        )

        processed = succeeded = failed = 0
        errors: list[RowError] = []
        stopped_early = False

        for i, row in enumerate(rows):
            if not self.is_tracked(job_id):
                stopped_early = True
                break

            row_number = row_number_of(row) if row_number_of else base_row + i + 1
            ok = True
            try:
                result = processor(row, row_number)
            except fatal:
                raise
            except Exception as exc:
                ok = False
                errors.append(
                    RowError(row=row_number, error=str(exc), data=row, error_type=error_type_of(exc))
                )
                logger.warning(
                    "row_failed",
                    extra={
                        "job_id": str(job_id),
                        "row": row_number,
                        "error": str(exc),
                        "error_type": error_type_of(exc),
                    },
                )
            else:
                if isinstance(result, RowResult) and not result.success:
                    ok = False
                    errors.append(
                        RowError(
                            row=row_number,
                            error=result.error or "rejected",
                            data=row,
                            error_type=result.error_type,
                        )
                    )

            processed += 1
            if ok:
                succeeded += 1
            else:
                failed += 1

            if not self._advance(job_id, int(ok), int(not ok), row_number):
                stopped_early = i < len(rows) - 1
                break

            if (i + 1) % self._update_interval == 0 or i == len(rows) - 1:
                self.update(job_id)

        outcome = BatchOutcome(
            processed=processed,
            succeeded=succeeded,
            failed=failed,
            errors=tuple(errors),
            stopped_early=stopped_early,
        )
        logger.info(
            "batch_completed",
            extra={
                "job_id": str(job_id),
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "stopped_early": stopped_early,
            },
        )
        return outcome

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_statistics(self, job_id: Hashable) -> JobStatistics | None:
        """Derived counts and rates; None for an untracked job."""
        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                return None
            snapshot = self._snapshot(state)
        now = self._clock.now()
        processed = snapshot.processed_items

        def _rate(count: int) -> float:
            return round(count / processed * 100, 2) if processed > 0 else 0.0

        return JobStatistics(
            job_id=job_id,
            status=snapshot.status,
            total_items=snapshot.total_items,
            processed_items=processed,
            succeeded_items=snapshot.succeeded_items,
            failed_items=snapshot.failed_items,
            success_rate=_rate(snapshot.succeeded_items),
            failure_rate=_rate(snapshot.failed_items),
            remaining_items=max(snapshot.total_items - processed, 0),
            duration_seconds=(now - snapshot.start_time).total_seconds(),
            progress_percent=snapshot.progress_percent,
        )
