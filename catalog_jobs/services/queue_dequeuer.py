"""
QueueDequeuer -- priority-ordered access to the ERP sync queue.

Contract:
    - ``get_next_batch(limit)`` returns PENDING entries ordered by priority
      (HIGH, NORMAL, LOW), then ``created_at`` ascending, then id.  Priority
      strictly dominates age.  Entries still inside their retry backoff are
      skipped.
    - Selected rows are locked ``FOR UPDATE SKIP LOCKED`` on PostgreSQL, so
      two workers never claim the same entry.  Other dialects ignore the
      clause.
    - Every row passes through ``normalize_rows`` and comes back as a frozen
      ``QueueEntry``; a tuple-shaped driver result raises
      ``DataAccessContractError`` instead of being read as rows.
    - ``update_status()`` is the only code path that changes ``status``.

Architecture: catalog_jobs/services.  Imports from catalog_jobs.domain,
    catalog_jobs.models and the kernel.

Non-goals:
    - Does NOT interpret ``event_data``.
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from catalog_kernel.db.rows import normalize_rows
from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import InvalidQueueTransitionError, QueueEntryNotFoundError
from catalog_kernel.logging_config import get_logger

from catalog_jobs.domain.retry_policy import DEFAULT_MAX_RETRIES
from catalog_jobs.domain.types import (
    PRIORITY_RANK,
    QUEUE_TRANSITIONS,
    QueueEntry,
    QueuePriority,
    QueueStatus,
    RetryDecision,
)
from catalog_jobs.models.queue import SyncQueueModel

logger = get_logger("jobs.dequeuer")

_ENTRY_FIELDS = (
    "id",
    "subject_id",
    "event_type",
    "priority",
    "status",
    "event_data",
    "created_at",
    "retry_count",
    "max_retries",
    "error_message",
    "processed_at",
    "next_attempt_at",
)


def _priority_rank():
    return case(
        *((SyncQueueModel.priority == p.value, rank) for p, rank in PRIORITY_RANK.items()),
        else_=len(PRIORITY_RANK) + 1,
    )


def entry_from_record(record: Mapping[str, Any]) -> QueueEntry:
    """Build a QueueEntry from a normalized row."""
    event_data = record["event_data"]
    return QueueEntry(
        entry_id=record["id"],
        subject_id=record["subject_id"],
        event_type=record["event_type"],
        priority=QueuePriority(record["priority"]),
        status=QueueStatus(record["status"]),
        event_data=event_data if event_data is not None else {},
        created_at=record["created_at"],
        retry_count=record["retry_count"],
        max_retries=record["max_retries"],
        error_message=record["error_message"],
        processed_at=record["processed_at"],
        next_attempt_at=record["next_attempt_at"],
    )


class QueueDequeuer:
    """Reads and transitions sync queue entries over one session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_next_batch(self, limit: int) -> list[QueueEntry]:
        """Next ``limit`` dispatchable PENDING entries, highest priority first."""
        if limit < 1:
            return []
        now = self._clock.now()
        columns = [getattr(SyncQueueModel, name) for name in _ENTRY_FIELDS]
        stmt = (
            select(*columns)
            .where(
                SyncQueueModel.status == QueueStatus.PENDING.value,
                or_(
                    SyncQueueModel.next_attempt_at.is_(None),
                    SyncQueueModel.next_attempt_at <= now,
                ),
            )
            .order_by(_priority_rank(), SyncQueueModel.created_at, SyncQueueModel.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        records = normalize_rows(
            self._session.execute(stmt),
            source="QueueDequeuer.get_next_batch",
            required_fields=_ENTRY_FIELDS,
        )
        entries = [entry_from_record(r) for r in records]
        logger.debug(
            "queue_batch_selected",
            extra={"limit": limit, "selected": len(entries)},
        )
        return entries

    def _load(self, entry_id: UUID, lock: bool = False) -> SyncQueueModel:
        stmt = select(SyncQueueModel).where(SyncQueueModel.id == entry_id)
        if lock:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise QueueEntryNotFoundError(entry_id)
        return model

    def get_entry(self, entry_id: UUID) -> QueueEntry:
        return self._load(entry_id).to_dto()

    def queue_depth(self) -> dict[QueueStatus, dict[QueuePriority, int]]:
        """Entry counts by status and priority."""
        rows = self._session.execute(
            select(SyncQueueModel.status, SyncQueueModel.priority, func.count())
            .group_by(SyncQueueModel.status, SyncQueueModel.priority)
        ).all()
        depth = {status: {p: 0 for p in QueuePriority} for status in QueueStatus}
        for status, priority, count in rows:
            depth[QueueStatus(status)][QueuePriority(priority)] = count
        return depth

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        subject_id: str,
        event_type: str,
        event_data: Any,
        priority: QueuePriority = QueuePriority.NORMAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> QueueEntry:
        """Add an event, or refresh the subject's entry that is still PENDING.

        A PENDING entry for the same subject takes the new payload and the
        higher of the two priorities.  An entry already PROCESSING is left
        alone and a new entry is queued behind it.
        """
        existing = self._session.execute(
            select(SyncQueueModel)
            .where(
                SyncQueueModel.subject_id == subject_id,
                SyncQueueModel.status == QueueStatus.PENDING.value,
            )
            .order_by(SyncQueueModel.created_at)
            .limit(1)
        ).scalar_one_or_none()

        if existing is not None:
            existing.event_type = event_type
            existing.event_data = event_data
            if priority.rank < QueuePriority(existing.priority).rank:
                existing.priority = priority.value
            self._session.flush()
            logger.info(
                "queue_entry_refreshed",
                extra={
                    "queue_entry_id": str(existing.id),
                    "subject_id": subject_id,
                    "priority": existing.priority,
                },
            )
            return existing.to_dto()

        now = self._clock.now()
        model = SyncQueueModel(
            subject_id=subject_id,
            event_type=event_type,
            priority=priority.value,
            status=QueueStatus.PENDING.value,
            event_data=event_data,
            retry_count=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "queue_entry_created",
            extra={
                "queue_entry_id": str(model.id),
                "subject_id": subject_id,
                "event_type": event_type,
                "priority": priority.value,
            },
        )
        return model.to_dto()

    def update_status(
        self,
        entry_id: UUID,
        new_status: QueueStatus,
        error_message: str | None = None,
    ) -> QueueEntry:
        """Move an entry to ``new_status``.

        Stamps ``processed_at`` on DONE and FAILED.

        Raises:
            QueueEntryNotFoundError: If entry_id does not exist.
            InvalidQueueTransitionError: If the move is not whitelisted.
        """
        model = self._load(entry_id, lock=True)
        current = QueueStatus(model.status)
        if new_status not in QUEUE_TRANSITIONS[current]:
            raise InvalidQueueTransitionError(entry_id, current.value, new_status.value)

        model.status = new_status.value
        if error_message is not None:
            model.error_message = error_message
        if new_status in (QueueStatus.DONE, QueueStatus.FAILED):
            model.processed_at = self._clock.now()
        if new_status != QueueStatus.PENDING:
            model.next_attempt_at = None
        self._session.flush()

        logger.info(
            "queue_status_changed",
            extra={
                "queue_entry_id": str(entry_id),
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        return model.to_dto()

    def record_failure(
        self,
        entry_id: UUID,
        decision: RetryDecision,
        delay_seconds: float = 0.0,
    ) -> QueueEntry:
        """Apply a retry decision to a PROCESSING entry.

        A decision that will retry puts the entry back to PENDING, held for
        ``delay_seconds``; any other decision fails it.
        """
        model = self._load(entry_id, lock=True)
        model.retry_count = decision.retry_count
        if decision.will_retry:
            self.update_status(entry_id, QueueStatus.PENDING, decision.error_message)
            model.next_attempt_at = self._clock.now() + timedelta(seconds=delay_seconds)
            self._session.flush()
            logger.info(
                "queue_entry_requeued",
                extra={
                    "queue_entry_id": str(entry_id),
                    "retry_count": decision.retry_count,
                    "max_retries": model.max_retries,
                    "delay_seconds": delay_seconds,
                },
            )
            return model.to_dto()
        return self.update_status(entry_id, QueueStatus.FAILED, decision.error_message)

    def cancel_pending(self, subject_ids: Iterable[str] | None = None) -> int:
        """Fail PENDING entries (all, or those for ``subject_ids``)."""
        stmt = select(SyncQueueModel.id).where(
            SyncQueueModel.status == QueueStatus.PENDING.value,
        )
        if subject_ids is not None:
            stmt = stmt.where(SyncQueueModel.subject_id.in_(list(subject_ids)))
        ids = list(self._session.execute(stmt).scalars())
        for entry_id in ids:
            self.update_status(entry_id, QueueStatus.FAILED, "Cancelled before processing")
        return len(ids)
