"""
ORM model for the ERP sync queue.

Contract:
    One row per change event produced by the ERP side.  Rows are read through
    ``QueueDequeuer`` only, which normalizes them into ``QueueEntry`` records;
    ``to_dto()`` exists for callers that already hold a mapped instance.

Invariants enforced:
    - ``status`` changes only through ``QueueDequeuer.update_status``.
    - ``(status, priority, created_at)`` is indexed for the dequeue scan.
    - ``next_attempt_at`` holds a re-queued entry back until its backoff ends.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from catalog_kernel.db.base import TrackedBase, UTCDateTime

if TYPE_CHECKING:
    from catalog_jobs.domain.types import QueueEntry


class SyncQueueModel(TrackedBase):
    """Pending/processed ERP change event."""

    __tablename__ = "sync_queue"

    __table_args__ = (
        Index("ix_sync_queue_dequeue", "status", "priority", "created_at"),
        Index("ix_sync_queue_subject", "subject_id", "status"),
    )

    subject_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="NORMAL")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    event_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    def to_dto(self) -> QueueEntry:
        from catalog_jobs.domain.types import QueueEntry, QueuePriority, QueueStatus

        return QueueEntry(
            entry_id=self.id,
            subject_id=self.subject_id,
            event_type=self.event_type,
            priority=QueuePriority(self.priority),
            status=QueueStatus(self.status),
            event_data=self.event_data if self.event_data is not None else {},
            created_at=self.created_at,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            error_message=self.error_message,
            processed_at=self.processed_at,
            next_attempt_at=self.next_attempt_at,
        )
