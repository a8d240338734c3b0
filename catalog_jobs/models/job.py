"""
ORM models for job and job item persistence.

Contract:
    JobModel and JobItemModel persist job state and per-item attempt history.
    Each has a ``to_dto()`` method; JobItemModel also has ``from_new_item()``.

Architecture: catalog_jobs/models. Imports from catalog_kernel.db.base only.

Invariants enforced:
    - ``job_uuid`` is UNIQUE on JobModel.
    - Items are owned by exactly one job; deleting the job cascades.
    - ``(job_id, source_row_number)`` is UNIQUE: the resume cursor.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from catalog_jobs.domain.types import Job, JobItem, NewItem


class JobModel(TrackedBase):
    """Persistent job record: one import file or one sync run."""

    __tablename__ = "sync_jobs"

    __table_args__ = (
        Index("ix_sync_jobs_status", "status"),
        Index("ix_sync_jobs_kind", "kind"),
        Index("ix_sync_jobs_created_at", "created_at"),
    )

    job_uuid: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True, default=uuid4,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    source_filename: Mapped[str | None] = mapped_column(String(500), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["JobItemModel"]] = relationship(
        "JobItemModel",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="JobItemModel.source_row_number",
    )

    def to_dto(self) -> Job:
        from catalog_jobs.domain.types import Job, JobKind, JobStatus

        return Job(
            job_id=self.id,
            job_uuid=self.job_uuid,
            kind=JobKind(self.kind),
            status=JobStatus(self.status),
            total_items=self.total_items,
            processed_items=self.processed_items,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            created_by=self.created_by_id,
            source_filename=self.source_filename,
            error_summary=self.error_summary,
        )


class JobItemModel(TrackedBase):
    """One row or one queued event within a job, with its attempt history."""

    __tablename__ = "sync_job_items"

    __table_args__ = (
        UniqueConstraint("job_id", "source_row_number", name="uq_sync_job_items_job_row"),
        Index("ix_sync_job_items_job_status", "job_id", "status"),
        Index("ix_sync_job_items_source_code", "source_code"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sync_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    first_attempted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    last_attempted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    succeeded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    job: Mapped["JobModel"] = relationship("JobModel", back_populates="items")

    def to_dto(self) -> JobItem:
        from catalog_jobs.domain.types import ItemStatus, JobItem

        return JobItem(
            item_id=self.id,
            job_id=self.job_id,
            source_code=self.source_code,
            source_row_number=self.source_row_number,
            status=ItemStatus(self.status),
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            last_error_type=self.last_error_type,
            last_error_message=self.last_error_message,
            raw_data=dict(self.raw_data or {}),
            first_attempted_at=self.first_attempted_at,
            last_attempted_at=self.last_attempted_at,
            succeeded_at=self.succeeded_at,
        )

    @classmethod
    def from_new_item(
        cls,
        item: NewItem,
        job_id: UUID,
        max_retries: int,
        created_at: datetime,
    ) -> JobItemModel:
        from catalog_jobs.domain.types import ItemStatus

        return cls(
            job_id=job_id,
            source_code=item.source_code,
            source_row_number=item.source_row_number,
            status=ItemStatus.PENDING.value,
            retry_count=0,
            max_retries=max_retries,
            raw_data=dict(item.raw_data) or None,
            created_at=created_at,
            updated_at=created_at,
        )
