"""Tests for job and item persistence (catalog_jobs/services/job_store.py)."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from catalog_jobs.domain.types import ItemStatus, JobKind, JobStatus, NewItem
from catalog_jobs.models.job import JobItemModel
from catalog_kernel.exceptions import (
    InvalidItemTransitionError,
    InvalidJobTransitionError,
    ItemNotFoundError,
    JobNotFoundError,
    MissingRequiredFieldsError,
    StorageTimeoutError,
)


def _items(count: int) -> list[NewItem]:
    return [
        NewItem(source_row_number=n, source_code=f"1000-{n:04d}", raw_data={"row": n})
        for n in range(1, count + 1)
    ]


@pytest.fixture
def job(job_store):
    return job_store.create_job(JobKind.IMPORT, _items(3), source_filename="catalog.csv")


class TestCreateJob:
    def test_pending_with_items(self, job_store, job):
        assert job.status == JobStatus.PENDING
        assert job.kind == JobKind.IMPORT
        assert job.total_items == 3
        assert job.processed_items == 0
        assert job.job_uuid is not None
        items = job_store.get_items(job.job_id)
        assert [i.source_row_number for i in items] == [1, 2, 3]
        assert all(i.status == ItemStatus.PENDING for i in items)
        assert items[0].raw_data == {"row": 1}
        assert items[0].max_retries == 3

    def test_created_by_and_lookup_by_uuid(self, job_store):
        actor = uuid4()
        job = job_store.create_job(JobKind.SYNC, [], created_by=actor)
        found = job_store.get_job_by_uuid(job.job_uuid)
        assert found.job_id == job.job_id
        assert found.created_by == actor
        assert found.total_items == 0

    def test_unknown_job(self, job_store):
        with pytest.raises(JobNotFoundError):
            job_store.get_job(uuid4())
        with pytest.raises(JobNotFoundError):
            job_store.get_job_by_uuid(uuid4())

    def test_list_jobs_filters(self, job_store, job):
        job_store.create_job(JobKind.SYNC, _items(1))
        assert len(job_store.list_jobs()) == 2
        assert [j.job_id for j in job_store.list_jobs(kind=JobKind.IMPORT)] == [job.job_id]
        assert len(job_store.list_jobs(status=JobStatus.COMPLETED)) == 0


class TestJobTransitions:
    def test_lifecycle_stamps(self, job_store, job, deterministic_clock):
        started = job_store.transition_job(job.job_id, JobStatus.PROCESSING)
        assert started.started_at is not None
        assert started.completed_at is None

        job_store.transition_job(job.job_id, JobStatus.PAUSED)
        job_store.transition_job(job.job_id, JobStatus.PROCESSING)
        done = job_store.transition_job(job.job_id, JobStatus.COMPLETED)
        assert done.status == JobStatus.COMPLETED
        assert done.completed_at is not None

    @pytest.mark.parametrize(
        "path",
        [
            (JobStatus.PAUSED,),
            (JobStatus.COMPLETED,),
            (JobStatus.PROCESSING, JobStatus.PENDING),
            (JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.PROCESSING),
            (JobStatus.CANCELLED, JobStatus.PROCESSING),
        ],
    )
    def test_illegal_transitions(self, job_store, job, path):
        with pytest.raises(InvalidJobTransitionError):
            for status in path:
                job_store.transition_job(job.job_id, status)

    def test_record_progress(self, job_store, job):
        updated = job_store.record_progress(job.job_id, 2, 1)
        assert updated.processed_items == 3

    def test_record_progress_cannot_exceed_total(self, job_store, job):
        with pytest.raises(ValueError, match="exceeds total_items"):
            job_store.record_progress(job.job_id, 3, 1)

    def test_finalize(self, job_store, job):
        job_store.transition_job(job.job_id, JobStatus.PROCESSING)
        final = job_store.finalize_job(job.job_id, JobStatus.COMPLETED, 2, 1, error_summary="1 item(s) failed")
        assert final.status == JobStatus.COMPLETED
        assert final.succeeded_items == 2
        assert final.failed_items == 1
        assert final.error_summary == "1 item(s) failed"

    def test_finalize_requires_terminal(self, job_store, job):
        with pytest.raises(ValueError):
            job_store.finalize_job(job.job_id, JobStatus.PAUSED, 0, 0)

    def test_delete_cascades_to_items(self, session, job_store, job):
        job_store.delete_job(job.job_id)
        assert session.execute(select(JobItemModel)).scalars().all() == []


class TestItems:
    def test_add_items_grows_total(self, job_store, job):
        added = job_store.add_items(job.job_id, [NewItem(source_row_number=4)])
        assert added == 1
        assert job_store.get_job(job.job_id).total_items == 4

    def test_get_item_by_row(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 2)
        assert item.source_code == "1000-0002"
        with pytest.raises(ItemNotFoundError):
            job_store.get_item_by_row(job.job_id, 99)

    def test_success_path_stamps(self, job_store, job, deterministic_clock):
        item = job_store.get_item_by_row(job.job_id, 1)
        processing = job_store.mark_processing(item.item_id)
        assert processing.status == ItemStatus.PROCESSING
        assert processing.first_attempted_at == deterministic_clock.now()

        deterministic_clock.advance(5)
        done = job_store.mark_success(item.item_id)
        assert done.status == ItemStatus.SUCCESS
        assert done.succeeded_at == deterministic_clock.now()

    def test_success_is_final(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        job_store.mark_processing(item.item_id)
        job_store.mark_success(item.item_id)
        with pytest.raises(InvalidItemTransitionError):
            job_store.mark_processing(item.item_id)

    def test_mark_skipped(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        skipped = job_store.mark_skipped(item.item_id, "already synced")
        assert skipped.status == ItemStatus.SKIPPED
        assert skipped.last_error_message == "already synced"

    def test_retryable_failure(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        job_store.mark_processing(item.item_id)
        decision = job_store.mark_failed(item.item_id, StorageTimeoutError("UPSERT_ITEM", 5))

        stored = job_store.get_item(item.item_id)
        assert decision.will_retry
        assert stored.status == ItemStatus.FAILED_RETRYABLE
        assert stored.retry_count == 1
        assert stored.last_error_type == "STORAGE_TIMEOUT"

    def test_permanent_failure(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        job_store.mark_processing(item.item_id)
        job_store.mark_failed(item.item_id, MissingRequiredFieldsError(1, ["Color"]))

        stored = job_store.get_item(item.item_id)
        assert stored.status == ItemStatus.FAILED_PERMANENT
        assert stored.retry_count == 0
        assert job_store.get_failed_items(job.job_id) == [stored]
        assert job_store.get_pending_items(job.job_id) == job_store.get_items(job.job_id)[1:]

    def test_retry_cap_makes_item_permanent(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        for _ in range(3):
            job_store.mark_processing(item.item_id)
            job_store.mark_failed(item.item_id, StorageTimeoutError("UPSERT_ITEM", 5))

        stored = job_store.get_item(item.item_id)
        assert stored.retry_count == 3
        assert stored.status == ItemStatus.FAILED_PERMANENT
        with pytest.raises(InvalidItemTransitionError):
            job_store.mark_processing(item.item_id)


class TestPendingAndCursor:
    def test_pending_in_row_order_with_cursor(self, job_store, job):
        pending = job_store.get_pending_items(job.job_id, limit=2)
        assert [i.source_row_number for i in pending] == [1, 2]
        after = job_store.get_pending_items(job.job_id, after_row=2)
        assert [i.source_row_number for i in after] == [3]

    def test_retryable_items_stay_pending(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 2)
        job_store.mark_processing(item.item_id)
        job_store.mark_failed(item.item_id, StorageTimeoutError("UPSERT_ITEM", 5))
        assert [i.source_row_number for i in job_store.get_pending_items(job.job_id)] == [1, 2, 3]

    def test_last_attempted_row(self, job_store, job):
        assert job_store.last_attempted_row(job.job_id) == 0
        job_store.mark_processing(job_store.get_item_by_row(job.job_id, 2).item_id)
        assert job_store.last_attempted_row(job.job_id) == 2

    def test_count_items_by_status(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        job_store.mark_processing(item.item_id)
        job_store.mark_success(item.item_id)
        counts = job_store.count_items_by_status(job.job_id)
        assert counts[ItemStatus.SUCCESS] == 1
        assert counts[ItemStatus.PENDING] == 2
        assert counts[ItemStatus.FAILED_PERMANENT] == 0

    def test_reset_retryable_items(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 1)
        job_store.mark_processing(item.item_id)
        job_store.mark_failed(item.item_id, StorageTimeoutError("UPSERT_ITEM", 5))
        assert job_store.reset_retryable_items(job.job_id) == 1
        assert job_store.get_item(item.item_id).status == ItemStatus.PENDING
        assert job_store.get_item(item.item_id).retry_count == 1

    def test_recover_interrupted_items(self, job_store, job):
        item = job_store.get_item_by_row(job.job_id, 3)
        job_store.mark_processing(item.item_id)
        assert job_store.recover_interrupted_items(job.job_id) == 1

        stored = job_store.get_item(item.item_id)
        assert stored.status == ItemStatus.FAILED_RETRYABLE
        assert stored.retry_count == 0
        assert stored.last_error_type == "INTERRUPTED"
