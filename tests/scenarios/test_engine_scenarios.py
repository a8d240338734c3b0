"""
End-to-end acceptance scenarios for the job processing engine.

Each test drives the public services the way scripts/run_import.py and
scripts/process_sync_queue.py do, against an in-memory database.
"""

import pytest

from catalog_ingestion.domain.field_map import EXPECTED_COLUMNS
from catalog_ingestion.domain.validators import validate_rows
from catalog_jobs.domain.types import JobStatus, QueuePriority, QueueStatus, RowResult
from catalog_kernel.exceptions import JobNotTrackedError


class TestScenarios:
    def test_a_three_valid_rows_complete(self, import_service, tracker, make_rows):
        job = import_service.create_import_job(make_rows(3))
        snapshots = []
        tracker.register(job.job_id, snapshots.append)

        report = import_service.run_job(job.job_id)

        assert report.job.status == JobStatus.COMPLETED
        assert report.job.succeeded_items == 3
        assert report.job.failed_items == 0
        assert snapshots[-1].progress_percent == 100.0

    def test_b_duplicate_item_code_invalid(self, make_row):
        rows = [make_row(item_code="1354-6543"), make_row(item_code="1354-6543", color="Red")]

        result = validate_rows(rows, EXPECTED_COLUMNS)

        assert result.is_valid is False
        assert any('Duplicate Item Code "1354-6543"' in e for e in result.errors)

    def test_c_pause_resume_sequence(self, tracker):
        observed = []
        tracker.start("job-c", 10)
        tracker.register("job-c", lambda s: observed.append(s.status))

        tracker.pause("job-c")
        tracker.resume("job-c")

        assert observed == [JobStatus.PAUSED, JobStatus.PROCESSING]
        assert tracker.get_progress("job-c").status == JobStatus.PROCESSING

    def test_d_cancel_untracked(self, tracker):
        with pytest.raises(JobNotTrackedError) as exc_info:
            tracker.cancel(999)
        assert "not being tracked" in str(exc_info.value)

    def test_e_row_two_rejected(self, tracker):
        tracker.start("job-e", 3)

        outcome = tracker.process_batch(
            "job-e",
            ["r1", "r2", "r3"],
            lambda row, n: RowResult(success=n != 2, error="Invalid width"),
        )

        assert (outcome.processed, outcome.succeeded, outcome.failed) == (3, 2, 1)
        assert [(e.row, e.error) for e in outcome.errors] == [(2, "Invalid width")]

    def test_queue_high_priority_synced_first(self, sync_processor, deterministic_clock, make_row):
        dequeuer = sync_processor.dequeuer
        low = dequeuer.enqueue("erp-1", "item.updated", make_row(item_code="3000-0001"),
                               priority=QueuePriority.LOW)
        deterministic_clock.advance(5)
        high = dequeuer.enqueue("erp-2", "item.updated", make_row(item_code="3000-0002"),
                                priority=QueuePriority.HIGH)

        first = sync_processor.run_once(limit=1)
        assert dequeuer.get_entry(high.entry_id).status == QueueStatus.DONE
        assert dequeuer.get_entry(low.entry_id).status == QueueStatus.PENDING
        assert first.done == 1

        sync_processor.run_once(limit=1)
        assert dequeuer.get_entry(low.entry_id).status == QueueStatus.DONE
