"""Tests for the in-memory progress tracker (catalog_jobs/services/progress_tracker.py)."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from catalog_jobs.domain.types import (
    JobKind,
    JobStatus,
    NewItem,
    ProgressDelta,
    RowResult,
)
from catalog_jobs.services.progress_tracker import ProgressTracker
from catalog_kernel.domain.clock import DeterministicClock
from catalog_kernel.exceptions import InvalidJobTransitionError, JobNotTrackedError


class TestRegistration:
    def test_start_registers(self, tracker):
        snapshot = tracker.start("job-1", 10, metadata={"source_filename": "a.csv"})
        assert tracker.is_tracked("job-1")
        assert snapshot.status == JobStatus.PROCESSING
        assert snapshot.progress_percent == 0.0
        assert snapshot.estimated_time_remaining is None
        assert snapshot.metadata == {"source_filename": "a.csv"}

    def test_second_start_keeps_state(self, tracker):
        tracker.start("job-1", 10)
        tracker.update("job-1", ProgressDelta(processed_items=4, succeeded_items=4))
        again = tracker.start("job-1", 99)
        assert again.total_items == 10
        assert again.processed_items == 4

    def test_start_with_prior_counts(self, tracker):
        snapshot = tracker.start("job-1", 10, succeeded_items=3, failed_items=1, current_row=4)
        assert snapshot.processed_items == 4
        assert snapshot.current_row == 4

    def test_trackers_are_independent(self, deterministic_clock):
        first = ProgressTracker(clock=deterministic_clock)
        second = ProgressTracker(clock=deterministic_clock)
        first.start("job-1", 1)
        assert not second.is_tracked("job-1")
        assert second.active_jobs() == ()

    def test_update_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            ProgressTracker(update_interval=0)


class TestUpdate:
    def test_percent_and_eta(self, tracker, deterministic_clock):
        tracker.start("job-1", 8)
        deterministic_clock.advance(10)
        snapshot = tracker.update("job-1", ProgressDelta(processed_items=2, succeeded_items=2))
        assert snapshot.progress_percent == 25.0
        assert snapshot.estimated_time_remaining == pytest.approx(30.0)

    def test_percent_rounded(self, tracker):
        tracker.start("job-1", 3)
        snapshot = tracker.update("job-1", ProgressDelta(processed_items=1, succeeded_items=1))
        assert snapshot.progress_percent == 33.33

    def test_zero_total(self, tracker):
        tracker.start("job-1", 0)
        assert tracker.update("job-1").progress_percent == 0.0

    def test_untracked_update_is_noop(self, tracker, captured_logs):
        assert tracker.update("ghost", ProgressDelta(processed_items=1)) is None
        assert any(r["message"] == "progress_update_for_untracked_job" for r in captured_logs())

    def test_listeners_receive_snapshot(self, tracker):
        seen = []
        tracker.start("job-1", 2)
        tracker.register("job-1", seen.append)
        tracker.update("job-1", ProgressDelta(processed_items=1, succeeded_items=1))
        assert [s.processed_items for s in seen] == [1]

    def test_failing_listener_isolated(self, tracker, captured_logs):
        seen = []

        def broken(snapshot):
            raise RuntimeError("listener down")

        tracker.start("job-1", 2)
        tracker.register("job-1", broken)
        tracker.register("job-1", seen.append)
        snapshot = tracker.update("job-1", ProgressDelta(processed_items=1, succeeded_items=1))

        assert snapshot.processed_items == 1
        assert len(seen) == 1
        assert any(r["message"] == "progress_listener_failed" for r in captured_logs())

    def test_unregister(self, tracker):
        seen = []
        tracker.start("job-1", 2)
        tracker.register("job-1", seen.append)
        assert tracker.unregister("job-1", seen.append) is True
        assert tracker.unregister("job-1", seen.append) is False
        tracker.update("job-1")
        assert seen == []

    def test_processed_derived_from_counts(self, tracker):
        tracker.start("job-1", 3)
        snapshot = tracker.update("job-1", ProgressDelta(succeeded_items=2, failed_items=1))
        assert snapshot.processed_items == 3
        assert snapshot.progress_percent == 100.0
        assert snapshot.estimated_time_remaining == 0.0

    def test_partial_counts_keep_processed_consistent(self, tracker):
        tracker.start("job-1", 5)
        tracker.update("job-1", ProgressDelta(succeeded_items=2))
        snapshot = tracker.update("job-1", ProgressDelta(failed_items=1))
        assert snapshot.processed_items == 3
        assert snapshot.succeeded_items + snapshot.failed_items == 3

    def test_processed_clamped_to_total(self, tracker, deterministic_clock, captured_logs):
        tracker.start("job-1", 3)
        deterministic_clock.advance(5)
        snapshot = tracker.update("job-1", ProgressDelta(processed_items=10))
        assert snapshot.processed_items == 3
        assert snapshot.progress_percent == 100.0
        assert snapshot.estimated_time_remaining == 0.0
        assert any(r["message"] == "processed_items_clamped" for r in captured_logs())

    def test_batch_longer_than_total_clamped(self, tracker):
        tracker.start("job-1", 2)
        tracker.process_batch("job-1", [1, 2, 3], lambda row, n: None)
        snapshot = tracker.get_progress("job-1")
        assert snapshot.processed_items == 2
        assert snapshot.progress_percent == 100.0

    @given(values=st.lists(st.integers(min_value=0, max_value=100), min_size=1, max_size=30))
    def test_processed_is_monotonic(self, values):
        tracker = ProgressTracker(clock=DeterministicClock())
        tracker.start("job-1", 100)
        previous = 0
        for value in values:
            snapshot = tracker.update("job-1", ProgressDelta(processed_items=value))
            assert snapshot.processed_items >= previous
            previous = snapshot.processed_items


class TestControl:
    def test_pause_resume_sequence(self, tracker):
        observed = []
        tracker.start("job-1", 5)
        tracker.register("job-1", lambda s: observed.append(s.status))
        tracker.update("job-1")
        tracker.pause("job-1")
        tracker.resume("job-1")

        assert observed == [JobStatus.PROCESSING, JobStatus.PAUSED, JobStatus.PROCESSING]
        snapshot = tracker.get_progress("job-1")
        assert snapshot.paused_at is not None
        assert snapshot.resumed_at is not None

    def test_double_pause_rejected(self, tracker):
        tracker.start("job-1", 5)
        tracker.pause("job-1")
        with pytest.raises(InvalidJobTransitionError):
            tracker.pause("job-1")

    def test_resume_while_processing_rejected(self, tracker):
        tracker.start("job-1", 5)
        with pytest.raises(InvalidJobTransitionError):
            tracker.resume("job-1")

    @pytest.mark.parametrize("operation", ["pause", "resume", "cancel"])
    def test_untracked_control_raises(self, tracker, operation):
        with pytest.raises(JobNotTrackedError, match="not being tracked"):
            getattr(tracker, operation)(999)

    def test_cancel_drops_job_and_listeners(self, tracker):
        seen = []
        tracker.start("job-1", 5)
        tracker.register("job-1", seen.append)
        snapshot = tracker.cancel("job-1")

        assert snapshot.status == JobStatus.CANCELLED
        assert not tracker.is_tracked("job-1")
        assert tracker.get_statistics("job-1") is None
        tracker.start("job-1", 5)
        tracker.update("job-1")
        assert seen == []


class TestCompleteAndFail:
    def test_complete_persists_then_drops(self, tracker, job_store):
        job = job_store.create_job(JobKind.IMPORT, [NewItem(source_row_number=n) for n in (1, 2)])
        job_store.transition_job(job.job_id, JobStatus.PROCESSING)
        final_statuses = []
        tracker.start(job.job_id, 2)
        tracker.register(job.job_id, lambda s: final_statuses.append(s.status))

        persisted = tracker.complete(
            job.job_id,
            ProgressDelta(processed_items=2, succeeded_items=2, failed_items=0),
            job_store=job_store,
        )
        assert persisted.status == JobStatus.COMPLETED
        assert persisted.succeeded_items == 2
        assert not tracker.is_tracked(job.job_id)
        assert final_statuses == [JobStatus.COMPLETED]

    def test_complete_untracked_is_noop(self, tracker, captured_logs):
        assert tracker.complete("ghost") is None
        assert any(r["message"] == "complete_for_untracked_job" for r in captured_logs())

    def test_complete_requires_terminal_status(self, tracker):
        tracker.start("job-1", 1)
        with pytest.raises(ValueError):
            tracker.complete("job-1", status=JobStatus.PAUSED)

    def test_fail_records_error_summary(self, tracker, job_store):
        job = job_store.create_job(JobKind.SYNC, [NewItem(source_row_number=1)])
        job_store.transition_job(job.job_id, JobStatus.PROCESSING)
        tracker.start(job.job_id, 1)

        persisted = tracker.fail(job.job_id, RuntimeError("database unavailable"), job_store=job_store)
        assert persisted.status == JobStatus.FAILED
        assert persisted.error_summary == "database unavailable"
        assert not tracker.is_tracked(job.job_id)

    def test_complete_without_store(self, tracker):
        tracker.start("job-1", 1)
        assert tracker.complete("job-1", ProgressDelta(processed_items=1, succeeded_items=1)) is None
        assert not tracker.is_tracked("job-1")


class TestProcessBatch:
    def test_row_two_rejected(self, tracker):
        tracker.start("job-1", 3)

        def processor(row, row_number):
            if row_number == 2:
                raise ValueError("Missing required fields: Color")
            return RowResult(success=True)

        outcome = tracker.process_batch("job-1", ["a", "b", "c"], processor)

        assert outcome.processed == 3
        assert outcome.succeeded == 2
        assert outcome.failed == 1
        assert len(outcome.errors) == 1
        assert outcome.errors[0].row == 2
        assert outcome.errors[0].error == "Missing required fields: Color"
        assert outcome.errors[0].data == "b"
        assert outcome.errors[0].error_type == "ValueError"

    def test_row_result_rejection(self, tracker):
        tracker.start("job-1", 2)
        outcome = tracker.process_batch(
            "job-1", [1, 2], lambda row, n: RowResult(success=row == 1, error="bad row"),
        )
        assert outcome.failed == 1
        assert outcome.errors[0].error == "bad row"

    def test_counters_and_row_numbers_continue(self, tracker):
        tracker.start("job-1", 4)
        tracker.process_batch("job-1", ["a", "b"], lambda row, n: None)
        seen = []
        tracker.process_batch("job-1", ["c", "d"], lambda row, n: seen.append(n))

        snapshot = tracker.get_progress("job-1")
        assert seen == [3, 4]
        assert snapshot.processed_items == 4
        assert snapshot.current_row == 4
        assert snapshot.progress_percent == 100.0

    def test_explicit_row_numbers(self, tracker):
        tracker.start("job-1", 2)
        seen = []
        tracker.process_batch(
            "job-1", [{"n": 7}, {"n": 9}], lambda row, n: seen.append(n), row_number_of=lambda r: r["n"],
        )
        assert seen == [7, 9]
        assert tracker.get_progress("job-1").current_row == 9

    def test_update_interval(self, deterministic_clock):
        tracker = ProgressTracker(clock=deterministic_clock, update_interval=2)
        updates = []
        tracker.start("job-1", 5)
        tracker.register("job-1", lambda s: updates.append(s.processed_items))
        tracker.process_batch("job-1", range(5), lambda row, n: None)
        assert updates == [2, 4, 5]

    def test_untracked_raises(self, tracker):
        with pytest.raises(JobNotTrackedError):
            tracker.process_batch("ghost", [1], lambda row, n: None)

    def test_fatal_errors_propagate(self, tracker):
        tracker.start("job-1", 3)

        def processor(row, n):
            if n == 2:
                raise ConnectionError("database unavailable")

        with pytest.raises(ConnectionError):
            tracker.process_batch("job-1", [1, 2, 3], processor, fatal=(ConnectionError,))
        assert tracker.get_progress("job-1").processed_items == 1

    def test_cancel_mid_batch_stops(self, tracker):
        tracker.start("job-1", 3)
        processed = []

        def processor(row, n):
            processed.append(n)
            if n == 1:
                tracker.cancel("job-1")

        outcome = tracker.process_batch("job-1", [1, 2, 3], processor)
        assert processed == [1]
        assert outcome.stopped_early is True
        assert outcome.processed == 1


class TestStatistics:
    def test_statistics(self, tracker, deterministic_clock):
        tracker.start("job-1", 4)
        tracker.process_batch(
            "job-1", [1, 2, 3], lambda row, n: RowResult(success=row != 3, error="x"),
        )
        deterministic_clock.advance(30)

        stats = tracker.get_statistics("job-1")
        assert stats.total_items == 4
        assert stats.processed_items == 3
        assert stats.succeeded_items == 2
        assert stats.failed_items == 1
        assert stats.success_rate == 66.67
        assert stats.failure_rate == 33.33
        assert stats.remaining_items == 1
        assert stats.duration_seconds == 30.0
        assert stats.progress_percent == 75.0

    def test_untracked_statistics(self, tracker):
        assert tracker.get_statistics("ghost") is None
