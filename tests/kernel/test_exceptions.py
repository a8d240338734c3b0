"""Tests for the typed exception hierarchy (catalog_kernel/exceptions.py)."""

import pytest

from catalog_kernel.exceptions import (
    CatalogSyncError,
    ConfigurationError,
    FieldUnreadableError,
    InvalidEventPayloadError,
    InvalidJobTransitionError,
    JobNotTrackedError,
    MissingParentError,
    MissingRequiredFieldsError,
    OperationFailedError,
    RowRejectedError,
    StorageTimeoutError,
)


class TestExceptionCodes:
    @pytest.mark.parametrize(
        "exc, code",
        [
            (JobNotTrackedError("j1"), "JOB_NOT_TRACKED"),
            (InvalidJobTransitionError("j1", "paused", "paused"), "INVALID_JOB_TRANSITION"),
            (MissingParentError("UPSERT_ITEM", "item", "product_id"), "MISSING_PARENT"),
            (StorageTimeoutError("UPSERT_PRODUCT", 5.0), "STORAGE_TIMEOUT"),
            (MissingRequiredFieldsError(3, ["Color"]), "MISSING_REQUIRED_FIELDS"),
            (InvalidEventPayloadError("e1", "not an object"), "INVALID_EVENT_PAYLOAD"),
            (ConfigurationError("batch_size", "must be positive"), "CONFIGURATION_ERROR"),
        ],
    )
    def test_code(self, exc, code):
        assert isinstance(exc, CatalogSyncError)
        assert exc.code == code

    def test_job_not_tracked_message(self):
        assert str(JobNotTrackedError("abc")) == "Job abc is not being tracked"


class TestRetryable:
    def test_defaults_not_retryable(self):
        assert CatalogSyncError.retryable is False
        assert MissingParentError.retryable is False

    def test_transient_errors_retryable(self):
        assert StorageTimeoutError("UPSERT_ITEM", 1.0).retryable is True
        assert FieldUnreadableError(4, "Color").retryable is True


class TestRootCauseCarriers:
    def test_operation_failed_takes_root_cause_code(self):
        exc = OperationFailedError(
            "Row 5", "UPSERT_ITEM", "STORAGE_TIMEOUT", "timed out", retryable=True,
        )
        assert exc.code == "STORAGE_TIMEOUT"
        assert exc.retryable is True
        assert exc.source_ref == "Row 5"
        assert "UPSERT_ITEM failed: timed out" in str(exc)

    def test_operation_failed_default_code(self):
        exc = OperationFailedError("Row 5", "UPSERT_ITEM", None, "boom")
        assert exc.code == "OPERATION_FAILED"
        assert exc.retryable is False

    def test_row_rejected_keeps_transformer_verdict(self):
        exc = RowRejectedError("Row 2", "FIELD_UNREADABLE", "Color unreadable", retryable=True)
        assert exc.code == "FIELD_UNREADABLE"
        assert exc.retryable is True
        assert str(exc) == "Color unreadable"

    def test_instance_code_does_not_leak_to_class(self):
        RowRejectedError("Row 2", "FIELD_UNREADABLE", "x")
        assert RowRejectedError.code == "ROW_REJECTED"
