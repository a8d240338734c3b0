"""Tests for failure classification and retry accounting (catalog_jobs/domain/retry_policy.py)."""

import pytest
from hypothesis import given
from hypothesis import strategies as st
from sqlalchemy import exc as sa_exc

from catalog_jobs.domain import retry_policy
from catalog_jobs.domain.types import FailureClass, ItemStatus
from catalog_kernel.exceptions import (
    FieldUnreadableError,
    MissingParentError,
    MissingRequiredFieldsError,
    StorageTimeoutError,
)


class _PgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def _dbapi(cls, message, pgcode=None):
    return cls("UPDATE items SET ...", {}, _PgError(message, pgcode))


class TestClassify:
    @pytest.mark.parametrize(
        "error",
        [
            StorageTimeoutError("UPSERT_ITEM", 5.0),
            FieldUnreadableError(3, "Color"),
            TimeoutError("read timed out"),
            ConnectionResetError("peer reset"),
            sa_exc.TimeoutError("QueuePool limit reached"),
            _dbapi(sa_exc.OperationalError, "deadlock detected", "40P01"),
            _dbapi(sa_exc.OperationalError, "could not obtain lock", "55P03"),
            _dbapi(sa_exc.OperationalError, "canceling statement", "57014"),
            _dbapi(sa_exc.OperationalError, "connection failure", "08006"),
            _dbapi(sa_exc.OperationalError, "database is locked"),
            RuntimeError("ETIMEDOUT while talking to the ERP"),
        ],
    )
    def test_transient_is_retryable(self, error):
        assert retry_policy.classify(error) == FailureClass.RETRYABLE

    @pytest.mark.parametrize(
        "error",
        [
            MissingRequiredFieldsError(2, ["Color"]),
            MissingParentError("UPSERT_ITEM", "items", "product_id"),
            _dbapi(sa_exc.IntegrityError, "duplicate key value", "23505"),
            _dbapi(sa_exc.IntegrityError, "UNIQUE constraint failed: items.code"),
            _dbapi(sa_exc.DataError, "value too long", "22001"),
            _dbapi(sa_exc.OperationalError, "no such table: items"),
            ValueError("bad width"),
            KeyError("product_id"),
        ],
    )
    def test_input_errors_are_permanent(self, error):
        assert retry_policy.classify(error) == FailureClass.PERMANENT

    def test_error_type_prefers_code(self):
        assert retry_policy.error_type_of(StorageTimeoutError("x", 1)) == "STORAGE_TIMEOUT"
        assert retry_policy.error_type_of(ValueError("x")) == "ValueError"


class TestApplyFailure:
    def test_retryable_increments(self):
        decision = retry_policy.apply_failure(0, 3, FailureClass.RETRYABLE, "STORAGE_TIMEOUT", "t")
        assert decision.status == ItemStatus.FAILED_RETRYABLE
        assert decision.retry_count == 1
        assert decision.will_retry

    def test_cap_reached_becomes_permanent(self):
        decision = retry_policy.apply_failure(2, 3, FailureClass.RETRYABLE, "STORAGE_TIMEOUT", "t")
        assert decision.status == ItemStatus.FAILED_PERMANENT
        assert decision.retry_count == 3
        assert decision.failure_class == FailureClass.RETRYABLE
        assert not decision.will_retry

    def test_permanent_consumes_no_budget(self):
        decision = retry_policy.apply_failure(1, 3, FailureClass.PERMANENT, "MISSING_PARENT", "m")
        assert decision.status == ItemStatus.FAILED_PERMANENT
        assert decision.retry_count == 1

    def test_zero_retries_fails_immediately(self):
        decision = retry_policy.apply_failure(0, 0, FailureClass.RETRYABLE, "STORAGE_TIMEOUT", "t")
        assert decision.status == ItemStatus.FAILED_PERMANENT
        assert decision.retry_count == 0

    def test_decide(self):
        decision = retry_policy.decide(StorageTimeoutError("UPSERT_ITEM", 5.0), 0, 3)
        assert decision.error_type == "STORAGE_TIMEOUT"
        assert "statement timeout of 5.0s" in decision.error_message
        assert decision.will_retry

    @given(
        max_retries=st.integers(min_value=0, max_value=10),
        failures=st.lists(st.sampled_from(list(FailureClass)), min_size=1, max_size=15),
    )
    def test_retry_count_never_exceeds_cap(self, max_retries, failures):
        count = 0
        for failure_class in failures:
            decision = retry_policy.apply_failure(count, max_retries, failure_class, "E", "e")
            assert decision.retry_count <= max_retries
            permanent_by_cap = (
                failure_class == FailureClass.RETRYABLE and decision.retry_count == max_retries
            )
            if permanent_by_cap:
                assert decision.status == ItemStatus.FAILED_PERMANENT
            if decision.status == ItemStatus.FAILED_PERMANENT:
                break
            count = decision.retry_count


class TestRetryDelay:
    @pytest.mark.parametrize(
        "count, expected",
        [(0, 0.0), (1, 2.0), (2, 4.0), (3, 8.0), (10, 60.0), (500, 60.0)],
    )
    def test_exponential_capped(self, count, expected):
        assert retry_policy.retry_delay(count, 2.0, 60.0) == expected
