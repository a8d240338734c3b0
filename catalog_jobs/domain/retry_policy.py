"""
Retry policy -- failure classification and retry budget accounting.

Responsibility:
    ``classify`` decides whether an error is worth re-attempting.
    ``apply_failure`` turns a classified error into the item's next status
    and retry count.  Pure functions, ZERO I/O.

Classification:
    RETRYABLE  -- timeouts, lock contention, deadlocks, lost connections,
                  and any ``CatalogSyncError`` declaring ``retryable = True``.
    PERMANENT  -- validation failures, constraint violations, business-rule
                  rejections, and anything not recognised as transient.

Invariants enforced:
    - ``retry_count`` never exceeds ``max_retries``.
    - An item becomes ``failed_permanent`` exactly when a retryable failure
      brings ``retry_count`` up to ``max_retries``.
    - PERMANENT failures never consume retry budget and are never retried.
"""

from __future__ import annotations

import re

from sqlalchemy import exc as sa_exc

from catalog_kernel.exceptions import CatalogSyncError

from catalog_jobs.domain.types import FailureClass, ItemStatus, RetryDecision

DEFAULT_MAX_RETRIES = 3

# SQLSTATE classes / codes that describe transient server conditions
_RETRYABLE_SQLSTATE_PREFIXES = ("08", "40", "53", "57P")
_RETRYABLE_SQLSTATES = frozenset(
    {
        "55P03",  # lock_not_available
        "57014",  # query_canceled (statement_timeout)
    }
)

_TRANSIENT_MESSAGE = re.compile(
    r"timed? ?out|timeout|deadlock|database is locked|lock wait|"
    r"could not obtain lock|lock not available|connection (refused|reset|closed)|"
    r"server closed the connection|econnreset|econnrefused|etimedout|"
    r"too many connections",
    re.IGNORECASE,
)

_PERMANENT_DB_ERRORS = (
    sa_exc.IntegrityError,
    sa_exc.DataError,
    sa_exc.ProgrammingError,
    sa_exc.NotSupportedError,
)

_TRANSIENT_DB_ERRORS = (
    sa_exc.TimeoutError,  # connection pool exhausted
    sa_exc.DisconnectionError,
)


def _sqlstate(error: BaseException) -> str | None:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code if isinstance(code, str) else None


def classify(error: BaseException) -> FailureClass:
    """Classify an error as RETRYABLE or PERMANENT."""
    if isinstance(error, CatalogSyncError):
        return FailureClass.RETRYABLE if error.retryable else FailureClass.PERMANENT

    if isinstance(error, (TimeoutError, ConnectionError)):
        return FailureClass.RETRYABLE

    if isinstance(error, _TRANSIENT_DB_ERRORS):
        return FailureClass.RETRYABLE

    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return FailureClass.RETRYABLE
        state = _sqlstate(error)
        if state is not None:
            if state in _RETRYABLE_SQLSTATES or state.startswith(
                _RETRYABLE_SQLSTATE_PREFIXES
            ):
                return FailureClass.RETRYABLE
            return FailureClass.PERMANENT
        if isinstance(error, _PERMANENT_DB_ERRORS):
            return FailureClass.PERMANENT
        if isinstance(error, sa_exc.OperationalError) and _TRANSIENT_MESSAGE.search(
            str(error)
        ):
            return FailureClass.RETRYABLE
        return FailureClass.PERMANENT

    if _TRANSIENT_MESSAGE.search(str(error)):
        return FailureClass.RETRYABLE

    return FailureClass.PERMANENT


def error_type_of(error: BaseException) -> str:
    """Short machine-readable label stored as the item's last_error_type."""
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    return type(error).__name__


def apply_failure(
    retry_count: int,
    max_retries: int,
    failure_class: FailureClass,
    error_type: str,
    error_message: str,
) -> RetryDecision:
    """Compute the next item status and retry count after a failure."""
    if failure_class == FailureClass.PERMANENT:
        return RetryDecision(
            failure_class=failure_class,
            status=ItemStatus.FAILED_PERMANENT,
            retry_count=min(retry_count, max_retries),
            error_type=error_type,
            error_message=error_message,
        )

    next_count = min(retry_count + 1, max_retries)
    status = (
        ItemStatus.FAILED_PERMANENT
        if next_count >= max_retries
        else ItemStatus.FAILED_RETRYABLE
    )
    return RetryDecision(
        failure_class=failure_class,
        status=status,
        retry_count=next_count,
        error_type=error_type,
        error_message=error_message,
    )


def decide(
    error: BaseException, retry_count: int, max_retries: int
) -> RetryDecision:
    """Classify ``error`` and apply it to the retry budget in one step."""
    return apply_failure(
        retry_count=retry_count,
        max_retries=max_retries,
        failure_class=classify(error),
        error_type=error_type_of(error),
        error_message=str(error),
    )


def retry_delay(retry_count: int, base_seconds: float, max_seconds: float) -> float:
    """Exponential backoff before re-attempt number ``retry_count`` (1-based)."""
    if retry_count < 1:
        return 0.0
    return min(base_seconds * 2 ** min(retry_count - 1, 32), max_seconds)
