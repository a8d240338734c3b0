"""
Typed Exception Hierarchy for the Catalog Sync Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The engine decides whether to re-attempt a failed item by looking at the
error that caused it.  Parsing messages for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Every exception declares whether it is RETRYABLE
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        tracker.pause(job_id)
    except JobNotTrackedError as e:
        log.warning("pause_ignored", extra={"job_id": e.job_id, "code": e.code})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CatalogSyncError (base)
    |
    +-- JobError
    |   +-- JobNotFoundError
    |   +-- JobNotTrackedError
    |   +-- InvalidJobTransitionError
    |
    +-- ItemError
    |   +-- ItemNotFoundError
    |   +-- InvalidItemTransitionError
    |
    +-- QueueError
    |   +-- QueueEntryNotFoundError
    |   +-- InvalidQueueTransitionError
    |
    +-- DataAccessContractError
    |
    +-- ExecutionError
    |   +-- MissingParentError
    |   +-- StorageTimeoutError          (retryable)
    |   +-- UnsupportedOperationError
    |   +-- OperationFailedError         (root cause decides)
    |
    +-- TransformError
    |   +-- MissingRequiredFieldsError
    |   +-- FieldUnreadableError         (retryable)
    |   +-- InvalidEventPayloadError
    |   +-- RowRejectedError
    |
    +-- ConfigError
        +-- ConfigurationError
        +-- FieldMapIncompleteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                       | When Raised
------------|----------------------------|---------------------------------------
Job         | JOB_NOT_FOUND              | Job id/uuid doesn't exist in the store
            | JOB_NOT_TRACKED            | Control op on a job not in the tracker
            | INVALID_JOB_TRANSITION     | e.g. pause on an already-paused job
------------|----------------------------|---------------------------------------
Item        | ITEM_NOT_FOUND             | Item id or (job, row) doesn't exist
            | INVALID_ITEM_TRANSITION    | e.g. failed_permanent -> processing
------------|----------------------------|---------------------------------------
Queue       | QUEUE_ENTRY_NOT_FOUND      | Queue entry id doesn't exist
            | INVALID_QUEUE_TRANSITION   | e.g. DONE -> PROCESSING
------------|----------------------------|---------------------------------------
Boundary    | DATA_ACCESS_CONTRACT       | Driver returned tuple-shaped rows
------------|----------------------------|---------------------------------------
Execution   | MISSING_PARENT             | Parent operation failed / absent
            | STORAGE_TIMEOUT            | Statement exceeded caller timeout
            | UNSUPPORTED_OPERATION      | Executor has no handler for the type
            | OPERATION_FAILED           | Row/event had a failed operation
------------|----------------------------|---------------------------------------
Transform   | MISSING_REQUIRED_FIELDS    | Natural-key field missing or empty
            | FIELD_UNREADABLE           | Source field could not be read at all
            | INVALID_EVENT_PAYLOAD      | Queue event_data is not a mapping
            | ROW_REJECTED               | Transformer returned errors, no ops
------------|----------------------------|---------------------------------------
Config      | CONFIGURATION_ERROR        | Bad YAML / env override value
            | FIELD_MAP_INCOMPLETE       | Field map does not cover the schema

===============================================================================
"""

from collections.abc import Iterable


class CatalogSyncError(Exception):
    """
    Base exception for all catalog sync errors.

    All subclasses declare a ``code`` class attribute for machine-readable
    identification and a ``retryable`` class attribute consumed by the
    failure classifier.
    """

    code: str = "CATALOG_SYNC_ERROR"
    retryable: bool = False


# Job-related exceptions


class JobError(CatalogSyncError):
    """Base exception for job lifecycle errors."""

    code: str = "JOB_ERROR"


class JobNotFoundError(JobError):
    """Job with given id was not found in the job store."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: object):
        self.job_id = str(job_id)
        super().__init__(f"Job not found: {job_id}")


class JobNotTrackedError(JobError):
    """A control operation was invoked for a job the tracker does not hold."""

    code: str = "JOB_NOT_TRACKED"

    def __init__(self, job_id: object):
        self.job_id = str(job_id)
        super().__init__(f"Job {job_id} is not being tracked")


class InvalidJobTransitionError(JobError):
    """Requested job status change is not allowed from the current status."""

    code: str = "INVALID_JOB_TRANSITION"

    def __init__(self, job_id: object, current_status: str, requested_status: str):
        self.job_id = str(job_id)
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Job {job_id} cannot move from {current_status} to {requested_status}"
        )


# Item-related exceptions


class ItemError(CatalogSyncError):
    """Base exception for job item errors."""

    code: str = "ITEM_ERROR"


class ItemNotFoundError(ItemError):
    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_ref: object):
        self.item_ref = str(item_ref)
        super().__init__(f"Job item not found: {item_ref}")


class InvalidItemTransitionError(ItemError):
    code: str = "INVALID_ITEM_TRANSITION"

    def __init__(self, item_id: object, current_status: str, requested_status: str):
        self.item_id = str(item_id)
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Item {item_id} cannot move from {current_status} to {requested_status}"
        )


# Queue-related exceptions


class QueueError(CatalogSyncError):
    """Base exception for sync queue errors."""

    code: str = "QUEUE_ERROR"


class QueueEntryNotFoundError(QueueError):
    code: str = "QUEUE_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: object):
        self.entry_id = str(entry_id)
        super().__init__(f"Queue entry not found: {entry_id}")


class InvalidQueueTransitionError(QueueError):
    code: str = "INVALID_QUEUE_TRANSITION"

    def __init__(self, entry_id: object, current_status: str, requested_status: str):
        self.entry_id = str(entry_id)
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Queue entry {entry_id} cannot move from "
            f"{current_status} to {requested_status}"
        )


class DataAccessContractError(CatalogSyncError):
    """A query result reached the boundary in a shape other than named rows.

    Raised when a positional/tuple-shaped result (for example a
    ``(rows, metadata)`` pair) is handed to the row normalizer.
    """

    code: str = "DATA_ACCESS_CONTRACT"

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Data access contract violated in {source}: {detail}")


# Execution exceptions


class ExecutionError(CatalogSyncError):
    """Base exception for storage operation failures."""

    code: str = "EXECUTION_ERROR"


class MissingParentError(ExecutionError):
    """A dependent operation ran without an identifier for its parent entity."""

    code: str = "MISSING_PARENT"

    def __init__(self, operation_type: str, target: str, parent: str):
        self.operation_type = operation_type
        self.target = target
        self.parent = parent
        super().__init__(
            f"{operation_type} on {target} requires {parent}, "
            f"which was not resolved by an earlier operation"
        )


class StorageTimeoutError(ExecutionError):
    """A storage call exceeded the caller-supplied statement timeout."""

    code: str = "STORAGE_TIMEOUT"
    retryable: bool = True

    def __init__(self, operation_type: str, timeout_seconds: float):
        self.operation_type = operation_type
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{operation_type} exceeded statement timeout of {timeout_seconds}s"
        )


class UnsupportedOperationError(ExecutionError):
    code: str = "UNSUPPORTED_OPERATION"

    def __init__(self, operation_type: str, target: str):
        self.operation_type = operation_type
        self.target = target
        super().__init__(f"No handler for {operation_type} on {target}")


class OperationFailedError(ExecutionError):
    """A row or event could not be fully applied to storage.

    Carries the first failed operation's error type and retryability, so the
    failure classifier sees the root cause rather than a dependent
    ``MISSING_PARENT`` further down the list.
    """

    code: str = "OPERATION_FAILED"

    def __init__(
        self,
        source_ref: object,
        operation_type: str,
        error_type: str | None,
        message: str,
        retryable: bool = False,
    ):
        self.source_ref = str(source_ref)
        self.operation_type = operation_type
        if error_type:
            self.code = error_type
        self.retryable = retryable
        super().__init__(f"{source_ref}: {operation_type} failed: {message}")


# Transformation exceptions


class TransformError(CatalogSyncError):
    """Base exception for row/event transformation errors."""

    code: str = "TRANSFORM_ERROR"


class MissingRequiredFieldsError(TransformError):
    code: str = "MISSING_REQUIRED_FIELDS"

    def __init__(self, row_number: int, fields: Iterable[str]):
        self.row_number = row_number
        self.fields = tuple(fields)
        super().__init__(
            f"Row {row_number}: Missing required fields: {', '.join(self.fields)}"
        )


class FieldUnreadableError(TransformError):
    """A required source field could not be read (as opposed to being empty)."""

    code: str = "FIELD_UNREADABLE"
    retryable: bool = True

    def __init__(self, row_number: int, field: str):
        self.row_number = row_number
        self.field = field
        super().__init__(
            f"Row {row_number}: field '{field}' could not be read from the source"
        )


class InvalidEventPayloadError(TransformError):
    code: str = "INVALID_EVENT_PAYLOAD"

    def __init__(self, entry_id: object, detail: str):
        self.entry_id = str(entry_id)
        self.detail = detail
        super().__init__(f"Queue entry {entry_id} has invalid event_data: {detail}")


class RowRejectedError(TransformError):
    """A row or event produced no operations; carries the transformer's verdict."""

    code: str = "ROW_REJECTED"

    def __init__(
        self,
        source_ref: object,
        error_code: str | None,
        message: str,
        retryable: bool = False,
    ):
        self.source_ref = str(source_ref)
        if error_code:
            self.code = error_code
        self.retryable = retryable
        super().__init__(message)


# Configuration exceptions


class ConfigError(CatalogSyncError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class ConfigurationError(ConfigError):
    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration for '{key}': {reason}")


class FieldMapIncompleteError(ConfigError):
    """The static field map does not cover the expected input columns."""

    code: str = "FIELD_MAP_INCOMPLETE"

    def __init__(self, missing: Iterable[str], unexpected: Iterable[str] = ()):
        self.missing = tuple(missing)
        self.unexpected = tuple(unexpected)
        super().__init__(
            f"Field map incomplete: missing={list(self.missing)} "
            f"unexpected={list(self.unexpected)}"
        )
