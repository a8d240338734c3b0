"""
Pure domain types for catalog ingestion.  ZERO I/O.

Operations are transient: the row transformer emits them and the upsert
executor consumes them in the same call.  They are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


class OperationType(str, Enum):
    """What the executor does with an operation, in dependency order."""

    UPSERT_PRODUCT = "upsert_product"
    UPSERT_ITEM = "upsert_item"
    UPSERT_PRODUCT_EXTENDED = "upsert_product_extended"
    UPSERT_PRODUCT_CONTENT = "upsert_product_content"
    SYNC_ITEM_COLORS = "sync_item_colors"
    SYNC_PRODUCT_VENDORS = "sync_product_vendors"
    SYNC_PRODUCT_ATTRIBUTES = "sync_product_attributes"


class ContentSection(str, Enum):
    FRONT = "front"
    BACK = "back"
    ABRASION = "abrasion"
    FIRECODES = "firecodes"


class AttributeKind(str, Enum):
    FINISH = "finish"
    CLEANING = "cleaning"
    ORIGIN = "origin"
    USE = "use"


class FieldAccess(str, Enum):
    """Whether a source field could be read, and if so whether it had data."""

    HAS_DATA = "has_data"
    EMPTY_BUT_ACCESSIBLE = "src_empty_data"
    QUERY_FAILED = "query_failed"


class ExecutionAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SYNCED = "synced"
    FAILED = "failed"


# Context keys the executor threads from parent to dependent operations
PRODUCT_ID = "product_id"
ITEM_ID = "item_id"


@dataclass(frozen=True)
class Operation:
    """One upsert or relationship reconciliation against one target table.

    ``key`` holds the natural-key fields known at transform time;
    ``requires`` names context ids (``product_id``/``item_id``) that an
    earlier operation in the same list must have produced.
    """

    type: OperationType
    target: str
    payload: Mapping[str, Any]
    key: Mapping[str, Any] = field(default_factory=dict)
    requires: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransformResult:
    row_number: int
    operations: tuple[Operation, ...] = ()
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    error_code: str | None = None
    retryable: bool = False
    field_access: Mapping[str, FieldAccess] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class OperationResult:
    index: int
    operation_type: OperationType
    target: str
    success: bool
    action: ExecutionAction
    entity_id: UUID | None = None
    changed_fields: tuple[str, ...] = ()
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class ExecutionResult:
    successful: int
    failed: int
    results: tuple[OperationResult, ...] = ()

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0

    @property
    def inserted(self) -> int:
        return sum(1 for r in self.results if r.action == ExecutionAction.INSERTED)

    @property
    def updated(self) -> int:
        return sum(1 for r in self.results if r.action == ExecutionAction.UPDATED)

    @property
    def failures(self) -> tuple[OperationResult, ...]:
        return tuple(r for r in self.results if not r.success)


@dataclass(frozen=True)
class FixGuidanceStep:
    step: int
    title: str
    description: str
    fields: tuple[str, ...]


@dataclass(frozen=True)
class ValidationSummary:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    missing_required_fields: int = 0
    data_type_errors: int = 0
    duplicate_codes: int = 0


@dataclass(frozen=True)
class CsvValidationResult:
    """Whole-file pre-flight validation outcome."""

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    summary: ValidationSummary = field(default_factory=ValidationSummary)
    fix_guidance: tuple[FixGuidanceStep, ...] = ()
    row_errors: Mapping[int, tuple[str, ...]] = field(default_factory=dict)
