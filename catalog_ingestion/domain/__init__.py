"""
catalog_ingestion.domain -- Pure types, field map and validators.

ZERO I/O. Imports only from catalog_kernel.exceptions.
"""

from catalog_ingestion.domain.field_map import (
    FIELD_MAP,
    REQUIRED_FIELDS,
    CsvField,
    FieldTarget,
    TargetEntity,
    check_field_map,
)
from catalog_ingestion.domain.types import (
    ExecutionResult,
    Operation,
    OperationResult,
    OperationType,
    TransformResult,
)

__all__ = [
    "FIELD_MAP",
    "REQUIRED_FIELDS",
    "CsvField",
    "ExecutionResult",
    "FieldTarget",
    "Operation",
    "OperationResult",
    "OperationType",
    "TargetEntity",
    "TransformResult",
    "check_field_map",
]
