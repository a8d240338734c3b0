"""
Module: catalog_kernel.db.rows
Responsibility: Data access boundary.  Every raw query result that feeds the
    dequeuer or the executor passes through ``normalize_rows`` so callers only
    ever see plain ``dict`` records keyed by column name.

Invariants enforced:
    - A tuple-shaped result (e.g. a ``(rows, metadata)`` pair returned by a
      driver wrapper) is rejected, never silently iterated as if it were rows.
    - Each record exposes every field the caller declares as required.

Failure modes:
    - DataAccessContractError on any shape other than a sequence of named rows.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.engine import Result, Row

from catalog_kernel.exceptions import DataAccessContractError


def _record_from(row: Any, index: int, source: str) -> dict[str, Any]:
    if isinstance(row, Mapping):
        return dict(row)
    if isinstance(row, Row):
        return dict(row._mapping)
    raise DataAccessContractError(
        source,
        f"row {index} is {type(row).__name__}; expected a named record",
    )


def normalize_rows(
    result: Result | Iterable[Any],
    source: str,
    required_fields: Iterable[str] = (),
) -> list[dict[str, Any]]:
    """Normalize a query result into a list of plain dict records.

    Args:
        result: A SQLAlchemy ``Result`` or a list of mappings / named rows.
        source: Name of the calling component, used in error messages.
        required_fields: Column names every record must carry.

    Raises:
        DataAccessContractError: if the result is tuple-shaped, is a single
            mapping, or contains a record that is positional or incomplete.
    """
    if isinstance(result, Result):
        records = [dict(m) for m in result.mappings()]
    elif isinstance(result, tuple):
        raise DataAccessContractError(
            source,
            f"got a tuple of length {len(result)}; expected a list of rows, "
            f"not a (rows, metadata) pair",
        )
    elif isinstance(result, (Mapping, str, bytes)):
        raise DataAccessContractError(
            source, f"got a single {type(result).__name__}; expected a list of rows"
        )
    else:
        records = [_record_from(r, i, source) for i, r in enumerate(result)]

    required = tuple(required_fields)
    for i, record in enumerate(records):
        missing = [f for f in required if f not in record]
        if missing:
            raise DataAccessContractError(
                source, f"row {i} is missing fields {missing}"
            )
    return records
