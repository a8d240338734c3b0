"""
Value parsers and whole-file validators for catalog CSV rows.

Record-level helpers (parse/normalize one value) are shared with the row
transformer.  ``validate_rows`` is the pre-flight check run over a whole file
before a job is created: required fields, field formats and duplicate item
codes, with a row-indexed error list and fix guidance.

Architecture: catalog_ingestion/domain. ZERO I/O.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from catalog_ingestion.domain.field_map import EXPECTED_COLUMNS, REQUIRED_FIELDS, CsvField
from catalog_ingestion.domain.types import (
    CsvValidationResult,
    FieldAccess,
    FixGuidanceStep,
    ValidationSummary,
)

ITEM_CODE_PATTERN = re.compile(r"^\d{4}-\d{4}[A-Za-z]?$")

_YES = frozenset({"Y", "YES"})
_YES_NO = frozenset({"Y", "N", "YES", "NO"})
_REPEAT_VALUES = frozenset({"repeat", "no-repeat", "y", "n"})

# Marker a source may place in a row for a field it failed to read
UNREADABLE = object()


# -----------------------------------------------------------------------------
# Value parsing
# -----------------------------------------------------------------------------


def clean(value: Any) -> str | None:
    """Trimmed string, or None for missing/blank values."""
    if value is None or value is UNREADABLE:
        return None
    text = str(value).strip()
    return text or None


def parse_comma_separated(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        parts = [clean(v) for v in value]
    else:
        text = clean(value)
        parts = [p.strip() for p in text.split(",")] if text else []
    seen: dict[str, None] = {}
    for part in parts:
        if part:
            seen.setdefault(part, None)
    return tuple(seen)


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a measurement; None if absent or unparsable."""
    text = clean(value)
    if text is None:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def transform_yes_no(value: Any) -> str:
    text = clean(value)
    return "Y" if text is not None and text.upper() in _YES else "N"


def transform_repeat(value: Any) -> str:
    text = clean(value)
    return "Y" if text is not None and text.lower() in ("repeat", "y") else "N"


def assess_field(row: Mapping[str, Any], name: str) -> FieldAccess:
    """Distinguish an unreadable field from one that was read and found empty."""
    if name not in row or row[name] is UNREADABLE:
        return FieldAccess.QUERY_FAILED
    value = row[name]
    if value is None:
        return FieldAccess.EMPTY_BUT_ACCESSIBLE
    if isinstance(value, str) and not value.strip():
        return FieldAccess.EMPTY_BUT_ACCESSIBLE
    if isinstance(value, (list, tuple, dict)) and not value:
        return FieldAccess.EMPTY_BUT_ACCESSIBLE
    return FieldAccess.HAS_DATA


# -----------------------------------------------------------------------------
# Field format checks
# -----------------------------------------------------------------------------


def is_valid_item_code(value: str) -> bool:
    return bool(ITEM_CODE_PATTERN.match(value.strip()))


def is_valid_decimal(value: str) -> bool:
    number = parse_decimal(value)
    return number is not None and number >= 0


def is_valid_yes_no(value: str) -> bool:
    return value.strip().upper() in _YES_NO


def is_valid_repeat(value: str) -> bool:
    return value.strip().lower() in _REPEAT_VALUES


FIELD_VALIDATORS: Mapping[CsvField, Callable[[str], bool]] = {
    CsvField.ITEM_CODE: is_valid_item_code,
    CsvField.WIDTH: is_valid_decimal,
    CsvField.VERTICAL_REPEAT: is_valid_decimal,
    CsvField.HORIZONTAL_REPEAT: is_valid_decimal,
    CsvField.PROP_65: is_valid_yes_no,
    CsvField.AB_2998: is_valid_yes_no,
    CsvField.REPEAT: is_valid_repeat,
}

_MISSING_MESSAGES = {
    CsvField.ITEM_CODE: (
        'Missing Item Code - REQUIRED: Provide a unique code in format '
        '####-####<alpha> (e.g., "1354-6543", "7654-8989K")'
    ),
    CsvField.PRODUCT_NAME: 'Missing Product Name - REQUIRED: Provide the product name',
    CsvField.COLOR: (
        'Missing Color - REQUIRED: Provide color name(s), comma-separated '
        'if multiple (e.g., "Ash, Blue")'
    ),
}

_INVALID_HINTS = {
    CsvField.ITEM_CODE: "Must use format ####-####<alpha> (4 digits, dash, 4 digits, optional letter)",
    CsvField.WIDTH: "Must be a non-negative decimal number in inches",
    CsvField.VERTICAL_REPEAT: "Must be a non-negative decimal number in inches",
    CsvField.HORIZONTAL_REPEAT: "Must be a non-negative decimal number in inches",
    CsvField.PROP_65: 'Must be "Y" for Yes or "N" for No',
    CsvField.AB_2998: 'Must be "Y" for Yes or "N" for No',
    CsvField.REPEAT: 'Must be "Repeat", "No-Repeat", "Y", or "N"',
}


def missing_field_message(field: CsvField) -> str:
    return _MISSING_MESSAGES.get(field, f"Missing required field: {field.value}")


def invalid_field_message(field: CsvField, value: str) -> str:
    hint = _INVALID_HINTS.get(field, "Check data format and try again")
    return f'Invalid {field.value} "{value}" - FIX: {hint}'


def duplicate_code_message(code: str, other_rows: Sequence[int]) -> str:
    rows = ", ".join(str(r) for r in other_rows)
    return (
        f'Duplicate Item Code "{code}" - FIX: Each item must have a unique code. '
        f"This code also appears in row(s): {rows}."
    )


# -----------------------------------------------------------------------------
# Header / whole-file validation
# -----------------------------------------------------------------------------


def validate_headers(columns: Iterable[str]) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for a file's header row."""
    present = set(columns)
    errors = [
        f"Missing required column: {f.value}" for f in REQUIRED_FIELDS if f.value not in present
    ]
    unknown = sorted(present - set(EXPECTED_COLUMNS))
    warnings = [f"Unrecognized column ignored: {c}" for c in unknown]
    return errors, warnings


def validate_rows(
    rows: Sequence[Mapping[str, Any]],
    columns: Iterable[str] | None = None,
) -> CsvValidationResult:
    """Validate a whole file.  Row numbers are 1-based data rows."""
    if not rows:
        return CsvValidationResult(
            is_valid=False,
            errors=("CSV file is empty",),
            summary=ValidationSummary(),
        )

    errors: list[str] = []
    warnings: list[str] = []
    if columns is not None:
        header_errors, header_warnings = validate_headers(columns)
        errors.extend(header_errors)
        warnings.extend(header_warnings)

    code_rows: dict[str, list[int]] = defaultdict(list)
    for index, row in enumerate(rows, start=1):
        code = clean(row.get(CsvField.ITEM_CODE.value))
        if code is not None:
            code_rows[code].append(index)

    row_errors: dict[int, tuple[str, ...]] = {}
    valid = invalid = missing_required = type_errors = duplicates = 0

    for index, row in enumerate(rows, start=1):
        problems: list[str] = []

        for field in REQUIRED_FIELDS:
            if clean(row.get(field.value)) is None:
                problems.append(missing_field_message(field))
                missing_required += 1

        for field, check in FIELD_VALIDATORS.items():
            value = clean(row.get(field.value))
            if value is not None and not check(value):
                problems.append(invalid_field_message(field, value))
                type_errors += 1

        code = clean(row.get(CsvField.ITEM_CODE.value))
        if code is not None and len(code_rows[code]) > 1:
            others = [r for r in code_rows[code] if r != index]
            problems.append(duplicate_code_message(code, others))
            duplicates += 1

        if problems:
            invalid += 1
            row_errors[index] = tuple(problems)
            errors.append(f"Row {index}: {'; '.join(problems)}")
        else:
            valid += 1

    if valid == 0:
        warnings.append("No valid rows found - every row has errors that must be fixed")
    if missing_required:
        warnings.append(
            f"{missing_required} missing required value(s) - "
            f"Item Code, Product Name, and Color are mandatory"
        )
    if type_errors:
        warnings.append(
            f"{type_errors} data type error(s) - check numeric fields (Width, VR, HR) "
            f"and compliance fields (Y/N values)"
        )

    summary = ValidationSummary(
        total_rows=len(rows),
        valid_rows=valid,
        invalid_rows=invalid,
        missing_required_fields=missing_required,
        data_type_errors=type_errors,
        duplicate_codes=duplicates,
    )
    is_valid = not errors
    return CsvValidationResult(
        is_valid=is_valid,
        errors=tuple(errors),
        warnings=tuple(warnings),
        summary=summary,
        fix_guidance=() if is_valid else _fix_guidance(summary),
        row_errors=row_errors,
    )


def _fix_guidance(summary: ValidationSummary) -> tuple[FixGuidanceStep, ...]:
    steps: list[FixGuidanceStep] = []
    if summary.missing_required_fields:
        steps.append(
            FixGuidanceStep(
                step=len(steps) + 1,
                title="Fix Missing Required Fields",
                description="All rows must have Item Code, Product Name, and Color",
                fields=tuple(f.value for f in REQUIRED_FIELDS),
            )
        )
    if summary.data_type_errors:
        steps.append(
            FixGuidanceStep(
                step=len(steps) + 1,
                title="Fix Data Type Errors",
                description="Numeric fields need valid numbers; compliance fields use Y/N",
                fields=tuple(f.value for f in FIELD_VALIDATORS),
            )
        )
    if summary.duplicate_codes:
        steps.append(
            FixGuidanceStep(
                step=len(steps) + 1,
                title="Remove Duplicate Item Codes",
                description="Each item code may appear on only one row",
                fields=(CsvField.ITEM_CODE.value,),
            )
        )
    return tuple(steps)
