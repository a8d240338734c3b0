"""
Row transformer: one raw catalog row -> ordered storage operations.

Pure; ZERO I/O.  Driven entirely by the static ``FIELD_MAP``.

Order of emitted operations (dependency order):
    1. upsert product            (natural key: name)
    2. upsert item               (natural key: code; needs product_id)
    3. upsert extended attributes (needs product_id)
    4. upsert content sections   (front, back, abrasion, firecodes)
    5. one sync per relationship (colors, vendors, finish, cleaning,
       origin, use), each carrying the full target set

Rejection is atomic: a row missing a natural-key field yields no operations
and exactly one error.  Numeric fields that fail to parse are dropped with a
warning, not rejected.  Any exception while mapping becomes a row error.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from catalog_kernel.exceptions import FieldUnreadableError, MissingRequiredFieldsError
from catalog_kernel.logging_config import get_logger

from catalog_ingestion.domain.field_map import (
    FIELD_MAP,
    OPTIONAL_WARNING_FIELDS,
    REQUIRED_FIELDS,
    CsvField,
    FieldKind,
    FieldTarget,
    TargetEntity,
    check_field_map,
    fields_for,
)
from catalog_ingestion.domain.types import (
    ITEM_ID,
    PRODUCT_ID,
    FieldAccess,
    Operation,
    OperationType,
    TransformResult,
)
from catalog_ingestion.domain.validators import (
    assess_field,
    clean,
    parse_comma_separated,
    parse_decimal,
    transform_repeat,
    transform_yes_no,
)

logger = get_logger("ingestion.transformer")

PRODUCT_DEFAULTS: Mapping[str, Any] = {"archived": "N", "product_type": "R", "in_master": 1}
ITEM_DEFAULTS: Mapping[str, Any] = {
    "archived": "N",
    "product_type": "R",
    "in_ringset": 0,
    "status_id": 1,
    "stock_status_id": 1,
}

_RELATIONSHIP_OPS = {
    TargetEntity.ITEM_COLORS: (OperationType.SYNC_ITEM_COLORS, ITEM_ID),
    TargetEntity.PRODUCT_VENDORS: (OperationType.SYNC_PRODUCT_VENDORS, PRODUCT_ID),
    TargetEntity.PRODUCT_ATTRIBUTES: (OperationType.SYNC_PRODUCT_ATTRIBUTES, PRODUCT_ID),
}


def display_name(product_name: str, colors: tuple[str, ...]) -> str:
    """Default item display name: ``"<product>: <color>, <color>"``."""
    if not colors:
        return product_name
    return f"{product_name}: {', '.join(colors)}"


def row_from_event(event_data: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten an ERP event payload into a catalog row.

    Keys may be CSV column names (``"Product Name"``) or their snake_case
    field names (``"product_name"``).  Every column is present in the result;
    a key the event did not carry is read as empty, not unreadable.
    """
    row: dict[str, Any] = {}
    for f in CsvField:
        if f.value in event_data:
            row[f.value] = event_data[f.value]
        else:
            row[f.value] = event_data.get(f.name.lower())
    return row


class RowTransformer:
    """Maps catalog rows to operations using a checked static field map."""

    def __init__(
        self,
        field_map: Mapping[CsvField, FieldTarget] = FIELD_MAP,
        warn_on_empty_optional: bool = True,
    ):
        check_field_map(field_map)
        self._field_map = field_map
        self._warn_on_empty_optional = warn_on_empty_optional

    def transform(self, row: Mapping[str, Any], row_number: int) -> TransformResult:
        try:
            result = self._transform(row, row_number)
        except Exception as exc:
            logger.exception(
                "row_transform_failed",
                extra={"row": row_number, "error": str(exc)},
            )
            return TransformResult(
                row_number=row_number,
                errors=(f"Row {row_number}: Transformation error: {exc}",),
                error_code="TRANSFORM_ERROR",
            )

        logger.debug(
            "row_transformed",
            extra={
                "row": row_number,
                "operations": len(result.operations),
                "errors": len(result.errors),
                "warnings": len(result.warnings),
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transform(self, row: Mapping[str, Any], row_number: int) -> TransformResult:
        access = {f.value: assess_field(row, f.value) for f in CsvField}

        unreadable = [f.value for f in REQUIRED_FIELDS if access[f.value] == FieldAccess.QUERY_FAILED]
        if unreadable:
            err = FieldUnreadableError(row_number, ", ".join(unreadable))
            return TransformResult(
                row_number=row_number,
                errors=(str(err),),
                error_code=err.code,
                retryable=err.retryable,
                field_access=access,
            )

        code = clean(row.get(CsvField.ITEM_CODE.value))
        product_name = clean(row.get(CsvField.PRODUCT_NAME.value))
        colors = parse_comma_separated(row.get(CsvField.COLOR.value))
        missing = [
            f.value
            for f, present in zip(REQUIRED_FIELDS, (code, product_name, colors))
            if not present
        ]
        if missing:
            err = MissingRequiredFieldsError(row_number, missing)
            return TransformResult(
                row_number=row_number,
                errors=(str(err),),
                error_code=err.code,
                retryable=err.retryable,
                field_access=access,
            )

        warnings: list[str] = []
        operations: list[Operation] = []

        product = dict(PRODUCT_DEFAULTS)
        product.update(self._columns(TargetEntity.PRODUCT, row, row_number, warnings))
        operations.append(
            Operation(
                type=OperationType.UPSERT_PRODUCT,
                target=TargetEntity.PRODUCT.value,
                payload=product,
                key={"name": product_name},
            )
        )

        item = dict(ITEM_DEFAULTS)
        item.update(self._columns(TargetEntity.ITEM, row, row_number, warnings))
        item.setdefault("display_name", display_name(product_name, colors))
        operations.append(
            Operation(
                type=OperationType.UPSERT_ITEM,
                target=TargetEntity.ITEM.value,
                payload=item,
                key={"code": code},
                requires=(PRODUCT_ID,),
            )
        )

        extended = self._columns(TargetEntity.PRODUCT_EXTENDED, row, row_number, warnings)
        if extended:
            operations.append(
                Operation(
                    type=OperationType.UPSERT_PRODUCT_EXTENDED,
                    target=TargetEntity.PRODUCT_EXTENDED.value,
                    payload=extended,
                    requires=(PRODUCT_ID,),
                )
            )

        for csv_field, target in fields_for(TargetEntity.PRODUCT_CONTENT, self._field_map):
            content = clean(row.get(csv_field.value))
            if content is not None:
                operations.append(
                    Operation(
                        type=OperationType.UPSERT_PRODUCT_CONTENT,
                        target=TargetEntity.PRODUCT_CONTENT.value,
                        payload={"content": content},
                        key={"section": target.qualifier.value},
                        requires=(PRODUCT_ID,),
                    )
                )

        for entity, (op_type, parent) in _RELATIONSHIP_OPS.items():
            for csv_field, target in fields_for(entity, self._field_map):
                values = parse_comma_separated(row.get(csv_field.value))
                if not values:
                    continue
                key = {"kind": target.qualifier.value} if target.qualifier else {}
                operations.append(
                    Operation(
                        type=op_type,
                        target=entity.value,
                        payload={"values": values},
                        key=key,
                        requires=(parent,),
                    )
                )

        if self._warn_on_empty_optional:
            for f in OPTIONAL_WARNING_FIELDS:
                if access[f.value] != FieldAccess.HAS_DATA:
                    state = (
                        "could not be read"
                        if access[f.value] == FieldAccess.QUERY_FAILED
                        else "is empty"
                    )
                    warnings.append(f"Row {row_number}: Optional field '{f.value}' {state}")

        return TransformResult(
            row_number=row_number,
            operations=tuple(operations),
            warnings=tuple(warnings),
            field_access=access,
        )

    def _columns(
        self,
        entity: TargetEntity,
        row: Mapping[str, Any],
        row_number: int,
        warnings: list[str],
    ) -> dict[str, Any]:
        """Column payload for a single-row entity (product/item/extended)."""
        payload: dict[str, Any] = {}
        for csv_field, target in self._field_map.items():
            if target.entity != entity:
                continue
            raw = row.get(csv_field.value)
            text = clean(raw)
            if text is None:
                continue
            if target.kind == FieldKind.DECIMAL:
                number = parse_decimal(text)
                if number is None:
                    warnings.append(
                        f"Row {row_number}: {csv_field.value} value '{text}' "
                        f"is not a number; field omitted"
                    )
                    continue
                payload[target.column] = number
            elif target.kind == FieldKind.YES_NO:
                payload[target.column] = transform_yes_no(text)
            elif target.kind == FieldKind.REPEAT:
                payload[target.column] = transform_repeat(text)
            else:
                payload[target.column] = text
        return payload
