"""
Static field map: CSV column -> catalog target.

Every column the import accepts is a ``CsvField`` member, and ``FIELD_MAP``
must hold exactly one ``FieldTarget`` per member.  ``check_field_map()`` runs
when a RowTransformer is built and refuses to start on a gap.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from catalog_kernel.exceptions import FieldMapIncompleteError

from catalog_ingestion.domain.types import AttributeKind, ContentSection


class CsvField(str, Enum):
    ITEM_CODE = "Item Id (Opuzen Code)"
    OPMS_ITEM_ID = "OPMS Item Id"
    OPMS_PRODUCT_ID = "OPMS Product Id"
    PRODUCT_NAME = "Product Name"
    DISPLAY_NAME = "Display Name"
    COLOR = "Color"
    WIDTH = "Width"
    VERTICAL_REPEAT = "VR"
    HORIZONTAL_REPEAT = "HR"
    VENDOR = "Vendor"
    VENDOR_ITEM_CODE = "Vendor Item Code"
    VENDOR_PRODUCT_NAME = "Vendor Product Name"
    VENDOR_ITEM_COLOR = "Vendor Item Color"
    REPEAT = "Repeat (No-Repeat)"
    FRONT_CONTENT = "Front Content"
    BACK_CONTENT = "Back Content"
    ABRASION = "Abrasion"
    FIRECODES = "Firecodes"
    PROP_65 = "Prop 65 Compliance"
    AB_2998 = "AB 2998 Compliance"
    FINISH = "Finish"
    CLEANING = "Cleaning"
    ORIGIN = "Origin"
    TARIFF_CODE = "Tariff / Harmonized Code"
    USE = "Use (Item Application)"


class TargetEntity(str, Enum):
    PRODUCT = "products"
    ITEM = "items"
    PRODUCT_EXTENDED = "product_extended"
    PRODUCT_CONTENT = "product_contents"
    ITEM_COLORS = "item_colors"
    PRODUCT_VENDORS = "product_vendors"
    PRODUCT_ATTRIBUTES = "product_attributes"
    GENERATED = "generated"  # storage-assigned ids; ignored on import


class FieldKind(str, Enum):
    STRING = "string"
    DECIMAL = "decimal"
    YES_NO = "yes_no"
    REPEAT = "repeat"
    TEXT = "text"
    MANY = "many"  # comma-separated list
    GENERATED = "generated"


@dataclass(frozen=True)
class FieldTarget:
    entity: TargetEntity
    kind: FieldKind
    column: str | None = None
    qualifier: ContentSection | AttributeKind | None = None


_P, _I, _X = TargetEntity.PRODUCT, TargetEntity.ITEM, TargetEntity.PRODUCT_EXTENDED

FIELD_MAP: Mapping[CsvField, FieldTarget] = {
    CsvField.ITEM_CODE: FieldTarget(_I, FieldKind.STRING, "code"),
    CsvField.OPMS_ITEM_ID: FieldTarget(TargetEntity.GENERATED, FieldKind.GENERATED),
    CsvField.OPMS_PRODUCT_ID: FieldTarget(TargetEntity.GENERATED, FieldKind.GENERATED),
    CsvField.PRODUCT_NAME: FieldTarget(_P, FieldKind.STRING, "name"),
    CsvField.DISPLAY_NAME: FieldTarget(_I, FieldKind.STRING, "display_name"),
    CsvField.COLOR: FieldTarget(TargetEntity.ITEM_COLORS, FieldKind.MANY),
    CsvField.WIDTH: FieldTarget(_P, FieldKind.DECIMAL, "width"),
    CsvField.VERTICAL_REPEAT: FieldTarget(_P, FieldKind.DECIMAL, "vrepeat"),
    CsvField.HORIZONTAL_REPEAT: FieldTarget(_P, FieldKind.DECIMAL, "hrepeat"),
    CsvField.VENDOR: FieldTarget(TargetEntity.PRODUCT_VENDORS, FieldKind.MANY),
    CsvField.VENDOR_ITEM_CODE: FieldTarget(_I, FieldKind.STRING, "vendor_code"),
    CsvField.VENDOR_PRODUCT_NAME: FieldTarget(_X, FieldKind.STRING, "vendor_product_name"),
    CsvField.VENDOR_ITEM_COLOR: FieldTarget(_I, FieldKind.STRING, "vendor_color"),
    CsvField.REPEAT: FieldTarget(_P, FieldKind.REPEAT, "repeat_flag"),
    CsvField.FRONT_CONTENT: FieldTarget(
        TargetEntity.PRODUCT_CONTENT, FieldKind.TEXT, qualifier=ContentSection.FRONT
    ),
    CsvField.BACK_CONTENT: FieldTarget(
        TargetEntity.PRODUCT_CONTENT, FieldKind.TEXT, qualifier=ContentSection.BACK
    ),
    CsvField.ABRASION: FieldTarget(
        TargetEntity.PRODUCT_CONTENT, FieldKind.TEXT, qualifier=ContentSection.ABRASION
    ),
    CsvField.FIRECODES: FieldTarget(
        TargetEntity.PRODUCT_CONTENT, FieldKind.TEXT, qualifier=ContentSection.FIRECODES
    ),
    CsvField.PROP_65: FieldTarget(_X, FieldKind.YES_NO, "prop_65"),
    CsvField.AB_2998: FieldTarget(_X, FieldKind.YES_NO, "ab_2998_compliant"),
    CsvField.FINISH: FieldTarget(
        TargetEntity.PRODUCT_ATTRIBUTES, FieldKind.MANY, qualifier=AttributeKind.FINISH
    ),
    CsvField.CLEANING: FieldTarget(
        TargetEntity.PRODUCT_ATTRIBUTES, FieldKind.MANY, qualifier=AttributeKind.CLEANING
    ),
    CsvField.ORIGIN: FieldTarget(
        TargetEntity.PRODUCT_ATTRIBUTES, FieldKind.MANY, qualifier=AttributeKind.ORIGIN
    ),
    CsvField.TARIFF_CODE: FieldTarget(_X, FieldKind.STRING, "tariff_code"),
    CsvField.USE: FieldTarget(
        TargetEntity.PRODUCT_ATTRIBUTES, FieldKind.MANY, qualifier=AttributeKind.USE
    ),
}

# Natural-key fields: identifier, primary entity name, primary attribute
REQUIRED_FIELDS: tuple[CsvField, ...] = (
    CsvField.ITEM_CODE,
    CsvField.PRODUCT_NAME,
    CsvField.COLOR,
)

EXPECTED_COLUMNS: tuple[str, ...] = tuple(f.value for f in CsvField)

# Empty optional fields are reported as warnings, in this order
OPTIONAL_WARNING_FIELDS: tuple[CsvField, ...] = (
    CsvField.WIDTH,
    CsvField.VERTICAL_REPEAT,
    CsvField.HORIZONTAL_REPEAT,
    CsvField.VENDOR_ITEM_CODE,
    CsvField.VENDOR_ITEM_COLOR,
    CsvField.VENDOR_PRODUCT_NAME,
    CsvField.FRONT_CONTENT,
    CsvField.BACK_CONTENT,
    CsvField.ABRASION,
    CsvField.FIRECODES,
    CsvField.PROP_65,
    CsvField.AB_2998,
    CsvField.FINISH,
    CsvField.CLEANING,
    CsvField.ORIGIN,
    CsvField.TARIFF_CODE,
    CsvField.USE,
)

_COLUMN_ENTITIES = frozenset({_P, _I, _X})
_QUALIFIED_ENTITIES = {
    TargetEntity.PRODUCT_CONTENT: ContentSection,
    TargetEntity.PRODUCT_ATTRIBUTES: AttributeKind,
}


def fields_for(
    entity: TargetEntity,
    field_map: Mapping[CsvField, FieldTarget] = FIELD_MAP,
) -> tuple[tuple[CsvField, FieldTarget], ...]:
    """All mapped fields for one target entity, in ``CsvField`` order."""
    return tuple(
        (f, field_map[f]) for f in CsvField if f in field_map and field_map[f].entity == entity
    )


def check_field_map(
    field_map: Mapping[CsvField, FieldTarget] = FIELD_MAP,
    expected_columns: Iterable[str] = EXPECTED_COLUMNS,
) -> None:
    """Verify the map covers the expected input schema and is well formed.

    Raises:
        FieldMapIncompleteError: on an unmapped expected column, a mapped
            column outside the schema, or a target missing its column or
            qualifier.
    """
    mapped = {f.value for f in field_map}
    expected = set(expected_columns)
    missing = sorted(expected - mapped)
    unexpected = sorted(mapped - expected)

    for csv_field, target in field_map.items():
        if target.entity in _COLUMN_ENTITIES and not target.column:
            missing.append(f"{csv_field.value} -> column")
        qualifier_type = _QUALIFIED_ENTITIES.get(target.entity)
        if qualifier_type is not None and not isinstance(target.qualifier, qualifier_type):
            missing.append(f"{csv_field.value} -> {qualifier_type.__name__}")

    if missing or unexpected:
        raise FieldMapIncompleteError(missing, unexpected)
