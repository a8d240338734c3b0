"""Tests for the static CSV field map (catalog_ingestion/domain/field_map.py)."""

import pytest

from catalog_ingestion.domain.field_map import (
    EXPECTED_COLUMNS,
    FIELD_MAP,
    REQUIRED_FIELDS,
    CsvField,
    FieldKind,
    FieldTarget,
    TargetEntity,
    check_field_map,
    fields_for,
)
from catalog_ingestion.domain.types import ContentSection
from catalog_kernel.exceptions import FieldMapIncompleteError


class TestFieldMapCoverage:
    def test_default_map_is_complete(self):
        check_field_map()

    def test_one_target_per_column(self):
        assert set(FIELD_MAP) == set(CsvField)
        assert len(EXPECTED_COLUMNS) == len(CsvField)

    def test_required_fields_are_natural_keys(self):
        assert REQUIRED_FIELDS == (CsvField.ITEM_CODE, CsvField.PRODUCT_NAME, CsvField.COLOR)

    def test_missing_column_detected(self):
        partial = {f: t for f, t in FIELD_MAP.items() if f != CsvField.WIDTH}
        with pytest.raises(FieldMapIncompleteError) as exc_info:
            check_field_map(partial)
        assert CsvField.WIDTH.value in exc_info.value.missing

    def test_unexpected_column_detected(self):
        with pytest.raises(FieldMapIncompleteError) as exc_info:
            check_field_map(FIELD_MAP, expected_columns=EXPECTED_COLUMNS[:-1])
        assert exc_info.value.unexpected == (EXPECTED_COLUMNS[-1],)

    def test_column_target_without_column(self):
        broken = dict(FIELD_MAP)
        broken[CsvField.WIDTH] = FieldTarget(TargetEntity.PRODUCT, FieldKind.DECIMAL)
        with pytest.raises(FieldMapIncompleteError, match="Width -> column"):
            check_field_map(broken)

    def test_content_target_without_section(self):
        broken = dict(FIELD_MAP)
        broken[CsvField.ABRASION] = FieldTarget(TargetEntity.PRODUCT_CONTENT, FieldKind.TEXT)
        with pytest.raises(FieldMapIncompleteError, match="ContentSection"):
            check_field_map(broken)


class TestFieldsFor:
    def test_content_sections_in_column_order(self):
        sections = [t.qualifier for _, t in fields_for(TargetEntity.PRODUCT_CONTENT)]
        assert sections == [
            ContentSection.FRONT,
            ContentSection.BACK,
            ContentSection.ABRASION,
            ContentSection.FIRECODES,
        ]

    def test_generated_ids_ignored(self):
        generated = {f for f, _ in fields_for(TargetEntity.GENERATED)}
        assert generated == {CsvField.OPMS_ITEM_ID, CsvField.OPMS_PRODUCT_ID}
