"""Tests for value parsers and whole-file validation (catalog_ingestion/domain/validators.py)."""

from decimal import Decimal

import pytest

from catalog_ingestion.domain.field_map import CsvField, EXPECTED_COLUMNS
from catalog_ingestion.domain.types import FieldAccess
from catalog_ingestion.domain.validators import (
    UNREADABLE,
    assess_field,
    clean,
    is_valid_item_code,
    parse_comma_separated,
    parse_decimal,
    transform_repeat,
    transform_yes_no,
    validate_headers,
    validate_rows,
)


class TestValueParsing:
    def test_clean(self):
        assert clean("  Alder ") == "Alder"
        assert clean("   ") is None
        assert clean(None) is None
        assert clean(UNREADABLE) is None
        assert clean(54) == "54"

    def test_comma_separated_dedupes_in_order(self):
        assert parse_comma_separated("Ash, Blue,, Ash ,Red") == ("Ash", "Blue", "Red")

    def test_comma_separated_accepts_lists(self):
        assert parse_comma_separated(["Ash", " ", "Blue"]) == ("Ash", "Blue")
        assert parse_comma_separated("") == ()

    @pytest.mark.parametrize(
        "raw, expected",
        [("54", Decimal("54")), (" 12.5 ", Decimal("12.5")), ("wide", None), ("", None), ("NaN", None)],
    )
    def test_parse_decimal(self, raw, expected):
        assert parse_decimal(raw) == expected

    def test_yes_no(self):
        assert transform_yes_no("yes") == "Y"
        assert transform_yes_no("Y") == "Y"
        assert transform_yes_no("no") == "N"
        assert transform_yes_no(None) == "N"

    def test_repeat(self):
        assert transform_repeat("Repeat") == "Y"
        assert transform_repeat("y") == "Y"
        assert transform_repeat("No-Repeat") == "N"

    @pytest.mark.parametrize("code", ["1354-6543", "7654-8989K", " 0001-0001 "])
    def test_valid_item_codes(self, code):
        assert is_valid_item_code(code)

    @pytest.mark.parametrize("code", ["1354-654", "ABCD-1234", "1354-6543KK", "13546543"])
    def test_invalid_item_codes(self, code):
        assert not is_valid_item_code(code)


class TestAssessField:
    def test_has_data(self):
        assert assess_field({"Color": "Ash"}, "Color") == FieldAccess.HAS_DATA

    def test_empty_but_accessible(self):
        assert assess_field({"Color": ""}, "Color") == FieldAccess.EMPTY_BUT_ACCESSIBLE
        assert assess_field({"Color": None}, "Color") == FieldAccess.EMPTY_BUT_ACCESSIBLE
        assert assess_field({"Color": []}, "Color") == FieldAccess.EMPTY_BUT_ACCESSIBLE

    def test_query_failed(self):
        assert assess_field({}, "Color") == FieldAccess.QUERY_FAILED
        assert assess_field({"Color": UNREADABLE}, "Color") == FieldAccess.QUERY_FAILED

    def test_wire_values(self):
        assert FieldAccess.QUERY_FAILED.value == "query_failed"
        assert FieldAccess.EMPTY_BUT_ACCESSIBLE.value == "src_empty_data"


class TestValidateHeaders:
    def test_all_columns(self):
        assert validate_headers(EXPECTED_COLUMNS) == ([], [])

    def test_missing_required_and_unknown(self):
        errors, warnings = validate_headers(["Product Name", "Color", "Notes"])
        assert errors == ["Missing required column: Item Id (Opuzen Code)"]
        assert warnings == ["Unrecognized column ignored: Notes"]


class TestValidateRows:
    def test_valid_file(self, make_rows):
        result = validate_rows(make_rows(3), EXPECTED_COLUMNS)
        assert result.is_valid
        assert result.errors == ()
        assert result.summary.total_rows == 3
        assert result.summary.valid_rows == 3
        assert result.fix_guidance == ()

    def test_empty_file(self):
        result = validate_rows([])
        assert not result.is_valid
        assert result.errors == ("CSV file is empty",)

    def test_duplicate_item_code(self, make_row):
        rows = [
            make_row(item_code="1354-6543"),
            make_row(item_code="1111-2222", product_name="Birch"),
            make_row(item_code="1354-6543", product_name="Cedar"),
        ]
        result = validate_rows(rows)
        assert result.is_valid is False
        assert result.summary.duplicate_codes == 2
        assert any('Duplicate Item Code "1354-6543"' in e for e in result.errors)
        assert "row(s): 3" in result.row_errors[1][0]
        assert "row(s): 1" in result.row_errors[3][0]
        assert 2 not in result.row_errors
        assert [s.title for s in result.fix_guidance] == ["Remove Duplicate Item Codes"]

    def test_missing_required_fields(self, make_row):
        result = validate_rows([make_row(product_name="", color="  ")])
        assert not result.is_valid
        assert result.summary.missing_required_fields == 2
        assert result.summary.invalid_rows == 1
        assert result.errors[0].startswith("Row 1: Missing Product Name")
        assert any("mandatory" in w for w in result.warnings)
        assert any("No valid rows" in w for w in result.warnings)

    def test_data_type_errors(self, make_row):
        result = validate_rows([make_row(width="wide", prop_65="maybe", item_code="12-34")])
        assert result.summary.data_type_errors == 3
        messages = result.row_errors[1]
        assert any(m.startswith('Invalid Width "wide"') for m in messages)
        assert any(m.startswith('Invalid Prop 65 Compliance "maybe"') for m in messages)
        assert [s.step for s in result.fix_guidance] == [1]

    def test_negative_width_rejected(self, make_row):
        result = validate_rows([make_row(width="-3")])
        assert result.summary.data_type_errors == 1

    def test_empty_optional_fields_are_fine(self, make_row):
        result = validate_rows([make_row(width="", repeat="", prop_65="")])
        assert result.is_valid
