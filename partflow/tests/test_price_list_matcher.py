"""
Unit tests for header mapping and row classification.
"""
from datetime import date

import pytest

from partflow.services.price_list_matcher import (
    HEADER_ALIASES,
    MatchIndex,
    build_normalized_row,
    classify_row,
    extract_by_aliases,
    normalize_header,
    resolve_match,
)


@pytest.fixture
def index():
    return MatchIndex(
        parts={"AC100": [1], "AC200": [2], "DUP1": [3, 4]},
        aliases={"OLD100": [1], "QQ1": [1, 2], "AC200": [2]},
        materials={"M-01": 10},
    )


class TestHeaders:

    @pytest.mark.parametrize("raw,expected", [
        ("Номер у поставщика", "номерупоставщика"),
        ("Срок поставки, дн", "срокпоставкидн"),
        ("Part #", "partnumber"),
        ("  Price  ", "price"),
        ("Supplier_Part_Number", "supplier_part_number"),
        ("Кат. №", "катnumber"),
        (None, ""),
    ])
    def test_normalize_header(self, raw, expected):
        assert normalize_header(raw) == expected

    def test_blank_headers_are_dropped(self):
        assert build_normalized_row({"": 1, "Цена": 5, None: 2}) == {"цена": 5}

    def test_first_non_empty_alias_wins(self):
        row = {"supplierpn": "", "partnumber": "AC-100", "pn": "other"}
        assert extract_by_aliases(row, HEADER_ALIASES["supplier_part_number_raw"]) == "AC-100"


class TestResolveMatch:

    def test_exact_before_alias(self, index):
        result = resolve_match("AC200", index.parts, index.aliases)
        assert (result.status, result.part_id, result.method) == ("matched", 2, "exact_canonical")
        assert result.confidence == 100

    def test_alias(self, index):
        result = resolve_match("OLD100", index.parts, index.aliases)
        assert (result.status, result.part_id, result.method) == ("matched", 1, "alias")

    def test_several_candidates_are_never_guessed(self, index):
        for key in ("QQ1", "DUP1"):
            result = resolve_match(key, index.parts, index.aliases)
            assert result.status == "ambiguous"
            assert result.part_id is None
            assert result.confidence is None

    def test_unknown_key_needs_new_part(self, index):
        result = resolve_match("ZZZ", index.parts, index.aliases)
        assert (result.status, result.method) == ("new_part_required", "none")

    def test_empty_key(self, index):
        assert resolve_match(None, index.parts, index.aliases).status == "error"


class TestClassifyRow:

    def test_russian_sheet_row(self, index):
        values = classify_row(
            {
                "Номер у поставщика": "ac-100",
                "Описание": "Насос",
                "Материал": "m-01",
                "Цена": "1 200,50",
                "Валюта": "rub",
                "Срок поставки, дн": 14.0,
                "Тип предложения": "аналог",
                "Действует с": "01.03.2026",
            },
            index,
        )
        assert values["line_status"] == "matched"
        assert values["matched_supplier_part_id"] == 1
        assert values["supplier_part_number_canonical"] == "AC100"
        assert values["matched_material_id"] == 10
        assert values["price"] == 1200.5
        assert values["currency"] == "RUB"
        assert values["lead_time_days"] == 14
        assert values["offer_type"] == "ANALOG"
        assert values["valid_from"] == date(2026, 3, 1)
        assert values["description_raw"] == "Насос"

    def test_alias_row(self, index):
        values = classify_row({"Part Number": "OLD-100", "Price": 3, "Currency": "USD"}, index)
        assert values["match_method"] == "alias"
        assert values["matched_supplier_part_id"] == 1

    def test_ambiguous_row(self, index):
        values = classify_row({"PN": "QQ 1", "Price": 3, "Currency": "USD"}, index)
        assert values["line_status"] == "ambiguous"
        assert values["matched_supplier_part_id"] is None

    def test_unknown_part(self, index):
        values = classify_row({"PN": "NEW-5", "Price": 3, "Currency": "USD"}, index)
        assert values["line_status"] == "new_part_required"
        assert values["match_note"] == "No match found"

    def test_blank_row_is_ignored(self, index):
        values = classify_row({"PN": None, "Price": None, "Comment": "section header"}, index)
        assert values["line_status"] == "ignored"
        assert values["comment"] == "section header"

    def test_price_without_part_number(self, index):
        values = classify_row({"PN": "  ", "Price": 10}, index)
        assert values["line_status"] == "error"
        assert values["match_note"] == "Empty part number"
