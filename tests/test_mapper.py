from backoffice.domain.imports.mapper import (
    ColumnMapper,
    build_vocabulary,
    is_placeholder_header,
    map_row,
    normalize_header,
)
from backoffice.domain.imports.target_schemas import PRICELIST, TRANSFER_ITEMS


def test_normalize_header_collapses_separators():
    assert normalize_header("  Kode__Item ") == "kode item"
    assert normalize_header("HARGA-NORMAL") == "harga normal"
    assert normalize_header("Normal \t  Price") == "normal price"
    assert normalize_header(None) == ""


def test_maps_aliases_to_canonical_fields():
    row = {"Kode Item": "KI-1", "Family": "Ring", "Harga_Normal": "Rp 50.000", "SP": "45.000"}

    mapped = map_row(row, PRICELIST.aliases)

    assert mapped == {
        "item_code": "KI-1",
        "family": "Ring",
        "normal_price": "Rp 50.000",
        "special_price": "45.000",
    }


def test_unknown_headers_are_dropped_and_empty_values_are_absent():
    row = {"Kode Item": "KI-1", "Remarks": "ignore me", "SP": "  ", "Family": ""}

    mapped = map_row(row, PRICELIST.aliases)

    assert mapped == {"item_code": "KI-1"}


def test_first_alias_in_priority_order_wins():
    # "normal price" is listed before the generic "price" alias.
    row = {"Price": "1", "Normal Price": "2"}

    assert map_row(row, PRICELIST.aliases) == {"normal_price": "2"}


def test_header_is_claimed_by_one_field_only():
    aliases = {"first": ("name",), "second": ("name", "label")}
    row = {"Name": "a", "Label": "b"}

    assert map_row(row, aliases) == {"first": "a", "second": "b"}


def test_placeholder_headers():
    assert is_placeholder_header("")
    assert is_placeholder_header("Unnamed: 3")
    assert is_placeholder_header("__EMPTY")
    assert is_placeholder_header("__EMPTY_2")
    assert is_placeholder_header("column_4")
    assert is_placeholder_header("col_1")
    assert not is_placeholder_header("Kode Item")


def test_positional_fallback_for_placeholder_headers():
    row = {
        "PT. RANCANG INDAH SENTOSA": "7",
        "__EMPTY": "KI-9",
        "__EMPTY_1": "Gold ring",
        "__EMPTY_2": "SN-001",
        "__EMPTY_3": "2",
    }

    mapped = map_row(row, TRANSFER_ITEMS.aliases, TRANSFER_ITEMS.positional_fields)

    assert mapped == {
        "line_no": "7",
        "item_code": "KI-9",
        "item_name": "Gold ring",
        "serial_number": "SN-001",
        "qty": "2",
    }


def test_positional_fallback_requires_integer_first_column():
    row = {"Title": "Transfer list", "__EMPTY": "KI-9"}

    assert map_row(row, TRANSFER_ITEMS.aliases, TRANSFER_ITEMS.positional_fields) == {}


def test_positional_fallback_not_used_when_aliases_match():
    row = {"No. Baris": "1", "column_2": "KI-9", "S/N": "SN-1"}

    mapped = map_row(row, TRANSFER_ITEMS.aliases, TRANSFER_ITEMS.positional_fields)

    assert mapped == {"line_no": "1", "serial_number": "SN-1"}


def test_column_mapper_caches_header_resolution():
    mapper = ColumnMapper(PRICELIST.aliases)
    first = mapper.map({"SN": "S1", "Price": "10"})
    second = mapper.map({"SN": "S2", "Price": "20"})

    assert first == {"serial_number": "S1", "normal_price": "10"}
    assert second == {"serial_number": "S2", "normal_price": "20"}
    assert len(mapper._cache) == 1


def test_vocabulary_keeps_first_field_for_shared_alias():
    vocabulary = build_vocabulary({"a": ("Code",), "b": ("code", "other")})

    assert vocabulary == {"code": "a", "other": "b"}
