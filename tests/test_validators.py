from backoffice.domain.imports.target_schemas import DISCOUNTS, PRICELIST, STAFF, TRANSFER_ITEMS
from backoffice.domain.imports.validators import validate_email, validate_row


def test_valid_pricelist_row_is_coerced():
    record, errors = validate_row(
        {"item_code": "KI-1", "normal_price": "Rp 1.250.000", "special_price": "1.100.000,50"},
        1,
        PRICELIST,
    )

    assert errors == []
    assert record == {"item_code": "KI-1", "normal_price": "1250000.00", "special_price": "1100000.50"}


def test_missing_required_price_rejects_row():
    record, errors = validate_row({"item_code": "KI-1"}, 3, PRICELIST)

    assert record is None
    assert len(errors) == 1
    assert errors[0].row == 3
    assert errors[0].field == "normal_price"
    assert errors[0].raw_value is None


def test_zero_required_price_rejects_row():
    record, errors = validate_row({"item_code": "KI-1", "normal_price": "0,00"}, 4, PRICELIST)

    assert record is None
    assert errors[0].field == "normal_price"
    assert errors[0].raw_value == "0,00"
    assert "zero" in errors[0].message


def test_invalid_required_number_is_reported():
    record, errors = validate_row({"normal_price": "call us"}, 5, PRICELIST)

    assert record is None
    assert errors[0].field == "normal_price"
    assert errors[0].raw_value == "call us"


def test_lenient_special_price_is_dropped_when_invalid():
    record, errors = validate_row({"normal_price": "10.000", "special_price": "n/a"}, 2, PRICELIST)

    assert errors == []
    assert record == {"normal_price": "10000.00"}


def test_null_markers_are_treated_as_empty():
    record, errors = validate_row({"item_code": "NULL", "family": "###", "normal_price": "5"}, 1, PRICELIST)

    assert errors == []
    assert record == {"normal_price": "5.00"}


def test_staff_dates_and_email():
    record, errors = validate_row(
        {"nik": "123", "email": "Budi@Example.COM", "birth_date": "17/08/90", "join_date": "2021-03-01"},
        1,
        STAFF,
    )

    assert errors == []
    assert record["email"] == "budi@example.com"
    assert record["birth_date"] == "1990-08-17"
    assert record["join_date"] == "2021-03-01"


def test_invalid_date_rejects_row():
    record, errors = validate_row({"nik": "123", "email": "a@b.co", "birth_date": "31/02/1990"}, 9, STAFF)

    assert record is None
    assert errors[0].field == "birth_date"
    assert errors[0].raw_value == "31/02/1990"


def test_invalid_required_email_rejects_row():
    record, errors = validate_row({"nik": "123", "email": "not-an-email"}, 2, STAFF)

    assert record is None
    assert errors[0].field == "email"


def test_validate_email():
    assert validate_email(" X@Y.Com ") == "x@y.com"
    assert validate_email("no-at-sign.com") is None
    assert validate_email("no@dot") is None


def test_integer_fields_and_defaults():
    record, errors = validate_row(
        {"to_number": "TO-1", "line_no": "oops", "item_code": "KI-1"},
        1,
        TRANSFER_ITEMS,
    )

    assert errors == []
    assert record == {"to_number": "TO-1", "item_code": "KI-1", "qty": 1}


def test_required_any_for_transfer_items():
    record, errors = validate_row({"to_number": "TO-1", "qty": "3"}, 6, TRANSFER_ITEMS)

    assert record is None
    assert errors[0].field == "serial_number+item_code+item_name"


def test_every_error_of_a_row_is_reported():
    record, errors = validate_row({"discount_amount": "abc", "start_from": "99/99/2020"}, 7, DISCOUNTS)

    assert record is None
    assert [error.field for error in errors] == ["discount_id", "discount_amount", "start_from"]


def test_validation_never_raises():
    class Exploding:
        def __str__(self):
            raise RuntimeError("boom")

    record, errors = validate_row({"normal_price": Exploding()}, 8, PRICELIST)

    assert record is None
    assert errors[0].field == "general"
    assert errors[0].row == 8
