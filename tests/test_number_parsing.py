from decimal import Decimal

import pytest

from backoffice.utils.numbers import InvalidNumberError, parse_decimal, parse_integer, parse_locale_decimal


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1.234.567,89", "1234567.89"),
        ("1,234,567.89", "1234567.89"),
        ("Rp 50.000", "50000.00"),
        ("Rp. 1.250.000", "1250000.00"),
        ("IDR 75.500,50", "75500.50"),
        ("$1,234.5", "1234.50"),
        ("12,50", "12.50"),
        ("1,250", "1250.00"),
        ("1,250,000", "1250000.00"),
        ("12.5", "12.50"),
        ("0.75", "0.75"),
        ("150000", "150000.00"),
        ("(1,500.00)", "-1500.00"),
        ("-42", "-42.00"),
        (" 7 500 ", "7500.00"),
    ],
)
def test_parses_locale_formatted_numbers(value, expected):
    assert parse_locale_decimal(value) == expected


@pytest.mark.parametrize("value", ["abc", "12a", "Rp", "1.2.3,4,5", "--5"])
def test_rejects_non_numeric_residue(value):
    with pytest.raises(InvalidNumberError):
        parse_locale_decimal(value)


def test_blank_values_return_none():
    assert parse_locale_decimal(None) is None
    assert parse_locale_decimal("  ") is None


def test_native_numbers_are_accepted():
    assert parse_locale_decimal(1500) == "1500.00"
    assert parse_locale_decimal(12.345) == "12.35"
    assert parse_decimal(Decimal("3.10")) == Decimal("3.10")


def test_parse_integer_requires_whole_numbers():
    assert parse_integer("1.000") == 1000
    assert parse_integer("7") == 7
    with pytest.raises(InvalidNumberError):
        parse_integer("7.5")
