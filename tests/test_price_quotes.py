from decimal import Decimal

from backoffice.domain.imports.target_schemas import DISCOUNTS, PRICELIST
from backoffice.domain.imports.writer import write_records
from backoffice.domain.pricing.quotes import Discount, PriceQuoteService, discount_value, quote_price
from backoffice.domain.pricing.resolution import PriceContext, PriceListEntry

PRICE_LIST = [
    PriceListEntry(serial_number="S1", normal_price=Decimal("1000"), special_price=Decimal("800")),
    PriceListEntry(item_code="I1", normal_price=Decimal("250.50")),
]


def test_fixed_discount():
    assert discount_value(Discount(1, "fixed", Decimal("50")), Decimal("800")) == Decimal("50")


def test_percentage_type_applies_amount_as_percent():
    assert discount_value(Discount(1, "percent", Decimal("10")), Decimal("800")) == Decimal("80")
    assert discount_value(Discount(1, "%", Decimal("25")), Decimal("800")) == Decimal("200")


def test_numeric_type_is_the_percentage():
    assert discount_value(Discount(1, "15", Decimal("999")), Decimal("200")) == Decimal("30")


def test_quote_without_discount():
    quote = quote_price(PRICE_LIST, PriceContext(serial_number="S1"))

    assert quote.source == "serial"
    assert quote.normal_price == Decimal("1000.00")
    assert quote.unit_price == Decimal("800.00")
    assert quote.discount_amount == Decimal("0.00")
    assert quote.final_price == Decimal("800.00")


def test_explicit_amount_wins_over_discount():
    quote = quote_price(
        PRICE_LIST,
        PriceContext(item_code="I1"),
        discount=Discount(1, "percent", Decimal("50")),
        discount_amount=Decimal("0.50"),
    )

    assert quote.discount_amount == Decimal("0.50")
    assert quote.final_price == Decimal("250.00")


def test_final_price_never_negative():
    quote = quote_price(PRICE_LIST, PriceContext(item_code="I1"), discount_amount=Decimal("999"))

    assert quote.final_price == Decimal("0.00")


def test_unmatched_context_quotes_zero():
    quote = quote_price(PRICE_LIST, PriceContext(serial_number="nope"), discount_amount=Decimal("10"))

    assert quote.source == "not_found"
    assert quote.unit_price == Decimal("0.00")
    assert quote.final_price == Decimal("0.00")


def test_service_reads_current_store_snapshot(store):
    write_records(store, PRICELIST, [(1, {"serial_number": "S1", "normal_price": "500.00", "special_price": "450.00"})])
    write_records(
        store,
        DISCOUNTS,
        [(1, {"discount_id": 7, "discount_name": "Promo", "discount_type": "percent", "discount_amount": "10.00"})],
    )
    service = PriceQuoteService(store)

    quote = service.quote(PriceContext(serial_number="S1"), discount_id="7")

    assert quote.source == "serial"
    assert quote.unit_price == Decimal("450.00")
    assert quote.discount_amount == Decimal("45.00")
    assert quote.final_price == Decimal("405.00")


def test_service_ignores_unknown_or_malformed_discount(store):
    write_records(store, PRICELIST, [(1, {"item_code": "I1", "normal_price": "100.00"})])
    service = PriceQuoteService(store)

    assert service.quote(PriceContext(item_code="I1"), discount_id="404").final_price == Decimal("100.00")
    assert service.quote(PriceContext(item_code="I1"), discount_id="abc").final_price == Decimal("100.00")


def test_normal_price_is_list_price_not_charged_price():
    special = quote_price(PRICE_LIST, PriceContext(serial_number="S1"))
    special_only = quote_price(
        [PriceListEntry(item_code="I9", special_price=Decimal("75"))], PriceContext(item_code="I9")
    )

    assert special.normal_price == Decimal("1000.00")
    assert special.unit_price == Decimal("800.00")
    assert special_only.normal_price == special_only.unit_price == Decimal("75.00")
