from decimal import Decimal

from backoffice.domain.pricing.resolution import (
    NOT_FOUND,
    PriceContext,
    PriceListEntry,
    resolve_price,
)


def _entry(**values):
    values.setdefault("family", "F")
    values.setdefault("material_description", "M")
    for name in ("normal_price", "special_price"):
        if values.get(name) is not None:
            values[name] = Decimal(values[name])
    return PriceListEntry(**values)


PRICE_LIST = [
    _entry(serial_number="S1", normal_price="100"),
    _entry(item_code="I1", normal_price="200", special_price="180"),
    _entry(normal_price="300"),
    _entry(item_group="G", pattern_code="P", normal_price="400"),
]


def test_serial_tier_wins_over_every_other_tier():
    context = PriceContext(
        serial_number="S1",
        item_code="I1",
        item_group="G",
        pattern_code="P",
        family="F",
        material_description="M",
    )

    resolution = resolve_price(PRICE_LIST, context)

    assert resolution.source == "serial"
    assert resolution.price == Decimal("100")
    assert resolution.entry is PRICE_LIST[0]


def test_item_tier_uses_special_price():
    context = PriceContext(serial_number="unknown", item_code="I1", family="F", material_description="M")

    resolution = resolve_price(PRICE_LIST, context)

    assert resolution.source == "item"
    assert resolution.price == Decimal("180")


def test_best_tier_prefers_highest_score():
    context = PriceContext(item_group="G", pattern_code="P", family="F", material_description="M")

    resolution = resolve_price(PRICE_LIST, context)

    assert resolution.source == "best"
    assert resolution.price == Decimal("400")


def test_best_tier_ties_go_to_first_entry():
    price_list = [
        _entry(item_group="G", pattern_code="X", normal_price="10"),
        _entry(item_group="Y", pattern_code="P", normal_price="20"),
    ]
    context = PriceContext(item_group="G", pattern_code="P", family="F", material_description="M")

    assert resolve_price(price_list, context).price == Decimal("10")


def test_generic_tier_when_no_classification_scores():
    price_list = [
        _entry(item_group="G2", normal_price="50"),
        _entry(normal_price="300"),
    ]
    context = PriceContext(item_code="missing", item_group="other", family="F", material_description="M")

    resolution = resolve_price(price_list, context)

    assert resolution.source == "generic"
    assert resolution.price == Decimal("300")


def test_generic_tier_needs_a_specific_key_in_context():
    context = PriceContext(family="F", material_description="M")

    assert resolve_price(PRICE_LIST, context) is NOT_FOUND


def test_family_and_material_must_both_match():
    context = PriceContext(item_group="G", pattern_code="P", family="F", material_description="other")

    resolution = resolve_price(PRICE_LIST, context)

    assert not resolution.found
    assert resolution.price == Decimal("0")
    assert resolution.source == "not_found"


def test_blank_context_values_never_match():
    price_list = [_entry(serial_number="", normal_price="5")]

    assert resolve_price(price_list, PriceContext(serial_number="  ")) is NOT_FOUND


def test_entry_without_prices_resolves_to_zero():
    price_list = [_entry(serial_number="S9")]

    resolution = resolve_price(price_list, PriceContext(serial_number="S9"))

    assert resolution.source == "serial"
    assert resolution.price == Decimal("0")


def test_entry_from_store_row():
    entry = PriceListEntry.from_row({"serial_number": "S1", "normal_price": 12.5, "special_price": ""})

    assert entry.normal_price == Decimal("12.5")
    assert entry.special_price is None
    assert entry.effective_price == Decimal("12.5")
