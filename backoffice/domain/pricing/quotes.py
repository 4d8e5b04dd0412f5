"""
Sale price quotes: price resolution plus an optional discount.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Sequence

from backoffice.domain.imports.target_schemas import DISCOUNTS, PRICELIST
from backoffice.domain.pricing.resolution import (
    PriceContext,
    PriceListEntry,
    resolve_price,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

PERCENT_TYPES = frozenset({"percent", "percentage", "%"})


@dataclass(frozen=True)
class Discount:
    discount_id: Any
    discount_type: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    discount_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Discount":
        amount = row.get("discount_amount")
        return cls(
            discount_id=row.get("discount_id"),
            discount_type=row.get("discount_type"),
            discount_amount=None if amount is None else Decimal(str(amount)),
            discount_name=row.get("discount_name"),
        )


@dataclass(frozen=True)
class PriceQuote:
    normal_price: Decimal
    unit_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    source: str


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def discount_value(discount: Discount, unit_price: Decimal) -> Decimal:
    """
    Money taken off ``unit_price`` by ``discount``.

    A numeric discount type is a percentage of the unit price. A type of
    ``percent``/``percentage``/``%`` applies the discount amount as a
    percentage. Any other type is a fixed amount.
    """
    discount_type = (discount.discount_type or "").strip()
    try:
        percentage = Decimal(discount_type)
    except InvalidOperation:
        percentage = None
    if percentage is not None and percentage.is_finite():
        return unit_price * percentage / HUNDRED

    amount = discount.discount_amount or ZERO
    if discount_type.lower() in PERCENT_TYPES:
        return unit_price * amount / HUNDRED
    return amount


def quote_price(
    price_list: Sequence[PriceListEntry],
    context: PriceContext,
    *,
    discount: Optional[Discount] = None,
    discount_amount: Optional[Decimal] = None,
) -> PriceQuote:
    """
    Resolve the unit price for ``context`` and apply a discount.

    An explicit ``discount_amount`` takes precedence over ``discount``. The
    final price never drops below zero.

    ``normal_price`` is the matched entry's list price, not the price charged:
    when a special price applies it differs from ``unit_price``. With no
    matched entry, or an entry without a normal price, it equals ``unit_price``.
    """
    resolution = resolve_price(price_list, context)
    unit_price = resolution.price
    normal_price = unit_price
    if resolution.entry is not None and resolution.entry.normal_price is not None:
        normal_price = resolution.entry.normal_price

    if discount_amount is not None:
        off = discount_amount
    elif discount is not None:
        off = discount_value(discount, unit_price)
    else:
        off = ZERO

    return PriceQuote(
        normal_price=_money(normal_price),
        unit_price=_money(unit_price),
        discount_amount=_money(off),
        final_price=_money(max(ZERO, unit_price - off)),
        source=resolution.source,
    )


class PriceQuoteService:
    """Quotes prices from a fresh store snapshot on every request."""

    def __init__(self, store):
        self.store = store

    def load_price_list(self) -> List[PriceListEntry]:
        return [PriceListEntry.from_row(row) for row in self.store.fetch_all(PRICELIST)]

    def find_discount(self, discount_id: Any) -> Optional[Discount]:
        try:
            row = self.store.fetch_one(DISCOUNTS, discount_id)
        except ValueError:
            logger.info("Ignoring malformed discount id %r", discount_id)
            return None
        if row is None:
            logger.info("Discount %s not found; quoting without discount", discount_id)
            return None
        return Discount.from_row(row)

    def quote(
        self,
        context: PriceContext,
        *,
        discount_id: Any = None,
        discount_amount: Optional[Decimal] = None,
    ) -> PriceQuote:
        discount = None
        if discount_amount is None and discount_id not in (None, ""):
            discount = self.find_discount(discount_id)
        return quote_price(
            self.load_price_list(),
            context,
            discount=discount,
            discount_amount=discount_amount,
        )
