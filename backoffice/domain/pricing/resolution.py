"""
Sale price resolution against a price-list snapshot.

Resolution walks a fixed precedence: serial number, item code, then the best
classification match (family + material with matching group/pattern), then
the generic family + material row. An unmatched context returns the
``not_found`` sentinel instead of raising.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

SOURCE_SERIAL = "serial"
SOURCE_ITEM = "item"
SOURCE_BEST = "best"
SOURCE_GENERIC = "generic"
SOURCE_NOT_FOUND = "not_found"

ZERO = Decimal("0")


@dataclass(frozen=True)
class PriceListEntry:
    serial_number: Optional[str] = None
    item_code: Optional[str] = None
    item_group: Optional[str] = None
    family: Optional[str] = None
    material_description: Optional[str] = None
    pattern_code: Optional[str] = None
    pattern_name: Optional[str] = None
    normal_price: Optional[Decimal] = None
    special_price: Optional[Decimal] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PriceListEntry":
        def _money(value: Any) -> Optional[Decimal]:
            if value is None or value == "":
                return None
            return value if isinstance(value, Decimal) else Decimal(str(value))

        return cls(
            serial_number=row.get("serial_number"),
            item_code=row.get("item_code"),
            item_group=row.get("item_group"),
            family=row.get("family"),
            material_description=row.get("material_description"),
            pattern_code=row.get("pattern_code"),
            pattern_name=row.get("pattern_name"),
            normal_price=_money(row.get("normal_price")),
            special_price=_money(row.get("special_price")),
        )

    @property
    def effective_price(self) -> Decimal:
        """Special price when set, else normal price, else zero."""
        if self.special_price is not None:
            return self.special_price
        if self.normal_price is not None:
            return self.normal_price
        return ZERO


@dataclass(frozen=True)
class PriceContext:
    serial_number: Optional[str] = None
    item_code: Optional[str] = None
    item_group: Optional[str] = None
    family: Optional[str] = None
    material_description: Optional[str] = None
    pattern_code: Optional[str] = None


@dataclass(frozen=True)
class PriceResolution:
    price: Decimal
    source: str
    entry: Optional[PriceListEntry] = None

    @property
    def found(self) -> bool:
        return self.source != SOURCE_NOT_FOUND


NOT_FOUND = PriceResolution(price=ZERO, source=SOURCE_NOT_FOUND)


def _supplied(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _blank(value: Optional[str]) -> bool:
    return _supplied(value) is None


def _first(entries: Iterable[PriceListEntry], attribute: str, value: str) -> Optional[PriceListEntry]:
    return next((entry for entry in entries if getattr(entry, attribute) == value), None)


def _resolved(entry: PriceListEntry, source: str) -> PriceResolution:
    return PriceResolution(price=entry.effective_price, source=source, entry=entry)


def resolve_price(price_list: Sequence[PriceListEntry], context: PriceContext) -> PriceResolution:
    """
    Resolve the effective sale price for ``context``.

    Precedence (first hit wins):
    1. exact serial number match -> ``serial``
    2. exact item code match -> ``item``
    3. among rows with the context's family and material, the row scoring
       highest on group/pattern equality (score > 0, first row wins ties),
       provided the context named a group or pattern -> ``best``
    4. the family + material row with neither group nor pattern, provided the
       context named a serial, item, group or pattern -> ``generic``
    Otherwise ``NOT_FOUND`` (price 0).

    Blank context values count as not supplied and never match.
    """
    serial_number = _supplied(context.serial_number)
    item_code = _supplied(context.item_code)
    item_group = _supplied(context.item_group)
    family = _supplied(context.family)
    material = _supplied(context.material_description)
    pattern_code = _supplied(context.pattern_code)

    if serial_number:
        entry = _first(price_list, "serial_number", serial_number)
        if entry is not None:
            return _resolved(entry, SOURCE_SERIAL)

    if item_code:
        entry = _first(price_list, "item_code", item_code)
        if entry is not None:
            return _resolved(entry, SOURCE_ITEM)

    generic: Optional[PriceListEntry] = None
    best: Optional[PriceListEntry] = None
    if family and material:
        candidates = [
            entry
            for entry in price_list
            if entry.family == family and entry.material_description == material
        ]
        generic = next(
            (entry for entry in candidates if _blank(entry.item_group) and _blank(entry.pattern_code)),
            None,
        )

        if item_group or pattern_code:
            top_score = 0
            for entry in candidates:
                score = 0
                if item_group and entry.item_group == item_group:
                    score += 1
                if pattern_code and entry.pattern_code == pattern_code:
                    score += 1
                if score > top_score:
                    top_score = score
                    best = entry

    if best is not None:
        return _resolved(best, SOURCE_BEST)
    if generic is not None and (serial_number or item_code or item_group or pattern_code):
        return _resolved(generic, SOURCE_GENERIC)
    return NOT_FOUND
