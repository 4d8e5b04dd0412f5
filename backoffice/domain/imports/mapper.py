from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import re

logger = logging.getLogger(__name__)

HEADER_SEPARATORS = re.compile(r"[\s_\-]+")
PLACEHOLDER_HEADER = re.compile(r"^(unnamed: ?\d+|__empty(_\d+)?|column_?\d+|col_?\d+)$")
LEADING_INTEGER = re.compile(r"^\s*-?\d+")


def normalize_header(text: Any) -> str:
    """Lowercase, trim and collapse runs of whitespace/underscore/hyphen into one space."""
    if text is None:
        return ""
    return HEADER_SEPARATORS.sub(" ", str(text).strip().lower()).strip()


def is_placeholder_header(header: Any) -> bool:
    """True for headers generated by spreadsheet tools when a column has no caption."""
    text = "" if header is None else str(header).strip().lower()
    return not text or bool(PLACEHOLDER_HEADER.match(text))


def build_vocabulary(aliases: Mapping[str, Sequence[str]]) -> Dict[str, str]:
    """
    Map every normalized alias to its canonical field.

    When two fields share an alias the field listed first keeps it, matching
    the priority used by ``map_row``.
    """
    vocabulary: Dict[str, str] = {}
    for field_name, field_aliases in aliases.items():
        for alias in field_aliases:
            vocabulary.setdefault(normalize_header(alias), field_name)
    return vocabulary


def count_matched_fields(cells: Iterable[Any], vocabulary: Mapping[str, str]) -> int:
    """Number of distinct canonical fields named by ``cells``."""
    return len({vocabulary[key] for key in (normalize_header(cell) for cell in cells) if key in vocabulary})


def resolve_header_map(headers: Sequence[str], aliases: Mapping[str, Sequence[str]]) -> Dict[str, str]:
    """
    Decide which header feeds each canonical field.

    Fields are resolved in table order; for each field the first alias (in
    alias order) that matches a still-unclaimed header wins. Headers matching
    nothing are dropped.
    """
    by_normalized: Dict[str, str] = {}
    for header in headers:
        by_normalized.setdefault(normalize_header(header), header)

    header_map: Dict[str, str] = {}
    claimed = set()
    for field_name, field_aliases in aliases.items():
        for alias in field_aliases:
            header = by_normalized.get(normalize_header(alias))
            if header is not None and header not in claimed:
                header_map[header] = field_name
                claimed.add(header)
                break
    return header_map


def _positional_applies(
    headers: Sequence[str],
    raw_row: Mapping[str, Any],
    header_map: Mapping[str, str],
    positional: Optional[Sequence[Optional[str]]],
) -> bool:
    if not positional or header_map or not headers:
        return False
    if not all(is_placeholder_header(header) for header in headers[1:]):
        return False
    first_value = raw_row.get(headers[0])
    return first_value is not None and bool(LEADING_INTEGER.match(str(first_value)))


class ColumnMapper:
    """
    Rewrites raw rows into canonically keyed rows for one target.

    Header resolution only depends on the header tuple, so it is computed once
    per distinct header set and reused for every row.
    """

    def __init__(
        self,
        aliases: Mapping[str, Sequence[str]],
        positional: Optional[Sequence[Optional[str]]] = None,
    ):
        self.aliases = aliases
        self.positional = tuple(positional or ())
        self._cache: Dict[Tuple[str, ...], Dict[str, str]] = {}
        self.positional_rows = 0

    def header_map(self, headers: Sequence[str]) -> Dict[str, str]:
        key = tuple(headers)
        cached = self._cache.get(key)
        if cached is None:
            cached = resolve_header_map(key, self.aliases)
            self._cache[key] = cached
            if cached:
                logger.info("Column mapping resolved: %s", cached)
            else:
                logger.warning("No header matched a known alias; headers=%s", list(key)[:10])
        return cached

    def map(self, raw_row: Mapping[str, Any]) -> Dict[str, str]:
        headers = list(raw_row.keys())
        header_map = self.header_map(headers)

        if _positional_applies(headers, raw_row, header_map, self.positional):
            self.positional_rows += 1
            if self.positional_rows == 1:
                logger.info("Placeholder headers detected; mapping columns by position")
            pairs = [
                (field_name, raw_row.get(header))
                for field_name, header in zip(self.positional, headers)
                if field_name
            ]
        else:
            pairs = [(field_name, raw_row.get(header)) for header, field_name in header_map.items()]

        mapped: Dict[str, str] = {}
        for field_name, value in pairs:
            if value is None:
                continue
            text = str(value).strip()
            if text:
                mapped[field_name] = text
        return mapped


def map_row(
    raw_row: Mapping[str, Any],
    aliases: Mapping[str, Sequence[str]],
    positional: Optional[Sequence[Optional[str]]] = None,
) -> Dict[str, str]:
    """Map a single raw row; see ``ColumnMapper`` for batch use."""
    return ColumnMapper(aliases, positional).map(raw_row)


def unmatched_headers(headers: Sequence[str], aliases: Mapping[str, Sequence[str]]) -> List[str]:
    header_map = resolve_header_map(headers, aliases)
    return [header for header in headers if header not in header_map and not is_placeholder_header(header)]
