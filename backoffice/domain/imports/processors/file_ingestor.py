import codecs
import csv
import itertools
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, BinaryIO, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

import pandas as pd

from backoffice.domain.imports.mapper import count_matched_fields
from backoffice.utils.numbers import DOT_GROUPED_PATTERN

logger = logging.getLogger(__name__)

FILE_TYPE_CSV = "csv"
FILE_TYPE_EXCEL = "excel"

EXTENSION_FILE_TYPES = {
    ".csv": FILE_TYPE_CSV,
    ".xlsx": FILE_TYPE_EXCEL,
    ".xls": FILE_TYPE_EXCEL,
}

EXCEL_ENGINES = {
    ".xlsx": "openpyxl",
    ".xls": "xlrd",
}

DEFAULT_HEADER_SCAN_ROWS = 25
DEFAULT_PROGRESS_EVERY = 1000
MAX_HEADER_MATCH = 3
LINE_MARKER = "no.baris"


class IngestError(Exception):
    """Base exception for file ingestion failures."""
    pass


class UnsupportedFormatError(IngestError):
    """Raised when the file extension is not a supported import format."""
    pass


class FileParseError(IngestError):
    """Raised when a supported file cannot be decoded at all."""
    pass


@dataclass
class IngestedFile:
    file_type: str
    headers: List[str]
    # Rows above the detected header row (titles, document numbers, ...).
    preamble: List[List[str]]
    rows: Iterator[Dict[str, str]]
    estimated_total: Optional[int] = None
    # Caption rows encountered (and skipped) while iterating ``rows``.
    skipped_rows: List[List[str]] = field(default_factory=list)

    def context_lines(self) -> List[str]:
        """Preamble and skipped caption rows flattened into text lines."""
        lines = []
        for cells in itertools.chain(self.preamble, self.skipped_rows):
            text = " ".join(cell for cell in cells if cell)
            if text:
                lines.append(text)
        return lines


def detect_file_type(file_name: str) -> str:
    """Map a file name to ``csv`` or ``excel`` based on its extension."""
    extension = os.path.splitext(file_name or "")[1].lower()
    file_type = EXTENSION_FILE_TYPES.get(extension)
    if file_type is None:
        raise UnsupportedFormatError(
            f"Unsupported file type '{extension or file_name}'. Expected one of: "
            f"{', '.join(sorted(EXTENSION_FILE_TYPES))}"
        )
    return file_type


def _float_text(value: float) -> str:
    """
    Render a typed numeric cell as plain decimal text.

    The dot is always the decimal point here, so values such as 12.345 get a
    trailing zero to keep the number parser from reading them as 12345.
    """
    text = format(Decimal(repr(value)), "f")
    if DOT_GROUPED_PATTERN.match(text):
        text += "0"
    return text


def _cell_text(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return _float_text(value)
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _is_blank_row(cells: Sequence[str]) -> bool:
    return not any(cells)


def _sniff_delimiter(first_line: str) -> str:
    if ";" in first_line and "," not in first_line:
        return ";"
    return ","


def _estimate_csv_rows(stream: BinaryIO) -> Optional[int]:
    if not stream.seekable():
        return None
    start = stream.tell()
    lines = 0
    last = b""
    for chunk in iter(lambda: stream.read(1024 * 1024), b""):
        lines += chunk.count(b"\n")
        last = chunk
    stream.seek(start)
    if last and not last.endswith(b"\n"):
        lines += 1
    # Header row is not data.
    return max(lines - 1, 0)


def iter_csv_cells(stream: BinaryIO) -> Iterator[List[str]]:
    """
    Lazily decode a CSV byte stream into trimmed cell lists.

    A leading BOM is dropped, undecodable bytes are replaced, and the delimiter
    is ``;`` only when the first line contains semicolons but no commas.
    """
    reader = codecs.getreader("utf-8-sig")(stream, errors="replace")
    first_line = reader.readline()
    if not first_line:
        return
    delimiter = _sniff_delimiter(first_line)
    logger.info("CSV delimiter detected: %r", delimiter)

    # csv handles doubled quotes inside quoted fields as literal quotes and
    # keeps going on malformed lines.
    lines = itertools.chain([first_line], reader)
    for cells in csv.reader(lines, delimiter=delimiter, quotechar='"', doublequote=True, strict=False):
        yield [cell.strip() for cell in cells]


def _load_workbook_sheet(stream: BinaryIO, file_name: str) -> pd.DataFrame:
    extension = os.path.splitext(file_name)[1].lower()
    engine = EXCEL_ENGINES.get(extension)
    try:
        sheets = pd.read_excel(stream, sheet_name=None, header=None, dtype=object, engine=engine)
    except Exception as exc:
        raise FileParseError(f"Could not read Excel file '{file_name}': {exc}") from exc

    if not sheets:
        raise FileParseError(f"Excel file '{file_name}' contains no sheets")

    first_name = next(iter(sheets))
    for sheet_name, frame in sheets.items():
        non_empty = frame.dropna(how="all")
        if len(non_empty) > 1:
            logger.info("Using sheet '%s' (%d rows)", sheet_name, len(non_empty))
            return frame
        logger.info("Skipping sheet '%s': %d non-empty rows", sheet_name, len(non_empty))

    logger.info("No sheet has data rows; falling back to '%s'", first_name)
    return sheets[first_name]


def iter_excel_cells(frame: pd.DataFrame) -> Iterator[List[str]]:
    for values in frame.itertuples(index=False, name=None):
        yield [_cell_text(value) for value in values]


def _header_threshold(vocabulary: Mapping[str, str]) -> int:
    if not vocabulary:
        return 0
    return min(MAX_HEADER_MATCH, len(set(vocabulary.values())))


def _is_caption_row(cells: Sequence[str], vocabulary: Mapping[str, str], threshold: int) -> bool:
    first = next((cell for cell in cells if cell), "")
    if LINE_MARKER in first.lower().replace(" ", ""):
        return True
    return bool(threshold) and count_matched_fields(cells, vocabulary) >= threshold


def _build_headers(cells: Sequence[str]) -> List[str]:
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for index, cell in enumerate(cells):
        name = cell or f"column_{index + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def _to_raw_row(headers: List[str], cells: Sequence[str]) -> Dict[str, str]:
    if len(cells) > len(headers):
        headers.extend(f"column_{index + 1}" for index in range(len(headers), len(cells)))
    row = {header: "" for header in headers}
    for header, cell in zip(headers, cells):
        row[header] = cell
    return row


def split_header(
    cell_rows: Iterable[List[str]],
    vocabulary: Mapping[str, str],
    scan_rows: int = DEFAULT_HEADER_SCAN_ROWS,
):
    """
    Locate the header row among the first ``scan_rows`` non-blank rows.

    Returns ``(headers, preamble, remaining_rows)``. The first row naming at
    least ``min(3, fields)`` canonical fields is the header; rows above it form
    the preamble. Without such a row the first row is the header.
    """
    iterator = (cells for cells in cell_rows if not _is_blank_row(cells))
    buffered = list(itertools.islice(iterator, scan_rows))
    if not buffered:
        return [], [], iter(())

    threshold = _header_threshold(vocabulary)
    header_index = 0
    if threshold:
        for index, cells in enumerate(buffered):
            if count_matched_fields(cells, vocabulary) >= threshold:
                header_index = index
                break

    if header_index:
        logger.info("Header row found at line %d; %d preamble rows", header_index + 1, header_index)
    headers = _build_headers(buffered[header_index])
    preamble = buffered[:header_index]
    return headers, preamble, itertools.chain(buffered[header_index + 1:], iterator)


def _iter_raw_rows(
    ingested: IngestedFile,
    cell_rows: Iterator[List[str]],
    vocabulary: Mapping[str, str],
    on_rows_parsed: Optional[Callable[[int], None]],
    progress_every: int,
) -> Iterator[Dict[str, str]]:
    threshold = _header_threshold(vocabulary)
    parsed = 0
    for cells in cell_rows:
        if _is_caption_row(cells, vocabulary, threshold):
            ingested.skipped_rows.append(list(cells))
            continue
        parsed += 1
        yield _to_raw_row(ingested.headers, cells)
        if on_rows_parsed and progress_every and parsed % progress_every == 0:
            on_rows_parsed(parsed)
    if ingested.skipped_rows:
        logger.info("Skipped %d caption rows", len(ingested.skipped_rows))
    if on_rows_parsed:
        on_rows_parsed(parsed)


def open_file_rows(
    stream: BinaryIO,
    file_name: str,
    content_type: Optional[str] = None,
    *,
    vocabulary: Optional[Mapping[str, str]] = None,
    header_scan_rows: int = DEFAULT_HEADER_SCAN_ROWS,
    on_rows_parsed: Optional[Callable[[int], None]] = None,
    progress_every: int = DEFAULT_PROGRESS_EVERY,
) -> IngestedFile:
    """
    Open an uploaded file as a lazy sequence of raw rows.

    Args:
        stream: Binary stream with the file contents.
        file_name: Original file name; its extension selects the parser.
        content_type: Declared MIME type (informational only).
        vocabulary: Normalized alias -> canonical field, used to find the
            header row and to skip repeated caption rows.
        header_scan_rows: How many leading rows may precede the header.
        on_rows_parsed: Called with the running row count every
            ``progress_every`` rows and once when the file is exhausted.

    Raises:
        UnsupportedFormatError: extension is not .csv/.xlsx/.xls.
        FileParseError: the workbook cannot be decoded.
    """
    file_type = detect_file_type(file_name)
    vocabulary = vocabulary or {}
    logger.info("Opening %s file '%s' (content type: %s)", file_type, file_name, content_type or "unknown")

    if file_type == FILE_TYPE_CSV:
        estimated = _estimate_csv_rows(stream)
        cell_rows = iter_csv_cells(stream)
    else:
        frame = _load_workbook_sheet(stream, file_name)
        estimated = max(len(frame.dropna(how="all")) - 1, 0)
        cell_rows = iter_excel_cells(frame)

    headers, preamble, remaining = split_header(cell_rows, vocabulary, header_scan_rows)
    ingested = IngestedFile(
        file_type=file_type,
        headers=headers,
        preamble=preamble,
        rows=iter(()),
        estimated_total=estimated,
    )
    ingested.rows = _iter_raw_rows(ingested, remaining, vocabulary, on_rows_parsed, progress_every)
    return ingested
