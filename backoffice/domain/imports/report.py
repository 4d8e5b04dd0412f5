"""
Downloadable error report for finished import jobs.
"""
import csv
from io import StringIO
from typing import Iterable, Iterator

from backoffice.domain.imports.validators import RowError

REPORT_COLUMNS = ("row_number", "field", "original_value", "message")


def iter_error_report(errors: Iterable[RowError]) -> Iterator[str]:
    """
    Stream the error ledger as CSV, one chunk per line.

    Yields:
        CSV text chunks, header first
    """
    buffer = StringIO()
    writer = csv.writer(buffer)

    writer.writerow(REPORT_COLUMNS)
    yield buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)

    for error in sorted(errors, key=lambda entry: entry.row):
        writer.writerow([error.row, error.field, "" if error.raw_value is None else error.raw_value, error.message])
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)


def render_error_report(errors: Iterable[RowError]) -> str:
    return "".join(iter_error_report(errors))


def report_file_name(job_id: str) -> str:
    return f"import-errors-{job_id}.csv"
