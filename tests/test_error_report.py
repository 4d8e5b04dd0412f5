import csv
import io

from backoffice.domain.imports.report import iter_error_report, render_error_report, report_file_name
from backoffice.domain.imports.validators import RowError


def test_report_has_header_and_rows_sorted_by_row():
    errors = [
        RowError(row=7, field="normal_price", raw_value="abc", message="Invalid number: 'abc'"),
        RowError(row=2, field="birth_date", raw_value="31/02/1990", message="Invalid date"),
        RowError(row=7, field="database", raw_value=None, message="rejected"),
    ]

    rows = list(csv.reader(io.StringIO(render_error_report(errors))))

    assert rows[0] == ["row_number", "field", "original_value", "message"]
    assert rows[1] == ["2", "birth_date", "31/02/1990", "Invalid date"]
    assert rows[2] == ["7", "normal_price", "abc", "Invalid number: 'abc'"]
    assert rows[3] == ["7", "database", "", "rejected"]


def test_values_with_commas_and_quotes_are_escaped():
    errors = [RowError(row=1, field="item_name", raw_value='Ring "A", gold', message="Too long")]

    rows = list(csv.reader(io.StringIO(render_error_report(errors))))

    assert rows[1][2] == 'Ring "A", gold'


def test_report_streams_one_chunk_per_line():
    errors = [RowError(row=index, field="f", raw_value="v", message="m") for index in range(1, 4)]

    chunks = list(iter_error_report(errors))

    assert len(chunks) == 4
    assert all(chunk.endswith("\r\n") for chunk in chunks)


def test_report_file_name():
    assert report_file_name("abc") == "import-errors-abc.csv"
