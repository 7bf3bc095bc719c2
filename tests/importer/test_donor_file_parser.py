import io
from datetime import date
from decimal import Decimal

import pytest

from roster_app.errors import JobFatalError, SizeLimitExceeded, UnsupportedFormat
from roster_app.importer.adapters import FORMAT_CSV, FORMAT_XLS, FORMAT_XLSX, DonorFileParser, detect_format


def test_detect_format_prefers_extension_over_mimetype():
    assert detect_format("donors.CSV", "application/octet-stream") == FORMAT_CSV
    assert detect_format("donors.xlsx", "text/csv") == FORMAT_XLSX
    assert detect_format("legacy.xls") == FORMAT_XLS
    assert detect_format("upload", "text/csv") == FORMAT_CSV


@pytest.mark.parametrize(
    "filename, mimetype",
    [
        ("donors.txt", "text/plain"),
        ("donors.pdf", "application/pdf"),
        ("upload", "application/octet-stream"),
        (None, None),
    ],
)
def test_detect_format_rejects_unsupported_uploads(filename, mimetype):
    with pytest.raises(UnsupportedFormat) as excinfo:
        detect_format(filename, mimetype)

    assert excinfo.value.status_code == 400
    assert "CSV, XLS, or XLSX" in excinfo.value.message


def test_parser_enforces_size_limit(csv_file):
    path = csv_file([("first_name", "last_name"), ("Jane", "Doe")])

    with pytest.raises(SizeLimitExceeded) as excinfo:
        DonorFileParser(path, max_bytes=5)

    assert excinfo.value.details["max_bytes"] == 5
    assert excinfo.value.details["size_bytes"] > 5


def test_csv_aliases_resolve_to_canonical_fields(csv_file):
    path = csv_file(
        [
            ("First Name", "LastName", "Total Donations", "Last Gift Date", "Tags", "Deceased"),
            ("  Alice ", "Smith", "$1,250.50", "03/15/2024", "gala; board", "no"),
        ]
    )

    parser = DonorFileParser(path)
    rows = list(parser)

    assert parser.total_rows == 1
    assert len(rows) == 1
    row = rows[0]
    assert row.row_number == 2
    assert not row.has_errors
    assert row.values["first_name"] == "Alice"
    assert row.values["last_name"] == "Smith"
    assert row.values["total_donations"] == Decimal("1250.50")
    assert row.values["last_gift_date"] == date(2024, 3, 15)
    assert row.values["tags"] == frozenset({"gala", "board"})
    assert row.values["deceased"] is False


def test_csv_byte_order_mark_is_stripped_from_first_header(csv_file):
    path = csv_file([("first_name", "last_name"), ("Jane", "Doe")], bom=True)

    rows = list(DonorFileParser(path))

    assert rows[0].values == {"first_name": "Jane", "last_name": "Doe"}


def test_blank_rows_are_skipped_but_keep_row_numbers(csv_file):
    path = csv_file(
        [
            ("first_name", "last_name"),
            ("Jane", "Doe"),
            ("", ""),
            ("John", "Smith"),
        ]
    )

    parser = DonorFileParser(path)
    rows = list(parser)

    assert [row.row_number for row in rows] == [2, 4]
    assert parser.statistics.rows_consumed == 3
    assert parser.statistics.rows_skipped_blank == 1
    assert parser.statistics.rows_yielded == 2


def test_malformed_cells_become_row_parse_errors(csv_file):
    path = csv_file(
        [
            ("first_name", "last_name", "total_donations"),
            ("Jane", "Doe", "lots"),
            ("John", "Smith", "40"),
        ]
    )

    parser = DonorFileParser(path)
    rows = list(parser)

    assert len(rows) == 2
    bad, good = rows
    assert bad.has_errors
    assert bad.parse_errors[0].row == 2
    assert bad.parse_errors[0].column == "total_donations"
    assert "total_donations" not in bad.values
    assert not good.has_errors
    assert parser.statistics.rows_with_parse_errors == 1


def test_unrecognized_columns_are_kept_as_extras(csv_file):
    path = csv_file(
        [
            ("Donor Ref", "first_name", "last_name", "first_name"),
            ("A-17", "Jane", "Doe", "Janet"),
        ]
    )

    rows = list(DonorFileParser(path))

    assert rows[0].values["first_name"] == "Jane"
    assert rows[0].extras == {"Donor Ref": "A-17", "first_name": "Janet"}


def test_header_only_file_yields_no_rows(csv_file):
    path = csv_file([("first_name", "last_name")])

    parser = DonorFileParser(path)

    assert parser.total_rows == 0
    assert list(parser) == []


def test_parser_cannot_be_iterated_twice(csv_file):
    parser = DonorFileParser(csv_file([("first_name",), ("Jane",)]))
    list(parser)

    with pytest.raises(RuntimeError):
        iter(parser)


def test_parser_accepts_binary_stream_without_closing_it():
    stream = io.BytesIO(b"organization_name,total_donations\nAcme Foundation,500\n")

    parser = DonorFileParser(stream, filename="upload.csv")
    rows = list(parser)

    assert rows[0].values == {"organization_name": "Acme Foundation", "total_donations": Decimal("500")}
    assert not stream.closed


def test_xlsx_rows_are_read_from_first_sheet(xlsx_file):
    path = xlsx_file(
        [
            ("Organization Name", "Total Donations", "First Gift Date"),
            ("Acme Foundation", 2500, date(2019, 6, 1)),
            ("Beacon Trust", 125.5, None),
        ]
    )

    parser = DonorFileParser(path)
    rows = list(parser)

    assert parser.total_rows == 2
    assert [row.values["organization_name"] for row in rows] == ["Acme Foundation", "Beacon Trust"]
    assert rows[0].values["total_donations"] == Decimal("2500")
    assert rows[0].values["first_gift_date"] == date(2019, 6, 1)
    assert rows[1].values["total_donations"] == Decimal("125.5")
    assert "first_gift_date" not in rows[1].values


def test_corrupt_workbook_is_a_fatal_error(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a zip archive")

    parser = DonorFileParser(path)

    with pytest.raises(JobFatalError):
        parser.total_rows
