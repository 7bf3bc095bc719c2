"""Donor file adapter for CSV, XLSX, and legacy XLS uploads.

Validates the declared format and size, resolves heterogeneous column headers
against the donor contract, and streams ``DonorRow`` records lazily in file
order. Malformed cells never abort the stream; they surface as per-row parse
errors for the reconciler to skip.
"""

from __future__ import annotations

import csv
import io
import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Iterator, Mapping, Sequence

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from roster_app.errors import JobFatalError, RowError, SizeLimitExceeded, UnsupportedFormat
from roster_app.importer.contracts import coerce_payload, get_donor_alias_map, normalize_header

FORMAT_CSV = "csv"
FORMAT_XLSX = "xlsx"
FORMAT_XLS = "xls"

EXTENSION_FORMATS: Mapping[str, str] = {
    ".csv": FORMAT_CSV,
    ".xlsx": FORMAT_XLSX,
    ".xls": FORMAT_XLS,
}

MIME_FORMATS: Mapping[str, str] = {
    "text/csv": FORMAT_CSV,
    "application/csv": FORMAT_CSV,
    "text/plain": FORMAT_CSV,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FORMAT_XLSX,
    "application/vnd.ms-excel": FORMAT_XLS,
}

# The file extension wins over the declared MIME type.
_GENERIC_MIME_TYPES = frozenset({"application/octet-stream", "binary/octet-stream", ""})


@dataclass(frozen=True, slots=True)
class DonorRow:
    """One parsed spreadsheet row with canonical values and passthrough extras."""

    row_number: int
    values: Mapping[str, Any]
    extras: Mapping[str, Any] = field(default_factory=dict)
    parse_errors: tuple[RowError, ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.parse_errors)


@dataclass
class DonorFileStatistics:
    """Accumulated statistics from file parsing."""

    rows_consumed: int = 0
    rows_yielded: int = 0
    rows_skipped_blank: int = 0
    rows_with_parse_errors: int = 0


def detect_format(filename: str | None, mimetype: str | None = None) -> str:
    """Return the parser format for an upload or raise ``UnsupportedFormat``."""

    extension = Path(filename or "").suffix.lower()
    by_extension = EXTENSION_FORMATS.get(extension)
    if by_extension is not None:
        return by_extension
    mime = (mimetype or "").split(";")[0].strip().lower()
    if mime not in _GENERIC_MIME_TYPES and mime in MIME_FORMATS and not extension:
        return MIME_FORMATS[mime]
    raise UnsupportedFormat(
        "Unsupported file type. Upload a CSV, XLS, or XLSX file.",
        details={"filename": filename, "mimetype": mimetype},
    )


def enforce_size_limit(size_bytes: int, max_bytes: int | None) -> None:
    if max_bytes is not None and size_bytes > max_bytes:
        raise SizeLimitExceeded(
            f"File is {size_bytes} bytes; the limit is {max_bytes} bytes.",
            details={"size_bytes": size_bytes, "max_bytes": max_bytes},
        )


def _row_is_blank(cells: Sequence[Any]) -> bool:
    return all(cell is None or (isinstance(cell, str) and cell.strip() == "") for cell in cells)


def _header_label(value: Any, index: int) -> str:
    if value is None or str(value).strip() == "":
        return f"column_{index + 1}"
    return str(value).replace("\ufeff", "").strip()


class DonorFileParser:
    """
    Single-use reader producing ``DonorRow`` records.

    ``source`` is a filesystem path or a binary file object. Iteration is lazy
    and cannot be restarted; ``total_rows`` is known before iteration starts
    (``None`` when the sheet does not declare its dimension).
    """

    def __init__(
        self,
        source: str | os.PathLike[str] | IO[bytes],
        *,
        filename: str | None = None,
        mimetype: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self._source = source
        if filename is None and isinstance(source, (str, os.PathLike)):
            filename = os.fspath(source)
        self.filename = filename
        self.format = detect_format(filename, mimetype)
        self.size_bytes = self._measure_size()
        enforce_size_limit(self.size_bytes, max_bytes)
        self.statistics = DonorFileStatistics()
        self.header: tuple[str, ...] = ()
        self._total_rows: int | None = None
        self._total_resolved = False
        self._started = False
        self._alias_map = get_donor_alias_map()

    def _measure_size(self) -> int:
        if isinstance(self._source, (str, os.PathLike)):
            return os.path.getsize(self._source)
        handle = self._source
        position = handle.tell()
        handle.seek(0, io.SEEK_END)
        size = handle.tell()
        handle.seek(position)
        return size

    def _open_binary(self) -> IO[bytes]:
        if isinstance(self._source, (str, os.PathLike)):
            return open(self._source, "rb")
        self._source.seek(0)
        return _NonClosingStream(self._source)

    @property
    def total_rows(self) -> int | None:
        """Number of data rows (header excluded), or ``None`` when indeterminate."""

        if not self._total_resolved:
            self._total_rows = self._count_rows()
            self._total_resolved = True
        return self._total_rows

    def _count_rows(self) -> int | None:
        try:
            if self.format == FORMAT_CSV:
                with self._open_binary() as raw:
                    text = io.TextIOWrapper(raw, encoding="utf-8-sig", newline="")
                    try:
                        count = sum(1 for _ in csv.reader(text))
                    finally:
                        text.detach()
                return max(count - 1, 0)
            if self.format == FORMAT_XLSX:
                with self._open_binary() as raw:
                    workbook = openpyxl.load_workbook(raw, read_only=True, data_only=True)
                    try:
                        max_row = workbook.worksheets[0].max_row if workbook.worksheets else 0
                    finally:
                        workbook.close()
                if max_row is None:
                    return None
                return max(max_row - 1, 0)
            with self._open_binary() as raw:
                book = xlrd.open_workbook(file_contents=raw.read(), on_demand=True)
                try:
                    nrows = book.sheet_by_index(0).nrows if book.nsheets else 0
                finally:
                    book.release_resources()
            return max(nrows - 1, 0)
        except _UNREADABLE_ERRORS as exc:
            raise JobFatalError(f"Unable to read {self.format.upper()} file: {exc}") from exc

    def __iter__(self) -> Iterator[DonorRow]:
        if self._started:
            raise RuntimeError("DonorFileParser can only be iterated once")
        self._started = True
        return self._iter_rows()

    def _iter_rows(self) -> Iterator[DonorRow]:
        raw_rows = self._iter_raw_rows()
        try:
            header_cells = next(raw_rows, None)
            if header_cells is None:
                return
            self.header = tuple(_header_label(cell, index) for index, cell in enumerate(header_cells))
            columns = self._resolve_columns(self.header)
            for offset, cells in enumerate(raw_rows):
                self.statistics.rows_consumed += 1
                if _row_is_blank(cells):
                    self.statistics.rows_skipped_blank += 1
                    continue
                row = self._build_row(offset + 2, cells, columns)
                self.statistics.rows_yielded += 1
                if row.has_errors:
                    self.statistics.rows_with_parse_errors += 1
                yield row
        finally:
            raw_rows.close()

    def _resolve_columns(self, header: Sequence[str]) -> list[tuple[str, str | None]]:
        """Pair each raw header with its canonical field (first occurrence wins)."""

        seen: set[str] = set()
        columns: list[tuple[str, str | None]] = []
        for label in header:
            canonical = self._alias_map.get(normalize_header(label))
            if canonical is not None and canonical in seen:
                canonical = None
            if canonical is not None:
                seen.add(canonical)
            columns.append((label, canonical))
        return columns

    def _build_row(self, row_number: int, cells: Sequence[Any], columns: Sequence[tuple[str, str | None]]) -> DonorRow:
        payload: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for index, cell in enumerate(cells):
            if index < len(columns):
                label, canonical = columns[index]
            else:
                label, canonical = f"column_{index + 1}", None
            if canonical is None:
                if cell is not None and not (isinstance(cell, str) and cell.strip() == ""):
                    extras[label] = cell
                continue
            payload[canonical] = cell
        values, failures = coerce_payload(payload)
        parse_errors = tuple(
            RowError(row=row_number, error=f"Invalid {column}: {message}", column=column)
            for column, message in failures
        )
        return DonorRow(row_number=row_number, values=values, extras=extras, parse_errors=parse_errors)

    def _iter_raw_rows(self) -> Iterator[Sequence[Any]]:
        if self.format == FORMAT_CSV:
            return self._iter_csv()
        if self.format == FORMAT_XLSX:
            return self._iter_xlsx()
        return self._iter_xls()

    def _iter_csv(self) -> Iterator[Sequence[Any]]:
        try:
            with self._open_binary() as raw:
                text = io.TextIOWrapper(raw, encoding="utf-8-sig", newline="")
                try:
                    yield from csv.reader(text)
                finally:
                    text.detach()
        except (UnicodeDecodeError, csv.Error) as exc:
            raise JobFatalError(f"Unable to read CSV file: {exc}") from exc

    def _iter_xlsx(self) -> Iterator[Sequence[Any]]:
        raw = self._open_binary()
        try:
            workbook = openpyxl.load_workbook(raw, read_only=True, data_only=True)
        except _UNREADABLE_ERRORS as exc:
            raw.close()
            raise JobFatalError(f"Unable to read XLSX file: {exc}") from exc
        try:
            if not workbook.worksheets:
                return
            yield from workbook.worksheets[0].iter_rows(values_only=True)
        finally:
            workbook.close()
            raw.close()

    def _iter_xls(self) -> Iterator[Sequence[Any]]:
        try:
            with self._open_binary() as raw:
                book = xlrd.open_workbook(file_contents=raw.read(), on_demand=True)
        except _UNREADABLE_ERRORS as exc:
            raise JobFatalError(f"Unable to read XLS file: {exc}") from exc
        try:
            if not book.nsheets:
                return
            sheet = book.sheet_by_index(0)
            for row_index in range(sheet.nrows):
                yield [_xls_cell_value(cell, book.datemode) for cell in sheet.row(row_index)]
        finally:
            book.release_resources()


def _xls_cell_value(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return cell.value


class _NonClosingStream(io.BufferedIOBase):
    """Wrap a caller-owned stream so parser cleanup does not close it."""

    def __init__(self, stream: IO[bytes]) -> None:
        super().__init__()
        self._stream = stream

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        return self._stream.read(size)

    def read1(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def readinto(self, buffer) -> int:
        data = self._stream.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._stream.seek(offset, whence)

    def tell(self) -> int:
        return self._stream.tell()

    def close(self) -> None:
        super().close()


_UNREADABLE_ERRORS = (
    OSError,
    UnicodeDecodeError,
    csv.Error,
    zipfile.BadZipFile,
    InvalidFileException,
    KeyError,
    xlrd.XLRDError,
)
