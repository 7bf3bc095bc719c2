from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Sequence

import openpyxl
import pytest

from roster_app.importer.progress import InMemoryProgressStore


@pytest.fixture
def csv_file(tmp_path):
    """Write rows (header first) to a CSV file under ``tmp_path``."""

    def _factory(rows: Iterable[Sequence[object]], *, name: str = "donors.csv", bom: bool = False) -> Path:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8-sig" if bom else "utf-8") as handle:
            writer = csv.writer(handle)
            for row in rows:
                writer.writerow(row)
        return path

    return _factory


@pytest.fixture
def xlsx_file(tmp_path):
    """Write rows (header first) to the first sheet of an XLSX workbook."""

    def _factory(rows: Iterable[Sequence[object]], *, name: str = "donors.xlsx") -> Path:
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(list(row))
        path = tmp_path / name
        workbook.save(path)
        return path

    return _factory


@pytest.fixture
def memory_store():
    return InMemoryProgressStore()


@pytest.fixture
def many_rows_csv(csv_file):
    """Ten batches worth of distinct individual donors."""

    def _factory(count: int, *, name: str = "bulk.csv") -> Path:
        rows: list[Sequence[object]] = [("First Name", "Last Name", "Total Donations")]
        rows.extend((f"Person{index}", f"Bulk{index}", "10") for index in range(count))
        return csv_file(rows, name=name)

    return _factory
