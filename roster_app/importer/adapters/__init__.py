"""Importer adapters that turn uploaded files into canonical donor rows."""

from __future__ import annotations

from .donor_file import (
    FORMAT_CSV,
    FORMAT_XLS,
    FORMAT_XLSX,
    DonorFileParser,
    DonorFileStatistics,
    DonorRow,
    detect_format,
    enforce_size_limit,
)

__all__ = [
    "DonorFileParser",
    "DonorFileStatistics",
    "DonorRow",
    "detect_format",
    "enforce_size_limit",
    "FORMAT_CSV",
    "FORMAT_XLSX",
    "FORMAT_XLS",
]
