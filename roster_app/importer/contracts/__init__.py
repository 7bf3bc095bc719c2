"""Canonical ingest contract helpers for importer adapters."""

from __future__ import annotations

from .donor import (
    DONOR_CANONICAL_FIELDS,
    FieldCoercionError,
    FieldSpec,
    coerce_bool,
    coerce_date,
    coerce_decimal,
    coerce_payload,
    coerce_tags,
    coerce_text,
    get_donor_alias_map,
    get_donor_field_spec,
    get_donor_field_specs,
    normalize_header,
    resolve_header,
)

__all__ = [
    "FieldSpec",
    "FieldCoercionError",
    "DONOR_CANONICAL_FIELDS",
    "get_donor_field_specs",
    "get_donor_field_spec",
    "get_donor_alias_map",
    "normalize_header",
    "resolve_header",
    "coerce_payload",
    "coerce_text",
    "coerce_decimal",
    "coerce_date",
    "coerce_bool",
    "coerce_tags",
]
