"""Canonical donor ingest contract definitions.

Declares every column the donor importer understands, the header synonyms that
resolve to it, and the coercion applied to raw cell values. Adapters share
these helpers so CSV, XLSX, and XLS uploads produce identical ``DonorRow``
payloads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Tuple

Coercer = Callable[[object | None], object | None]

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATOR_RE = re.compile(r"[\s\-\./]+")
_UNDERSCORE_RUN_RE = re.compile(r"_+")
_EPOCH_RE = re.compile(r"^\d+(\.0+)?$")

TRUE_TOKENS = frozenset({"yes", "y", "true", "t", "1"})
FALSE_TOKENS = frozenset({"no", "n", "false", "f", "0"})
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


class FieldCoercionError(ValueError):
    """Raised when a raw cell cannot be coerced to its canonical type."""


def _is_blank(value: object | None) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def coerce_text(value: object | None) -> str | None:
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def coerce_decimal(value: object | None) -> Decimal | None:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise FieldCoercionError(f"expected an amount, got {value!r}")
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    token = str(value).strip().replace(",", "").replace("$", "")
    negative = token.startswith("(") and token.endswith(")")
    if negative:
        token = token[1:-1]
    try:
        amount = Decimal(token)
    except InvalidOperation as exc:
        raise FieldCoercionError(f"'{value}' is not a valid amount") from exc
    if not amount.is_finite():
        raise FieldCoercionError(f"'{value}' is not a valid amount")
    return -amount if negative else amount


def coerce_date(value: object | None) -> date | None:
    """
    Parse ISO dates, ``MM/DD/YYYY`` dates, and Unix epoch seconds.

    ``0`` and blank cells mean "no date".
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise FieldCoercionError(f"expected a date, got {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    token = str(value).strip()
    if _EPOCH_RE.match(token):
        return _from_epoch(float(token))
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(token, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(token.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise FieldCoercionError(f"'{value}' is not a recognised date") from exc


def _from_epoch(seconds: float) -> date | None:
    if seconds == 0:
        return None
    try:
        return datetime.fromtimestamp(float(seconds), tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError) as exc:
        raise FieldCoercionError(f"'{seconds}' is not a valid timestamp") from exc


def coerce_bool(value: object | None) -> bool | None:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    token = str(value).strip().lower()
    if token in TRUE_TOKENS:
        return True
    if token in FALSE_TOKENS:
        return False
    raise FieldCoercionError(f"'{value}' is not a yes/no value")


def coerce_tags(value: object | None) -> frozenset[str] | None:
    if _is_blank(value):
        return None
    parts = re.split(r"[,;]", str(value))
    tags = frozenset(part.strip() for part in parts if part.strip())
    return tags or None


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical donor ingest field."""

    name: str
    description: str
    coercer: Coercer = coerce_text
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical header plus aliases for matching."""

        return (self.name, *self.aliases)


DONOR_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("first_name", "Individual given name.", aliases=("firstname", "first", "given_name")),
    FieldSpec("last_name", "Individual family name.", aliases=("lastname", "last", "surname")),
    FieldSpec("nick_name", "Preferred or informal name.", aliases=("nickname", "preferred_name")),
    FieldSpec(
        "organization_name",
        "Organization identity; mutually exclusive with an individual name.",
        aliases=("organizationname", "organization", "org_name", "company", "company_name"),
    ),
    FieldSpec("pmm", "Primary moves manager.", aliases=("primary_moves_manager",)),
    FieldSpec("smm", "Secondary moves manager.", aliases=("secondary_moves_manager",)),
    FieldSpec("vmm", "Volunteer moves manager.", aliases=("volunteer_moves_manager",)),
    FieldSpec("excluded", "Globally excluded from invitations.", coerce_bool, aliases=("exclude",)),
    FieldSpec("deceased", "Donor is deceased.", coerce_bool, aliases=("is_deceased",)),
    FieldSpec(
        "total_donations",
        "Lifetime donation total.",
        coerce_decimal,
        aliases=("totaldonations", "donations", "total_giving"),
    ),
    FieldSpec("total_pledges", "Lifetime pledge total.", coerce_decimal, aliases=("totalpledges", "pledges")),
    FieldSpec("largest_gift", "Largest single gift.", coerce_decimal, aliases=("largestgift",)),
    FieldSpec("largest_gift_appeal", "Appeal of the largest gift.", aliases=("largestgiftappeal",)),
    FieldSpec("first_gift_date", "Date of the first gift.", coerce_date, aliases=("firstgiftdate",)),
    FieldSpec("last_gift_date", "Date of the most recent gift.", coerce_date, aliases=("lastgiftdate",)),
    FieldSpec("last_gift_amount", "Amount of the most recent gift.", coerce_decimal, aliases=("lastgiftamount",)),
    FieldSpec(
        "last_gift_request",
        "Solicitation channel of the most recent gift.",
        aliases=("lastgiftrequest", "last_gift_channel"),
    ),
    FieldSpec("last_gift_appeal", "Appeal of the most recent gift.", aliases=("lastgiftappeal",)),
    FieldSpec(
        "address_line1",
        "Street address.",
        aliases=("address1", "addressline1", "address_line_1", "address", "street"),
    ),
    FieldSpec("address_line2", "Additional address line.", aliases=("address2", "addressline2", "address_line_2")),
    FieldSpec("city", "City or locality.", aliases=("town",)),
    FieldSpec("contact_phone_type", "Preferred phone type.", aliases=("contactphonetype", "phone_type")),
    FieldSpec("phone_restrictions", "Phone contact restrictions.", aliases=("phonerestrictions",)),
    FieldSpec("email_restrictions", "Email contact restrictions.", aliases=("emailrestrictions",)),
    FieldSpec(
        "communication_restrictions",
        "General communication restrictions.",
        aliases=("communicationrestrictions",),
    ),
    FieldSpec(
        "subscription_events_in_person",
        "Subscribed to in-person event announcements.",
        aliases=("subscriptioneventsinperson",),
    ),
    FieldSpec(
        "subscription_events_magazine",
        "Subscribed to the events magazine.",
        aliases=("subscriptioneventsmagazine",),
    ),
    FieldSpec(
        "communication_preference",
        "Preferred communication channel.",
        aliases=("communicationpreference",),
    ),
    FieldSpec("tags", "Free-text tags separated by commas or semicolons.", coerce_tags, aliases=("tag", "keywords")),
)


def normalize_header(header: object | None) -> str:
    """
    Normalize a column header for comparison.

    Strips BOM and whitespace, splits camelCase, lowercases, and collapses
    spaces, hyphens, dots, and slashes into single underscores.
    """

    token = str(header or "").replace("\ufeff", "").strip()
    token = _CAMEL_BOUNDARY_RE.sub("_", token)
    token = _SEPARATOR_RE.sub("_", token.lower())
    return _UNDERSCORE_RUN_RE.sub("_", token).strip("_")


def get_donor_field_specs() -> Tuple[FieldSpec, ...]:
    """Return the canonical donor field specifications."""

    return DONOR_CANONICAL_FIELDS


def get_donor_field_spec(name: str) -> FieldSpec:
    for spec in DONOR_CANONICAL_FIELDS:
        if spec.name == name:
            return spec
    raise KeyError(name)


def get_donor_alias_map() -> Mapping[str, str]:
    """Map normalized header tokens to canonical names (includes aliases)."""

    mapping: dict[str, str] = {}
    for spec in DONOR_CANONICAL_FIELDS:
        for header in spec.headers():
            mapping[normalize_header(header)] = spec.name
    return mapping


def resolve_header(header: object | None, alias_map: Mapping[str, str] | None = None) -> str | None:
    """Return the canonical field for ``header`` or ``None`` when unrecognized."""

    alias_map = alias_map if alias_map is not None else get_donor_alias_map()
    return alias_map.get(normalize_header(header))


def coerce_payload(payload: Mapping[str, Any]) -> tuple[dict[str, Any], list[tuple[str, str]]]:
    """
    Coerce a canonical-keyed payload.

    Returns the coerced values and a list of ``(field, message)`` failures; a
    failing field is left out of the values.
    """

    values: dict[str, Any] = {}
    failures: list[tuple[str, str]] = []
    for name, raw in payload.items():
        spec = get_donor_field_spec(name)
        try:
            coerced = spec.coercer(raw)
        except FieldCoercionError as exc:
            failures.append((name, str(exc)))
            continue
        if coerced is not None:
            values[name] = coerced
    return values, failures
