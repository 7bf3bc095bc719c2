"""
Resolve parsed donor rows against the donor pool and apply the create-or-merge rule.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from roster_app.errors import RowError
from roster_app.importer.adapters import DonorRow
from roster_app.models import Donor, build_identity_key, db, parse_tags, serialize_tags

MISSING_IDENTITY_MESSAGE = "missing identity"

IDENTITY_FIELDS = ("first_name", "last_name", "organization_name")
ADDITIVE_FIELDS = ("total_donations", "total_pledges")
_RULED_FIELDS = frozenset(
    IDENTITY_FIELDS
    + ADDITIVE_FIELDS
    + ("largest_gift", "largest_gift_appeal", "first_gift_date", "last_gift_date", "tags")
)

# Columns a merge may touch; identity columns never change after creation.
MERGEABLE_FIELDS = (
    "nick_name",
    "total_donations",
    "total_pledges",
    "largest_gift",
    "largest_gift_appeal",
    "first_gift_date",
    "last_gift_date",
    "last_gift_amount",
    "last_gift_request",
    "last_gift_appeal",
    "pmm",
    "smm",
    "vmm",
    "address_line1",
    "address_line2",
    "city",
    "contact_phone_type",
    "phone_restrictions",
    "email_restrictions",
    "communication_restrictions",
    "subscription_events_in_person",
    "subscription_events_magazine",
    "communication_preference",
    "tags",
    "excluded",
    "deceased",
)


class RowOutcome(str, enum.Enum):
    """Per-row result of reconciliation."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    outcome: RowOutcome
    row_number: int
    donor_id: int | None = None
    errors: tuple[RowError, ...] = ()


@dataclass(frozen=True, slots=True)
class ResolvedIdentity:
    key: str
    fields: Mapping[str, Any]
    is_organization: bool


def resolve_identity(values: Mapping[str, Any]) -> ResolvedIdentity | None:
    """
    Pick exactly one identity for a row.

    A full individual name wins; the organization name is then dropped. A lone
    first or last name with no organization resolves to nothing.
    """

    first = values.get("first_name")
    last = values.get("last_name")
    organization = values.get("organization_name")
    key = build_identity_key(first, last, organization)
    if key is None:
        return None
    if key.startswith("ind:"):
        return ResolvedIdentity(
            key=key,
            fields={"first_name": first, "last_name": last, "organization_name": None},
            is_organization=False,
        )
    return ResolvedIdentity(
        key=key,
        fields={"first_name": None, "last_name": None, "organization_name": organization},
        is_organization=True,
    )


def _sum(existing: Decimal | None, incoming: Decimal | None) -> Decimal | None:
    if incoming is None:
        return existing
    return (existing or Decimal("0")) + incoming


def merge_donor_fields(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge an incoming row into an existing donor snapshot without side effects.

    Aggregates add, ``largest_gift`` only grows, the first gift date only moves
    earlier and the last gift date only later, and tags union. Any other scalar,
    the exclusion flags and last gift details included, is replaced only by a
    present incoming value.
    """

    merged: dict[str, Any] = {name: existing.get(name) for name in MERGEABLE_FIELDS}

    for name in ADDITIVE_FIELDS:
        merged[name] = _sum(existing.get(name), incoming.get(name))

    incoming_gift = incoming.get("largest_gift")
    existing_gift = existing.get("largest_gift")
    if incoming_gift is not None and (existing_gift is None or incoming_gift > existing_gift):
        merged["largest_gift"] = incoming_gift
        merged["largest_gift_appeal"] = incoming.get("largest_gift_appeal")

    dates = [value for value in (existing.get("first_gift_date"), incoming.get("first_gift_date")) if value]
    merged["first_gift_date"] = min(dates) if dates else None

    existing_last: date | None = existing.get("last_gift_date")
    incoming_last: date | None = incoming.get("last_gift_date")
    incoming_is_latest = incoming_last is not None and (existing_last is None or incoming_last >= existing_last)
    if incoming_is_latest:
        merged["last_gift_date"] = incoming_last

    merged["tags"] = serialize_tags(parse_tags(existing.get("tags")) | parse_tags(incoming.get("tags")))

    for name in MERGEABLE_FIELDS:
        if name in _RULED_FIELDS:
            continue
        if incoming.get(name) is not None:
            merged[name] = incoming[name]

    return merged


def donor_snapshot(donor: Donor) -> dict[str, Any]:
    return {name: getattr(donor, name) for name in MERGEABLE_FIELDS}


def build_new_donor_fields(identity: ResolvedIdentity, values: Mapping[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {name: values[name] for name in MERGEABLE_FIELDS if values.get(name) is not None}
    fields.update(identity.fields)
    fields["identity_key"] = identity.key
    fields["total_donations"] = values.get("total_donations") or Decimal("0")
    fields["total_pledges"] = values.get("total_pledges") or Decimal("0")
    fields["excluded"] = bool(values.get("excluded"))
    fields["deceased"] = bool(values.get("deceased"))
    fields["tags"] = serialize_tags(values.get("tags"))
    return fields


class DonorReconciler:
    """
    Apply create-or-merge for one row at a time inside the caller's transaction.

    The unique ``identity_key`` is the serialization point between concurrent
    imports: each insert runs in a SAVEPOINT and a losing insert is replayed as
    a merge against the winning row. Merges get their own SAVEPOINT too, so a
    row the database rejects only rolls back itself.
    """

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def _find(self, identity_key: str) -> Donor | None:
        return self.session.execute(select(Donor).where(Donor.identity_key == identity_key)).scalar_one_or_none()

    def reconcile(self, row: DonorRow) -> ReconcileResult:
        if row.parse_errors:
            return ReconcileResult(outcome=RowOutcome.SKIPPED, row_number=row.row_number, errors=row.parse_errors)

        identity = resolve_identity(row.values)
        if identity is None:
            error = RowError(
                row=row.row_number,
                error=MISSING_IDENTITY_MESSAGE,
                unrecognized_columns=tuple(row.extras.keys()),
            )
            return ReconcileResult(outcome=RowOutcome.ERROR, row_number=row.row_number, errors=(error,))

        try:
            existing = self._find(identity.key)
            if existing is not None:
                self._merge(existing, row.values)
                return ReconcileResult(outcome=RowOutcome.UPDATED, row_number=row.row_number, donor_id=existing.id)
            return self._create_or_merge(identity, row)
        except ValueError as exc:
            return self._row_error(row, str(exc))
        except (DataError, IntegrityError) as exc:
            # Every write happens inside a savepoint, so only this row was rolled back.
            if has_app_context():
                current_app.logger.warning(
                    "Donor row rejected by the database",
                    extra={"donor_identity_key": identity.key, "row_number": row.row_number},
                )
            return self._row_error(row, f"database rejected row: {exc.__class__.__name__}")

    @staticmethod
    def _row_error(row: DonorRow, message: str) -> ReconcileResult:
        error = RowError(row=row.row_number, error=message)
        return ReconcileResult(outcome=RowOutcome.ERROR, row_number=row.row_number, errors=(error,))

    def _merge(self, donor: Donor, values: Mapping[str, Any]) -> None:
        merged = merge_donor_fields(donor_snapshot(donor), values)
        with self.session.begin_nested():
            for name, value in merged.items():
                if getattr(donor, name) != value:
                    setattr(donor, name, value)
            self.session.flush()

    def _create_or_merge(self, identity: ResolvedIdentity, row: DonorRow) -> ReconcileResult:
        try:
            with self.session.begin_nested():
                donor = Donor(**build_new_donor_fields(identity, row.values))
                self.session.add(donor)
                self.session.flush()
        except IntegrityError:
            winner = self._find(identity.key)
            if winner is None:
                raise
            if has_app_context():
                current_app.logger.info(
                    "Donor identity created concurrently; merging row into existing donor",
                    extra={"donor_identity_key": identity.key, "donor_id": winner.id, "row_number": row.row_number},
                )
            self._merge(winner, row.values)
            return ReconcileResult(outcome=RowOutcome.UPDATED, row_number=row.row_number, donor_id=winner.id)
        return ReconcileResult(outcome=RowOutcome.CREATED, row_number=row.row_number, donor_id=donor.id)
