"""
Build the donor review list for an event from its eligibility criteria.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import func, literal, select
from sqlalchemy.orm import Session

from roster_app.errors import EventNotEditable, InvalidCriteria, NotFoundError, RegenerationRequiresConfirmation
from roster_app.importer.metrics import record_list_generated
from roster_app.models import Donor, DonorList, DonorListMembership, Event, EventStatus, MembershipStatus, db

from .auto_exclusion import AutoExclusionRule, apply_auto_exclusions
from .review_service import recount_donor_list

GENERATION_STATUSES = frozenset({EventStatus.PLANNING, EventStatus.LIST_GENERATION, EventStatus.REVIEW})


def _coerce_min_giving_level(value: Any) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidCriteria("min_giving_level is required.")
    if isinstance(value, bool):
        raise InvalidCriteria("min_giving_level must be a number.", details={"min_giving_level": value})
    try:
        level = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidCriteria("min_giving_level must be a number.", details={"min_giving_level": value}) from exc
    if not level.is_finite():
        raise InvalidCriteria("min_giving_level must be a finite number.", details={"min_giving_level": value})
    if level < 0:
        raise InvalidCriteria("min_giving_level must be zero or greater.", details={"min_giving_level": value})
    return level


def _coerce_size(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidCriteria("size must be a positive integer.", details={"size": value})
    try:
        size = int(str(value).strip())
    except ValueError as exc:
        raise InvalidCriteria("size must be a positive integer.", details={"size": value}) from exc
    if size <= 0:
        raise InvalidCriteria("size must be a positive integer.", details={"size": value})
    return size


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ListCriteria:
    """Eligibility criteria applied when generating a list."""

    min_giving_level: Decimal
    focus: str | None = None
    city: str | None = None
    size: int | None = None

    @classmethod
    def for_event(cls, event: Event, overrides: Mapping[str, Any] | None = None) -> "ListCriteria":
        """
        Merge request overrides over the event's stored criteria and validate.

        ``size`` falls back to the event capacity; without either the list is
        unbounded.
        """
        overrides = overrides or {}
        level = overrides.get("min_giving_level", event.criteria_min_giving_level)
        focus = overrides["focus"] if "focus" in overrides else event.focus
        city = overrides["city"] if "city" in overrides else event.criteria_city
        size = _coerce_size(overrides.get("size"))
        if size is None and event.capacity:
            size = _coerce_size(event.capacity)
        return cls(
            min_giving_level=_coerce_min_giving_level(level),
            focus=_clean_optional(focus),
            city=_clean_optional(city),
            size=size,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_giving_level": float(self.min_giving_level),
            "focus": self.focus,
            "city": self.city,
            "size": self.size,
        }


def build_eligibility_query(criteria: ListCriteria):
    """Select eligible donors ordered by total donations (desc) then id."""
    query = select(Donor).where(
        Donor.excluded.is_(False),
        Donor.deceased.is_(False),
        Donor.total_donations >= criteria.min_giving_level,
    )
    if criteria.city:
        query = query.where(func.lower(Donor.city) == criteria.city.lower())
    if criteria.focus:
        # Tags are stored sorted and comma-joined, so wrap in commas to match whole tags.
        wrapped_tags = func.lower(literal(",") + Donor.tags + literal(","))
        query = query.where(wrapped_tags.contains(f",{criteria.focus.lower()},", autoescape=True))
    query = query.order_by(Donor.total_donations.desc(), Donor.id.asc())
    if criteria.size is not None:
        query = query.limit(criteria.size)
    return query


class ListGenerator:
    """Create or regenerate the donor list for an event."""

    def __init__(self, session: Session | None = None, rules: Iterable[AutoExclusionRule] | None = None):
        self.session = session or db.session
        self.rules = rules

    def generate(
        self,
        event_id: int,
        *,
        generated_by: int | None = None,
        criteria_overrides: Mapping[str, Any] | None = None,
        confirm_regenerate: bool = False,
        auto_exclude: bool | None = None,
    ) -> DonorList:
        event = self.session.get(Event, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found.", details={"event_id": event_id})
        if event.status not in GENERATION_STATUSES:
            raise EventNotEditable(
                f"Cannot generate a donor list while the event is {event.status.value}.",
                details={"event_id": event_id, "event_status": event.status.value},
            )

        criteria = ListCriteria.for_event(event, criteria_overrides)
        if auto_exclude is None:
            auto_exclude = bool(current_app.config.get("LIST_AUTO_EXCLUDE_ON_GENERATE", True))

        donor_list = event.donor_list
        regenerated = donor_list is not None
        if regenerated and not confirm_regenerate:
            raise RegenerationRequiresConfirmation(
                "A donor list already exists for this event; confirm to regenerate and discard reviewer decisions.",
                details={
                    "event_id": event_id,
                    "donor_list_id": donor_list.id,
                    "total_donors": donor_list.total_donors,
                    "reviewed": donor_list.approved + donor_list.excluded,
                },
            )

        try:
            discarded = 0
            if regenerated:
                discarded = self._discard_memberships(donor_list)
                donor_list.generated_by_user_id = generated_by
            else:
                donor_list = DonorList(
                    event=event,
                    name=f"{event.name} Donor List",
                    generated_by_user_id=generated_by,
                )
                self.session.add(donor_list)

            donors = self.session.scalars(build_eligibility_query(criteria)).all()
            for donor in donors:
                donor_list.memberships.append(DonorListMembership(donor=donor, status=MembershipStatus.PENDING))
            self.session.flush()

            auto_excluded = []
            if auto_exclude:
                auto_excluded = apply_auto_exclusions(donor_list.memberships, self.rules)

            recount_donor_list(self.session, donor_list)
            if event.status != EventStatus.REVIEW:
                event.transition_to(EventStatus.REVIEW)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        record_list_generated(regenerated=regenerated)
        log_extra = {
            "event_id": event_id,
            "donor_list_id": donor_list.id,
            "total_donors": donor_list.total_donors,
            "auto_excluded_count": len(auto_excluded),
            "criteria": criteria.to_dict(),
        }
        if regenerated:
            current_app.logger.warning(
                "Donor list regenerated; %s reviewer decisions discarded",
                discarded,
                extra={**log_extra, "discarded_decisions": discarded},
            )
        else:
            current_app.logger.info("Donor list generated", extra=log_extra)
        return donor_list

    def _discard_memberships(self, donor_list: DonorList) -> int:
        """Drop every membership of ``donor_list`` and return how many had reviewer decisions."""
        reviewed = sum(
            1
            for membership in donor_list.memberships
            if membership.status in (MembershipStatus.APPROVED, MembershipStatus.EXCLUDED)
        )
        donor_list.memberships.clear()
        self.session.flush()
        return reviewed
