# roster_app/services/auto_exclusion.py
"""
Auto-exclusion rules applied to pending list memberships.

A rule is a callable taking ``(membership, context)`` and returning an
exclusion reason, or ``None`` when the rule does not apply. Rules only ever
move ``Pending`` memberships to ``AutoExcluded``.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Set

from roster_app.models import DonorListMembership, MembershipStatus, normalize_identity_part

REASON_GLOBALLY_EXCLUDED = "Donor is globally excluded"
REASON_DECEASED = "Donor is deceased"
REASON_SHARED_HOUSEHOLD = "Household already auto-excluded from this list"


@dataclass
class AutoExclusionContext:
    """State shared by the rules during one pass over a list"""

    excluded_household_keys: Set[str] = field(default_factory=set)


AutoExclusionRule = Callable[[DonorListMembership, AutoExclusionContext], Optional[str]]


def household_key(membership: DonorListMembership) -> Optional[str]:
    """Normalized street address plus city, or None when either is missing."""
    donor = membership.donor
    if donor is None:
        return None
    address = normalize_identity_part(donor.address_line1)
    city = normalize_identity_part(donor.city)
    if not address or not city:
        return None
    return f"{address}|{city}"


def globally_excluded_rule(membership, context):
    if membership.donor is not None and membership.donor.excluded:
        return REASON_GLOBALLY_EXCLUDED
    return None


def deceased_rule(membership, context):
    if membership.donor is not None and membership.donor.deceased:
        return REASON_DECEASED
    return None


def shared_household_rule(membership, context):
    key = household_key(membership)
    if key is not None and key in context.excluded_household_keys:
        return REASON_SHARED_HOUSEHOLD
    return None


DEFAULT_RULES: List[AutoExclusionRule] = [
    globally_excluded_rule,
    deceased_rule,
    shared_household_rule,
]


def _first_reason(rules, membership, context):
    for rule in rules:
        reason = rule(membership, context)
        if reason:
            return reason
    return None


@dataclass
class AutoExclusionOutcome:
    membership_id: int
    donor_id: int
    reason: str


def apply_auto_exclusions(
    memberships: Iterable[DonorListMembership],
    rules: Optional[Iterable[AutoExclusionRule]] = None,
) -> List[AutoExclusionOutcome]:
    """
    Run ``rules`` over ``memberships`` and auto-exclude matching pending entries.

    The first rule returning a reason wins. Households of memberships that are
    already auto-excluded seed the shared-household rule, and each new
    exclusion extends that set. Passes repeat until one excludes nothing, so
    the result does not depend on the order of ``memberships``. Does not flush
    or commit.
    """
    rules = list(rules) if rules is not None else DEFAULT_RULES
    memberships = list(memberships)
    context = AutoExclusionContext()
    for membership in memberships:
        if membership.status == MembershipStatus.AUTO_EXCLUDED:
            key = household_key(membership)
            if key is not None:
                context.excluded_household_keys.add(key)

    outcomes = []
    excluded_in_pass = True
    while excluded_in_pass:
        excluded_in_pass = False
        for membership in memberships:
            if membership.status != MembershipStatus.PENDING:
                continue
            reason = _first_reason(rules, membership, context)
            if reason is None:
                continue
            membership.status = MembershipStatus.AUTO_EXCLUDED
            membership.exclude_reason = reason
            membership.auto_excluded = True
            membership.reviewer_id = None
            membership.reviewed_at = None
            key = household_key(membership)
            if key is not None:
                context.excluded_household_keys.add(key)
            outcomes.append(
                AutoExclusionOutcome(membership_id=membership.id, donor_id=membership.donor_id, reason=reason)
            )
            excluded_in_pass = True
    return outcomes
