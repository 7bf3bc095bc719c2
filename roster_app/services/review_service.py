"""
Review state machine for donor list memberships.

Every mutation locks the owning list row, applies the transition, recounts the
list counters from the memberships table and commits, all in one transaction.
Concurrent reviewers of the same list therefore serialize on the list row.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from roster_app.errors import EventNotEditable, InvalidTransition, NotFoundError, ValidationError
from roster_app.importer.metrics import record_review_transition
from roster_app.models import Donor, DonorList, DonorListMembership, MembershipStatus, ReviewStatus, db
from roster_app.models.base import utcnow

from .auto_exclusion import AutoExclusionOutcome, AutoExclusionRule, apply_auto_exclusions

ACTION_APPROVE = "approve"
ACTION_EXCLUDE = "exclude"
ACTION_REOPEN = "reopen"
MEMBERSHIP_ACTIONS = (ACTION_APPROVE, ACTION_EXCLUDE, ACTION_REOPEN)

_COUNTER_COLUMNS = {
    MembershipStatus.APPROVED: "approved",
    MembershipStatus.EXCLUDED: "excluded",
    MembershipStatus.PENDING: "pending",
    MembershipStatus.AUTO_EXCLUDED: "auto_excluded",
}


def recount_donor_list(session: Session, donor_list: DonorList) -> DonorList:
    """
    Recompute the list counters and review status with one grouped COUNT.

    Counters are never adjusted incrementally, so any earlier drift is
    corrected here.
    """
    session.flush()
    rows = session.execute(
        select(DonorListMembership.status, func.count(DonorListMembership.id))
        .where(DonorListMembership.donor_list_id == donor_list.id)
        .group_by(DonorListMembership.status)
    ).all()
    counts = {status: count for status, count in rows}
    for status, column in _COUNTER_COLUMNS.items():
        setattr(donor_list, column, int(counts.get(status, 0)))
    donor_list.total_donors = sum(int(count) for count in counts.values())
    donor_list.review_status = ReviewStatus.COMPLETED if donor_list.pending == 0 else ReviewStatus.PENDING
    return donor_list


def _clean_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class DonorListReviewService:
    """Reviewer-facing operations on one donor list."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def get_list(self, list_id: int) -> DonorList:
        donor_list = self.session.get(DonorList, list_id)
        if donor_list is None:
            raise NotFoundError(f"Donor list {list_id} not found.", details={"list_id": list_id})
        return donor_list

    def lock_list(self, list_id: int) -> DonorList:
        """Load the list with a row lock (``SELECT ... FOR UPDATE``; a no-op on SQLite)."""
        donor_list = self.session.execute(
            select(DonorList)
            .where(DonorList.id == list_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if donor_list is None:
            raise NotFoundError(f"Donor list {list_id} not found.", details={"list_id": list_id})
        return donor_list

    def _get_membership(self, donor_list: DonorList, membership_id: int) -> DonorListMembership:
        membership = self.session.get(DonorListMembership, membership_id)
        if membership is None or membership.donor_list_id != donor_list.id:
            raise NotFoundError(
                f"Membership {membership_id} not found in donor list {donor_list.id}.",
                details={"list_id": donor_list.id, "membership_id": membership_id},
            )
        return membership

    @staticmethod
    def _ensure_editable(donor_list: DonorList) -> None:
        event = donor_list.event
        if event is None or not event.allows_list_edits():
            status = event.status.value if event is not None and event.status else None
            raise EventNotEditable(
                f"Donor list {donor_list.id} cannot be edited while its event is {status}.",
                details={"list_id": donor_list.id, "event_status": status},
            )

    @contextmanager
    def _editing(self, list_id: int) -> Iterator[DonorList]:
        try:
            donor_list = self.lock_list(list_id)
            self._ensure_editable(donor_list)
            yield donor_list
            recount_donor_list(self.session, donor_list)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # Single transitions

    def approve(self, list_id, membership_id, *, reviewer_id=None, reason=None, comments=None):
        if _clean_text(reason) is not None:
            raise ValidationError("Approved memberships do not take an exclusion reason.")
        with self._editing(list_id) as donor_list:
            membership = self._get_membership(donor_list, membership_id)
            self._ensure_pending(membership, ACTION_APPROVE)
            membership.status = MembershipStatus.APPROVED
            membership.exclude_reason = None
            membership.auto_excluded = False
            self._stamp(membership, reviewer_id, comments)
        self._log_transition(membership, ACTION_APPROVE, reviewer_id)
        return membership

    def exclude(self, list_id, membership_id, *, reviewer_id=None, reason=None, comments=None):
        reason = _clean_text(reason)
        if reason is None:
            raise ValidationError("An exclusion reason is required.")
        with self._editing(list_id) as donor_list:
            membership = self._get_membership(donor_list, membership_id)
            self._ensure_pending(membership, ACTION_EXCLUDE)
            membership.status = MembershipStatus.EXCLUDED
            membership.exclude_reason = reason
            membership.auto_excluded = False
            self._stamp(membership, reviewer_id, comments)
        self._log_transition(membership, ACTION_EXCLUDE, reviewer_id)
        return membership

    def reopen(self, list_id, membership_id, *, reviewer_id=None, comments=None):
        """Return a decided membership to ``Pending``, clearing the previous decision."""
        with self._editing(list_id) as donor_list:
            membership = self._get_membership(donor_list, membership_id)
            previous = membership.status
            if not previous.is_terminal:
                raise InvalidTransition(
                    f"Membership {membership_id} is already Pending.",
                    details={"membership_id": membership_id, "status": previous.value},
                )
            membership.status = MembershipStatus.PENDING
            membership.exclude_reason = None
            membership.auto_excluded = False
            membership.reviewer_id = None
            membership.reviewed_at = None
            if comments is not None:
                membership.comments = _clean_text(comments)
        current_app.logger.info(
            "Donor list membership reopened",
            extra={
                "list_id": list_id,
                "membership_id": membership_id,
                "donor_id": membership.donor_id,
                "previous_status": previous.value,
                "reopened_by": reviewer_id,
            },
        )
        record_review_transition(ACTION_REOPEN)
        return membership

    def apply_action(self, list_id, membership_id, action, *, reviewer_id=None, reason=None, comments=None):
        action = (action or "").strip().lower()
        if action == ACTION_APPROVE:
            return self.approve(list_id, membership_id, reviewer_id=reviewer_id, reason=reason, comments=comments)
        if action == ACTION_EXCLUDE:
            return self.exclude(list_id, membership_id, reviewer_id=reviewer_id, reason=reason, comments=comments)
        if action == ACTION_REOPEN:
            return self.reopen(list_id, membership_id, reviewer_id=reviewer_id, comments=comments)
        raise ValidationError(
            f"Unknown action '{action}'.",
            details={"allowed_actions": list(MEMBERSHIP_ACTIONS)},
        )

    # Bulk operations

    def approve_all_pending(self, list_id, *, reviewer_id=None) -> int:
        with self._editing(list_id) as donor_list:
            pending = self.session.scalars(
                select(DonorListMembership).where(
                    DonorListMembership.donor_list_id == donor_list.id,
                    DonorListMembership.status == MembershipStatus.PENDING,
                )
            ).all()
            for membership in pending:
                membership.status = MembershipStatus.APPROVED
                self._stamp(membership, reviewer_id, None)
        current_app.logger.info(
            "Approved all pending donor list memberships",
            extra={"list_id": list_id, "approved_count": len(pending), "reviewer_id": reviewer_id},
        )
        record_review_transition(ACTION_APPROVE, len(pending))
        return len(pending)

    def run_auto_exclusion(
        self, list_id, rules: Iterable[AutoExclusionRule] | None = None
    ) -> list[AutoExclusionOutcome]:
        """Apply the auto-exclusion rules to every pending membership of the list."""
        with self._editing(list_id) as donor_list:
            memberships = self.session.scalars(
                select(DonorListMembership)
                .where(DonorListMembership.donor_list_id == donor_list.id)
                .options(selectinload(DonorListMembership.donor))
                .order_by(DonorListMembership.id)
            ).all()
            outcomes = apply_auto_exclusions(memberships, rules)
        if outcomes:
            current_app.logger.info(
                "Auto-exclusion pass excluded donors",
                extra={"list_id": list_id, "auto_excluded_count": len(outcomes)},
            )
        record_review_transition("auto_exclude", len(outcomes))
        return outcomes

    def add_members(self, list_id, donor_ids: Iterable[int]) -> list[DonorListMembership]:
        """Add donors to the list as ``Pending``; donors already on the list are skipped."""
        donor_ids = list(dict.fromkeys(int(donor_id) for donor_id in donor_ids))
        if not donor_ids:
            raise ValidationError("Provide at least one donor id.")
        with self._editing(list_id) as donor_list:
            donors = self.session.scalars(select(Donor).where(Donor.id.in_(donor_ids))).all()
            missing = sorted(set(donor_ids) - {donor.id for donor in donors})
            if missing:
                raise NotFoundError("Some donors were not found.", details={"donor_ids": missing})
            existing = set(
                self.session.scalars(
                    select(DonorListMembership.donor_id).where(
                        DonorListMembership.donor_list_id == donor_list.id,
                        DonorListMembership.donor_id.in_(donor_ids),
                    )
                ).all()
            )
            added = []
            for donor in donors:
                if donor.id in existing:
                    continue
                membership = DonorListMembership(donor=donor, status=MembershipStatus.PENDING)
                donor_list.memberships.append(membership)
                added.append(membership)
        current_app.logger.info(
            "Donors added to donor list",
            extra={"list_id": list_id, "added_count": len(added)},
        )
        return added

    def remove_member(self, list_id, membership_id) -> None:
        with self._editing(list_id) as donor_list:
            membership = self._get_membership(donor_list, membership_id)
            donor_id = membership.donor_id
            self.session.delete(membership)
        current_app.logger.info(
            "Donor removed from donor list",
            extra={"list_id": list_id, "membership_id": membership_id, "donor_id": donor_id},
        )

    def delete_list(self, list_id) -> None:
        try:
            donor_list = self.lock_list(list_id)
            self._ensure_editable(donor_list)
            self.session.delete(donor_list)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        current_app.logger.info("Donor list deleted", extra={"list_id": list_id})

    # Helpers

    @staticmethod
    def _ensure_pending(membership: DonorListMembership, action: str) -> None:
        if membership.status != MembershipStatus.PENDING:
            raise InvalidTransition(
                f"Membership {membership.id} is already {membership.status.value}; reopen it before "
                f"trying to {action} again.",
                details={"membership_id": membership.id, "status": membership.status.value, "action": action},
            )

    @staticmethod
    def _stamp(membership: DonorListMembership, reviewer_id, comments) -> None:
        membership.reviewer_id = reviewer_id
        membership.reviewed_at = utcnow()
        if comments is not None:
            membership.comments = _clean_text(comments)

    @staticmethod
    def _log_transition(membership: DonorListMembership, action: str, reviewer_id) -> None:
        current_app.logger.info(
            "Donor list membership reviewed",
            extra={
                "list_id": membership.donor_list_id,
                "membership_id": membership.id,
                "donor_id": membership.donor_id,
                "review_action": action,
                "reviewer_id": reviewer_id,
            },
        )
        record_review_transition(action)
