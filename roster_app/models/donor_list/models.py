# roster_app/models/donor_list/models.py

from datetime import timezone

from sqlalchemy import Enum, Index, event

from ..base import BaseModel, db
from .enums import MembershipStatus, ReviewStatus


class DonorList(BaseModel):
    """The generated roster of candidate donors for one event"""

    __tablename__ = "donor_lists"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Derived counters, only ever written by a full recount
    total_donors = db.Column(db.Integer, nullable=False, default=0)
    approved = db.Column(db.Integer, nullable=False, default=0)
    excluded = db.Column(db.Integer, nullable=False, default=0)
    pending = db.Column(db.Integer, nullable=False, default=0)
    auto_excluded = db.Column(db.Integer, nullable=False, default=0)
    review_status = db.Column(
        Enum(ReviewStatus, name="donor_list_review_status_enum"),
        nullable=False,
        default=ReviewStatus.PENDING,
    )

    generated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    event = db.relationship("Event", back_populates="donor_list")
    generated_by_user = db.relationship("User", foreign_keys=[generated_by_user_id])
    memberships = db.relationship(
        "DonorListMembership",
        back_populates="donor_list",
        cascade="all, delete-orphan",
        order_by="DonorListMembership.id",
    )

    def __repr__(self):
        return f"<DonorList event={self.event_id} total={self.total_donors}>"

    def counts(self):
        return {
            "total_donors": self.total_donors,
            "approved": self.approved,
            "excluded": self.excluded,
            "pending": self.pending,
            "auto_excluded": self.auto_excluded,
        }

    def to_dict(self, include_memberships=False):
        payload = {
            "id": self.id,
            "event_id": self.event_id,
            "name": self.name,
            **self.counts(),
            "review_status": self.review_status.value if self.review_status else None,
            "generated_by": self.generated_by_user_id,
        }
        if include_memberships:
            payload["memberships"] = [membership.to_dict() for membership in self.memberships]
        return payload


class DonorListMembership(BaseModel):
    """One donor's reviewable entry within a donor list"""

    __tablename__ = "donor_list_memberships"

    id = db.Column(db.Integer, primary_key=True)
    donor_list_id = db.Column(
        db.Integer,
        db.ForeignKey("donor_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    donor_id = db.Column(db.Integer, db.ForeignKey("donors.id"), nullable=False, index=True)
    status = db.Column(
        Enum(MembershipStatus, name="membership_status_enum"),
        nullable=False,
        default=MembershipStatus.PENDING,
    )
    exclude_reason = db.Column(db.Text, nullable=True)
    auto_excluded = db.Column(db.Boolean, nullable=False, default=False)
    comments = db.Column(db.Text, nullable=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    donor_list = db.relationship("DonorList", back_populates="memberships")
    donor = db.relationship("Donor", back_populates="memberships")
    reviewer = db.relationship("User", foreign_keys=[reviewer_id])

    __table_args__ = (
        db.UniqueConstraint("donor_list_id", "donor_id", name="_donor_list_member_uc"),
        Index("idx_membership_list_status", "donor_list_id", "status"),
    )

    def check_exclude_reason(self):
        """Raise ``ValueError`` unless a reason is present exactly for excluded statuses"""
        status = self.status or MembershipStatus.PENDING
        has_reason = bool(self.exclude_reason and self.exclude_reason.strip())
        if status.requires_reason != has_reason:
            expectation = "requires" if status.requires_reason else "must not carry"
            raise ValueError(f"Membership status {status.value} {expectation} an exclusion reason")

    def __repr__(self):
        return f"<DonorListMembership list={self.donor_list_id} donor={self.donor_id} status={self.status.value}>"

    def to_dict(self):
        reviewed_at = self.reviewed_at
        if reviewed_at is not None and reviewed_at.tzinfo is None:
            reviewed_at = reviewed_at.replace(tzinfo=timezone.utc)
        return {
            "id": self.id,
            "donor_list_id": self.donor_list_id,
            "donor_id": self.donor_id,
            "donor": self.donor.to_dict() if self.donor is not None else None,
            "status": self.status.value if self.status else None,
            "exclude_reason": self.exclude_reason,
            "auto_excluded": bool(self.auto_excluded),
            "comments": self.comments,
            "reviewer_id": self.reviewer_id,
            "reviewed_at": reviewed_at.isoformat() if reviewed_at else None,
        }


@event.listens_for(DonorListMembership, "before_insert")
@event.listens_for(DonorListMembership, "before_update")
def _validate_exclude_reason(mapper, connection, membership):
    membership.check_exclude_reason()
