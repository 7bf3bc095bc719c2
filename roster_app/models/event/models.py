# roster_app/models/event/models.py

from datetime import timezone

from flask import current_app
from sqlalchemy import Enum, Index
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import DECIMAL

from ...errors import InvalidTransition
from ..base import BaseModel, db
from ..donor_list.enums import ReviewStatus
from .enums import EDITABLE_LIST_STATUSES, EVENT_STATUS_TRANSITIONS, EventStatus


class Event(BaseModel):
    """A fundraising occasion whose invitation phase is gated by its donor list review"""

    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    location = db.Column(db.String(255), nullable=False)
    capacity = db.Column(db.Integer, nullable=True)
    focus = db.Column(db.String(255), nullable=True)

    # Eligibility criteria for list generation
    criteria_min_giving_level = db.Column(DECIMAL(14, 2), nullable=False, default=0)
    criteria_city = db.Column(db.String(100), nullable=True)

    # Timeline
    timeline_list_generation_date = db.Column(db.DateTime(timezone=True), nullable=True)
    timeline_review_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    timeline_invitation_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(
        Enum(EventStatus, name="event_status_enum"),
        default=EventStatus.PLANNING,
        nullable=False,
        index=True,
    )

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user = db.relationship("User", foreign_keys=[created_by_user_id])
    donor_list = db.relationship(
        "DonorList",
        back_populates="event",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_event_status_date", "status", "date"),)

    def __repr__(self):
        return f"<Event {self.name} ({self.status.value if self.status else None})>"

    @staticmethod
    def find_by_id(event_id):
        """Find event by ID with error handling"""
        try:
            return db.session.get(Event, event_id)
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding event by id {event_id}: {str(e)}")
            return None

    def allows_list_edits(self):
        """Memberships may change only while the event is generating or reviewing its list"""
        return self.status in EDITABLE_LIST_STATUSES

    def can_send_invitations(self):
        """Invitations proceed only once every list membership has been reviewed"""
        donor_list = self.donor_list
        if donor_list is None:
            return False
        return donor_list.review_status == ReviewStatus.COMPLETED

    def transition_to(self, new_status):
        """
        Move the event to ``new_status`` honouring the lifecycle graph.

        Moving to ``Ready`` additionally requires a completed donor list review.
        Does not commit; callers own the transaction.
        """
        new_status = EventStatus.from_value(new_status)
        current = self.status or EventStatus.PLANNING
        if new_status == current:
            return self
        if new_status not in EVENT_STATUS_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Event cannot move from {current.value} to {new_status.value}",
                details={"from": current.value, "to": new_status.value},
            )
        if new_status == EventStatus.READY and not self.can_send_invitations():
            raise InvalidTransition(
                "Event cannot become Ready until its donor list review is completed",
                details={"from": current.value, "to": new_status.value},
            )
        self.status = new_status
        return self

    def to_dict(self):
        def _iso(value):
            if value is None:
                return None
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()

        return {
            "id": self.id,
            "name": self.name,
            "type": self.event_type,
            "date": _iso(self.date),
            "location": self.location,
            "capacity": self.capacity,
            "focus": self.focus,
            "criteria_min_giving_level": float(self.criteria_min_giving_level or 0),
            "criteria_city": self.criteria_city,
            "timeline_list_generation_date": _iso(self.timeline_list_generation_date),
            "timeline_review_deadline": _iso(self.timeline_review_deadline),
            "timeline_invitation_date": _iso(self.timeline_invitation_date),
            "status": self.status.value if self.status else None,
            "can_send_invitations": self.can_send_invitations(),
            "donor_list_id": self.donor_list.id if self.donor_list else None,
            "created_by_user_id": self.created_by_user_id,
        }
