# roster_app/models/donor.py

import re
from decimal import Decimal

from flask import current_app
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import validates
from sqlalchemy.types import DECIMAL

from .base import BaseModel, db

_WHITESPACE_RE = re.compile(r"\s+")

TAG_SEPARATOR = ","


def normalize_identity_part(value):
    """Lowercase, trim and collapse internal whitespace for identity matching."""
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip().lower()


def build_identity_key(first_name=None, last_name=None, organization_name=None):
    """
    Return the normalized identity key for a donor or ``None`` when no identity is present.

    A full individual name wins over an organization name, and an organization
    name wins over a partial individual name, so every row resolves to at most
    one identity.
    """
    first = normalize_identity_part(first_name)
    last = normalize_identity_part(last_name)
    if first and last:
        return f"ind:{first}|{last}"
    organization = normalize_identity_part(organization_name)
    if organization:
        return f"org:{organization}"
    return None


def parse_tags(value):
    """Split a stored or raw tag string into a set of trimmed tags."""
    if not value:
        return set()
    if isinstance(value, (set, frozenset, list, tuple)):
        items = value
    else:
        items = re.split(r"[,;]", str(value))
    return {item.strip() for item in items if item and str(item).strip()}


def serialize_tags(tags):
    """Persist tags as a sorted comma-joined string so unions are order independent."""
    cleaned = sorted(parse_tags(tags), key=lambda tag: (tag.lower(), tag))
    return TAG_SEPARATOR.join(cleaned) if cleaned else None


class Donor(BaseModel):
    """A contributor identity: either an individual or an organization, never both"""

    __tablename__ = "donors"

    id = db.Column(db.Integer, primary_key=True)
    identity_key = db.Column(db.String(400), unique=True, nullable=False, index=True)

    # Identity
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    nick_name = db.Column(db.String(100), nullable=True)
    organization_name = db.Column(db.String(255), nullable=True)

    # Giving history
    total_donations = db.Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    total_pledges = db.Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    largest_gift = db.Column(DECIMAL(14, 2), nullable=True)
    largest_gift_appeal = db.Column(db.String(255), nullable=True)
    first_gift_date = db.Column(db.Date, nullable=True)
    last_gift_date = db.Column(db.Date, nullable=True)
    last_gift_amount = db.Column(DECIMAL(14, 2), nullable=True)
    last_gift_request = db.Column(db.String(255), nullable=True)
    last_gift_appeal = db.Column(db.String(255), nullable=True)

    # Relationship managers
    pmm = db.Column(db.String(100), nullable=True)
    smm = db.Column(db.String(100), nullable=True)
    vmm = db.Column(db.String(100), nullable=True)

    # Contact and address
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True, index=True)
    contact_phone_type = db.Column(db.String(50), nullable=True)
    phone_restrictions = db.Column(db.String(255), nullable=True)
    email_restrictions = db.Column(db.String(255), nullable=True)
    communication_restrictions = db.Column(db.String(255), nullable=True)
    subscription_events_in_person = db.Column(db.String(50), nullable=True)
    subscription_events_magazine = db.Column(db.String(50), nullable=True)
    communication_preference = db.Column(db.String(100), nullable=True)

    tags = db.Column(db.Text, nullable=True)
    excluded = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deceased = db.Column(db.Boolean, nullable=False, default=False, index=True)

    memberships = db.relationship("DonorListMembership", back_populates="donor", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "(organization_name IS NULL) <> (first_name IS NULL AND last_name IS NULL)",
            name="ck_donor_single_identity",
        ),
        Index("idx_donor_eligibility", "excluded", "deceased", "total_donations"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.identity_key:
            self.refresh_identity_key()

    def __repr__(self):
        return f"<Donor {self.display_name}>"

    @property
    def is_organization(self):
        return self.organization_name is not None

    @property
    def display_name(self):
        if self.is_organization:
            return self.organization_name
        parts = [self.first_name, self.last_name]
        return " ".join(part for part in parts if part)

    @property
    def tag_set(self):
        return parse_tags(self.tags)

    @tag_set.setter
    def tag_set(self, value):
        self.tags = serialize_tags(value)

    @validates("tags")
    def _normalize_tags(self, key, value):
        return serialize_tags(value)

    def refresh_identity_key(self):
        """Recompute ``identity_key`` from the identity columns, enforcing one identity."""
        if self.first_name or self.last_name:
            if self.organization_name is not None:
                raise ValueError("Donor cannot carry both an individual and an organization identity")
        key = build_identity_key(self.first_name, self.last_name, self.organization_name)
        if key is None:
            raise ValueError("Donor requires a first and last name or an organization name")
        self.identity_key = key
        return key

    def is_referenced(self):
        """Return True while any donor list membership points at this donor."""
        from .donor_list import DonorListMembership

        return (
            db.session.query(DonorListMembership.id).filter(DonorListMembership.donor_id == self.id).first()
            is not None
        )

    def to_dict(self):
        return {
            "id": self.id,
            "identity_key": self.identity_key,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "nick_name": self.nick_name,
            "organization_name": self.organization_name,
            "display_name": self.display_name,
            "total_donations": _decimal_to_float(self.total_donations),
            "total_pledges": _decimal_to_float(self.total_pledges),
            "largest_gift": _decimal_to_float(self.largest_gift),
            "largest_gift_appeal": self.largest_gift_appeal,
            "first_gift_date": self.first_gift_date.isoformat() if self.first_gift_date else None,
            "last_gift_date": self.last_gift_date.isoformat() if self.last_gift_date else None,
            "last_gift_amount": _decimal_to_float(self.last_gift_amount),
            "last_gift_request": self.last_gift_request,
            "last_gift_appeal": self.last_gift_appeal,
            "pmm": self.pmm,
            "smm": self.smm,
            "vmm": self.vmm,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "contact_phone_type": self.contact_phone_type,
            "phone_restrictions": self.phone_restrictions,
            "email_restrictions": self.email_restrictions,
            "communication_restrictions": self.communication_restrictions,
            "subscription_events_in_person": self.subscription_events_in_person,
            "subscription_events_magazine": self.subscription_events_magazine,
            "communication_preference": self.communication_preference,
            "tags": sorted(self.tag_set, key=str.lower),
            "excluded": bool(self.excluded),
            "deceased": bool(self.deceased),
        }

    @staticmethod
    def find_by_identity_key(identity_key, session=None):
        session = session or db.session
        return session.query(Donor).filter(Donor.identity_key == identity_key).one_or_none()

    @staticmethod
    def find_by_id(donor_id):
        """Find donor by ID with error handling"""
        try:
            return db.session.get(Donor, donor_id)
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding donor by id {donor_id}: {str(e)}")
            return None


def _decimal_to_float(value):
    if value is None:
        return None
    return float(value)
