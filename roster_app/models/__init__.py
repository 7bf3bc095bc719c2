# roster_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .donor import Donor, build_identity_key, normalize_identity_part, parse_tags, serialize_tags
from .donor_list import DonorList, DonorListMembership, MembershipStatus, ReviewStatus
from .event import EDITABLE_LIST_STATUSES, EVENT_STATUS_TRANSITIONS, Event, EventStatus
from .importer import TERMINAL_OPERATION_STATUSES, ImportOperation, OperationStatus
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    # Donor pool
    "Donor",
    "build_identity_key",
    "normalize_identity_part",
    "parse_tags",
    "serialize_tags",
    # Events
    "Event",
    "EventStatus",
    "EVENT_STATUS_TRANSITIONS",
    "EDITABLE_LIST_STATUSES",
    # Donor lists
    "DonorList",
    "DonorListMembership",
    "MembershipStatus",
    "ReviewStatus",
    # Importer
    "ImportOperation",
    "OperationStatus",
    "TERMINAL_OPERATION_STATUSES",
]
