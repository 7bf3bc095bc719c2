# roster_app/models/donor_list/__init__.py
"""
Donor review list models package.
"""

from .enums import MembershipStatus, ReviewStatus
from .models import DonorList, DonorListMembership

__all__ = [
    "DonorList",
    "DonorListMembership",
    "MembershipStatus",
    "ReviewStatus",
]
