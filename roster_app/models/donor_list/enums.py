# roster_app/models/donor_list/enums.py
"""
Enums for donor review lists.
"""

from enum import Enum as PyEnum


class MembershipStatus(PyEnum):
    """Review status of one donor within a list"""

    PENDING = "Pending"
    APPROVED = "Approved"
    EXCLUDED = "Excluded"
    AUTO_EXCLUDED = "AutoExcluded"

    @property
    def is_terminal(self):
        return self is not MembershipStatus.PENDING

    @property
    def requires_reason(self):
        return self in (MembershipStatus.EXCLUDED, MembershipStatus.AUTO_EXCLUDED)


class ReviewStatus(PyEnum):
    """Aggregate review state of a list"""

    PENDING = "pending"
    COMPLETED = "completed"
