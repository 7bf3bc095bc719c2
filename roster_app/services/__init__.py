# roster_app/services/__init__.py
"""
Domain services for donor list generation and review
"""

from .auto_exclusion import (
    DEFAULT_RULES,
    AutoExclusionContext,
    AutoExclusionOutcome,
    AutoExclusionRule,
    apply_auto_exclusions,
)
from .list_generator import ListCriteria, ListGenerator, build_eligibility_query
from .review_service import MEMBERSHIP_ACTIONS, DonorListReviewService, recount_donor_list

__all__ = [
    "DEFAULT_RULES",
    "AutoExclusionContext",
    "AutoExclusionOutcome",
    "AutoExclusionRule",
    "apply_auto_exclusions",
    "ListCriteria",
    "ListGenerator",
    "build_eligibility_query",
    "MEMBERSHIP_ACTIONS",
    "DonorListReviewService",
    "recount_donor_list",
]
