# roster_app/models/event/__init__.py
"""
Event models package.
"""

from .enums import EDITABLE_LIST_STATUSES, EVENT_STATUS_TRANSITIONS, EventStatus
from .models import Event

__all__ = [
    "Event",
    "EventStatus",
    "EVENT_STATUS_TRANSITIONS",
    "EDITABLE_LIST_STATUSES",
]
