# roster_app/models/event/enums.py
"""
Enums for event models.
"""

from enum import Enum as PyEnum


class EventStatus(PyEnum):
    """Event lifecycle status enumeration"""

    PLANNING = "Planning"
    LIST_GENERATION = "ListGeneration"
    REVIEW = "Review"
    READY = "Ready"
    COMPLETE = "Complete"

    @classmethod
    def from_value(cls, value):
        """Resolve a status from its value or member name, case-insensitively."""
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().replace("_", "").replace(" ", "").lower()
        for member in cls:
            if token in (member.value.lower(), member.name.replace("_", "").lower()):
                return member
        raise ValueError(f"Unknown event status: {value!r}")


# Allowed forward (and corrective) moves of the event lifecycle.
EVENT_STATUS_TRANSITIONS = {
    EventStatus.PLANNING: {EventStatus.LIST_GENERATION, EventStatus.REVIEW},
    EventStatus.LIST_GENERATION: {EventStatus.PLANNING, EventStatus.REVIEW},
    EventStatus.REVIEW: {EventStatus.LIST_GENERATION, EventStatus.READY},
    EventStatus.READY: {EventStatus.REVIEW, EventStatus.COMPLETE},
    EventStatus.COMPLETE: set(),
}

# Statuses in which reviewers may change donor list memberships.
EDITABLE_LIST_STATUSES = frozenset({EventStatus.LIST_GENERATION, EventStatus.REVIEW})
