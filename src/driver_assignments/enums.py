"""
Assignment Enums

Enum types shared by the assignment client.
Values must match exactly with the backend columns.
"""

from enum import Enum


class AssignmentStatus(str, Enum):
    """Temporary assignment status."""

    ACTIVE = "active"  # Initial state, set by the dispatcher
    COMPLETED = "completed"  # Ended by the driver or a dispatcher
    EXPIRED = "expired"  # Ended by the backend expiry job
    CANCELLED = "cancelled"  # Ended by a dispatcher

    @property
    def is_terminal(self) -> bool:
        """Terminal states have no outgoing transitions."""
        return self is not AssignmentStatus.ACTIVE


def can_transition(source: AssignmentStatus, target: AssignmentStatus) -> bool:
    """Transitions only leave ``active``; nothing re-enters it."""
    return source is AssignmentStatus.ACTIVE and target.is_terminal


class ChangeType(str, Enum):
    """Row-level change reported by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    POLL = "POLL"  # Synthetic event from the polling channel
