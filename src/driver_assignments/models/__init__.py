"""
Assignment Models Module

Pydantic models for the temporary assignment lifecycle:
- Server records (TempAssignment with embedded summaries)
- Commands (ExtensionRequest)
- Derived values (TimeRemaining)
"""

from driver_assignments.models.assignment import (
    DriverSummary,
    ExtensionRequest,
    TempAssignment,
    TimeRemaining,
    VehicleSummary,
)

__all__ = [
    "DriverSummary",
    "ExtensionRequest",
    "TempAssignment",
    "TimeRemaining",
    "VehicleSummary",
]
