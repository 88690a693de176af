"""
Assignment Models

Pydantic models for temporary vehicle assignments as returned by the driver backend,
the extension command sent back to it, and the derived countdown value.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Dict
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

from driver_assignments.enums import AssignmentStatus


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_wire_datetime(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ════════════════════════════════════════════════════════════════════════════
# Denormalized display data
# ════════════════════════════════════════════════════════════════════════════


class VehicleSummary(BaseModel):
    """Vehicle projection embedded in an assignment (display only)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    license_plate: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    type: Optional[str] = None


class DriverSummary(BaseModel):
    """Driver projection embedded in an assignment (display only)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    work_phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


# ════════════════════════════════════════════════════════════════════════════
# Temporary Assignment
# ════════════════════════════════════════════════════════════════════════════


class TempAssignment(BaseModel):
    """
    A temporary reassignment of a vehicle from its permanent driver to another driver.

    Instances are read-only snapshots of server state. They are replaced by a refetch,
    never patched locally.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    vehicle_id: str
    permanent_driver_id: str
    temp_driver_id: str
    assigned_by: Optional[str] = None
    assignment_reason: Optional[str] = None

    # Assignment window
    start_datetime: datetime
    end_datetime: datetime
    original_end_datetime: datetime

    status: AssignmentStatus = AssignmentStatus.ACTIVE

    # Completion metadata (null until a terminal transition)
    completion_type: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completion_source: Optional[str] = None
    completion_notes: Optional[str] = None

    # Extension metadata
    extension_count: int = Field(default=0, ge=0)
    last_extended_at: Optional[datetime] = None
    last_extended_by: Optional[str] = None

    contact_phone: Optional[str] = None
    special_instructions: Optional[str] = None
    notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None

    vehicle: Optional[VehicleSummary] = None
    permanent_driver: Optional[DriverSummary] = None
    temp_driver: Optional[DriverSummary] = None

    @field_validator("id", "vehicle_id", "permanent_driver_id", "temp_driver_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """Backends may send integer keys; identities are kept as opaque strings."""
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator(
        "start_datetime",
        "end_datetime",
        "original_end_datetime",
        "completed_at",
        "last_extended_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store every timestamp as aware UTC."""
        if v is None:
            return v
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_window(self) -> "TempAssignment":
        """The window can never end before it starts."""
        if self.end_datetime < self.start_datetime:
            raise ValueError("end_datetime must not be earlier than start_datetime")
        return self

    @property
    def is_active(self) -> bool:
        return self.status is AssignmentStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def total_extension(self) -> timedelta:
        """Cumulative time added by extensions."""
        return self.end_datetime - self.original_end_datetime


# ════════════════════════════════════════════════════════════════════════════
# Commands and derived values
# ════════════════════════════════════════════════════════════════════════════


class ExtensionRequest(BaseModel):
    """Command asking the backend to move an assignment's end time later."""

    model_config = ConfigDict(frozen=True)

    assignment_id: str
    new_end_datetime: datetime
    reason: str
    extended_by_driver: bool = True

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Reason is required and sent trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("reason must not be empty")
        return v

    @field_validator("new_end_datetime")
    @classmethod
    def normalize_end(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_payload(self) -> Dict[str, Any]:
        """Request body for POST /api/drivers/temp-assignments/extend."""
        return {
            "assignment_id": self.assignment_id,
            "new_end_datetime": to_wire_datetime(self.new_end_datetime),
            "reason": self.reason,
            "extended_by_driver": self.extended_by_driver,
        }


class TimeRemaining(BaseModel):
    """Remaining time until an assignment's end, recomputed every tick."""

    model_config = ConfigDict(frozen=True)

    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0)
    is_expired: bool = False
