"""
Extension Workflow

Validates a driver's request for more time and submits it to the backend.
Nothing goes on the wire until every input has been validated.
"""

from typing import Tuple
from typing import Union

from loguru import logger

from driver_assignments.enums import AssignmentStatus
from driver_assignments.errors import AssignmentError
from driver_assignments.errors import ValidationError
from driver_assignments.models.assignment import ExtensionRequest
from driver_assignments.models.assignment import TempAssignment
from driver_assignments.repository import AssignmentRepository
from driver_assignments.timemath import extend_end_datetime

DurationInput = Union[str, int, None]


def parse_duration_part(value: DurationInput, field: str) -> int:
    """
    Parse an hours or minutes input as a non-negative integer.

    Blank input counts as 0. Strings must be plain digits ("1.5", "-2" and "1h" are rejected).

    Raises
    ------
    ValidationError
        Naming ``field`` when the input is not a non-negative integer
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValidationError(field, f"{field.capitalize()} must be a whole number")
    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return 0
        if text.startswith("-") and text[1:].isascii() and text[1:].isdigit():
            raise ValidationError(field, f"{field.capitalize()} must not be negative")
        if not (text.isascii() and text.isdigit()):
            raise ValidationError(field, f"{field.capitalize()} must be a whole number")
        parsed = int(text)

    if parsed < 0:
        raise ValidationError(field, f"{field.capitalize()} must not be negative")
    return parsed


def validate_extension_input(
    assignment: TempAssignment,
    hours: DurationInput,
    minutes: DurationInput,
    reason: str,
) -> Tuple[int, str]:
    """
    Validate extension input against the fetched assignment.

    Returns:
        (total_minutes, trimmed_reason)

    Raises:
        ValidationError: field is one of ``reason``, ``hours``, ``minutes``, ``duration``, ``status``
    """
    if assignment.status is not AssignmentStatus.ACTIVE:
        raise ValidationError(
            "status",
            f"Only active assignments can be extended (assignment is {assignment.status.value})",
        )

    trimmed = (reason or "").strip()
    if not trimmed:
        raise ValidationError("reason", "Please provide a reason for the extension")

    hours_value = parse_duration_part(hours, "hours")
    minutes_value = parse_duration_part(minutes, "minutes")

    total_minutes = hours_value * 60 + minutes_value
    if total_minutes <= 0:
        raise ValidationError("duration", "Extension time must be greater than 0")

    return total_minutes, trimmed


class ExtensionWorkflow:
    """Builds and submits extension requests; the backend decides whether they succeed."""

    def __init__(self, repository: AssignmentRepository):
        self.repository = repository

    def build_request(
        self,
        assignment: TempAssignment,
        hours: DurationInput,
        minutes: DurationInput,
        reason: str,
    ) -> ExtensionRequest:
        """Validate input and compute the new end time from the fetched end time."""
        total_minutes, trimmed = validate_extension_input(assignment, hours, minutes, reason)
        try:
            new_end_datetime = extend_end_datetime(assignment.end_datetime, total_minutes)
        except OverflowError as e:
            raise ValidationError("duration", "Extension time is too long") from e
        return ExtensionRequest(
            assignment_id=assignment.id,
            new_end_datetime=new_end_datetime,
            reason=trimmed,
            extended_by_driver=True,
        )

    async def submit(
        self,
        assignment: TempAssignment,
        hours: DurationInput,
        minutes: DurationInput,
        reason: str,
    ) -> ExtensionRequest:
        """
        Validate and submit an extension.

        Args:
            assignment: Fetched assignment to extend
            hours: Additional hours (string input or int)
            minutes: Additional minutes (string input or int)
            reason: Reason shown to dispatchers

        Returns:
            The request the backend accepted. The caller refetches to see the new end time.

        Raises:
            ValidationError: Before any network call
            AuthError, NetworkError, ServerError, ConflictError: Reported by the backend call
        """
        request = self.build_request(assignment, hours, minutes, reason)

        logger.info(
            "Requesting extension",
            assignment_id=assignment.id,
            current_end=assignment.end_datetime.isoformat(),
            new_end=request.new_end_datetime.isoformat(),
        )
        try:
            await self.repository.extend(request)
        except AssignmentError as e:
            logger.warning(
                f"Extension failed: {e.message}",
                assignment_id=assignment.id,
                error_type=type(e).__name__,
            )
            raise
        return request
