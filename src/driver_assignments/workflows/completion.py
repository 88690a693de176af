"""
Completion Workflow

Two-phase early completion: the driver first states the intent, then confirms it.
Only the confirmation reaches the backend.
"""

from datetime import datetime
from datetime import timezone
from typing import Dict
from typing import Optional

from loguru import logger
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from driver_assignments.errors import AssignmentError
from driver_assignments.errors import ValidationError
from driver_assignments.models.assignment import TempAssignment
from driver_assignments.repository import AssignmentRepository


class CompletionIntent(BaseModel):
    """A pending, unconfirmed request to complete an assignment."""

    model_config = ConfigDict(frozen=True)

    assignment_id: str
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CompletionWorkflow:
    """Tracks pending completion intents and submits confirmed ones."""

    def __init__(self, repository: AssignmentRepository):
        self.repository = repository
        self._pending: Dict[str, CompletionIntent] = {}

    def request(self, assignment: TempAssignment) -> CompletionIntent:
        """
        Phase one: record the intent to complete.

        Raises:
            ValidationError: The fetched assignment is not active
        """
        if not assignment.is_active:
            raise ValidationError(
                "status",
                f"Only active assignments can be completed (assignment is {assignment.status.value})",
            )
        intent = CompletionIntent(assignment_id=assignment.id)
        self._pending[assignment.id] = intent
        logger.debug("Completion requested", assignment_id=assignment.id)
        return intent

    def pending(self, assignment_id: str) -> Optional[CompletionIntent]:
        return self._pending.get(assignment_id)

    def cancel(self, intent: CompletionIntent) -> None:
        """Drop an intent without contacting the backend."""
        if self._pending.get(intent.assignment_id) == intent:
            del self._pending[intent.assignment_id]
            logger.debug("Completion cancelled", assignment_id=intent.assignment_id)

    async def confirm(self, intent: CompletionIntent, notes: Optional[str] = None) -> None:
        """
        Phase two: submit the completion.

        On failure the intent stays pending so the driver can retry, and the assignment is
        still active on the server. On success the caller refetches.

        Raises:
            ValidationError: The intent is unknown, cancelled or already used
            AuthError, NetworkError, ServerError, ConflictError: Reported by the backend call
        """
        if self._pending.get(intent.assignment_id) != intent:
            raise ValidationError("confirmation", "Completion must be requested before it is confirmed")

        try:
            await self.repository.complete(intent.assignment_id, notes)
        except AssignmentError as e:
            logger.warning(
                f"Completion failed: {e.message}",
                assignment_id=intent.assignment_id,
                error_type=type(e).__name__,
            )
            raise

        self._pending.pop(intent.assignment_id, None)
        logger.info("Assignment completed by driver", assignment_id=intent.assignment_id)
