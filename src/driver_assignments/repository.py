"""
Assignment Repository

Owns the authoritative list of temporary assignments for the signed-in driver and
exposes the extend/complete transitions of the driver backend.

Every mutation is followed by a refetch from the caller; this repository never patches
its snapshot locally.
"""

from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import httpx
import pydantic
from loguru import logger

from driver_assignments.auth.session import SessionManager
from driver_assignments.errors import AssignmentError
from driver_assignments.errors import ServerError
from driver_assignments.errors import raise_for_response
from driver_assignments.errors import translate_transport_error
from driver_assignments.models.assignment import ExtensionRequest
from driver_assignments.models.assignment import TempAssignment
from driver_assignments.monitoring.logger import log_http_exchange
from driver_assignments.settings import Settings

ASSIGNMENTS_PATH = "/api/drivers/temp-assignments"
EXTEND_PATH = f"{ASSIGNMENTS_PATH}/extend"
COMPLETE_PATH = f"{ASSIGNMENTS_PATH}/complete"

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def sort_assignments(assignments: List[TempAssignment]) -> Tuple[TempAssignment, ...]:
    """Newest first by created_at, ties broken by id so the order is stable across fetches."""
    by_id = sorted(assignments, key=lambda a: a.id)
    return tuple(sorted(by_id, key=lambda a: a.created_at or _OLDEST, reverse=True))


class AssignmentRepository:
    """
    HTTP repository for temporary assignments.

    Fetches are sequenced by issue order: each list() call takes a token, and a response
    whose token is older than the last applied one is discarded, so a slow early fetch
    can never overwrite the result of a faster later one.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        """
        Initialize the repository.

        Args:
            session_manager: Source of bearer tokens
            base_url: Backend base URL (ignored when a client is passed)
            client: Pre-configured httpx client; the repository closes only clients it created
            timeout: Request timeout in seconds for a client created here
        """
        if client is None and base_url is None:
            raise ValueError("Either base_url or client must be provided")

        self.session_manager = session_manager
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

        self._snapshot: Tuple[TempAssignment, ...] = ()
        self._issued_seq = 0
        self._applied_seq = 0
        self.last_fetched_at: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: Settings, session_manager: SessionManager) -> "AssignmentRepository":
        """Build a repository with its own client from settings."""
        return cls(
            session_manager=session_manager,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    async def __aenter__(self) -> "AssignmentRepository":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this repository created it."""
        if self._owns_client:
            await self.client.aclose()

    # ────────────────────────────────────────────────────────────────────────
    # Read side
    # ────────────────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> Tuple[TempAssignment, ...]:
        """Latest applied list (read-only)."""
        return self._snapshot

    def get(self, assignment_id: str) -> Optional[TempAssignment]:
        """Look up an assignment in the latest snapshot."""
        for assignment in self._snapshot:
            if assignment.id == assignment_id:
                return assignment
        return None

    async def list(self, driver_id: str) -> Tuple[TempAssignment, ...]:
        """
        Fetch the current assignments of a temp driver.

        Args:
            driver_id: Temp driver whose assignments are listed

        Returns:
            Assignments ordered newest first. When this fetch was overtaken by a later one,
            the newer snapshot is returned instead, and a failure of the overtaken
            fetch is not raised.

        Raises:
            AuthError: No session (no request is sent) or the backend rejected it
            NetworkError: Transport failure
            ServerError: Non-2xx response or malformed body
        """
        self._issued_seq += 1
        seq = self._issued_seq

        try:
            response = await self._send("GET", ASSIGNMENTS_PATH, operation="list assignments")
            assignments = self._parse_assignments(response, driver_id)
        except AssignmentError as e:
            if seq < self._applied_seq:
                logger.debug(
                    f"Discarding stale assignments failure: {e.message}",
                    driver_id=driver_id,
                    response_seq=seq,
                    applied_seq=self._applied_seq,
                    error_type=type(e).__name__,
                )
                return self._snapshot
            raise

        if seq < self._applied_seq:
            logger.debug(
                "Discarding stale assignments response",
                driver_id=driver_id,
                response_seq=seq,
                applied_seq=self._applied_seq,
            )
            return self._snapshot

        self._applied_seq = seq
        self._snapshot = assignments
        self.last_fetched_at = datetime.now(timezone.utc)
        logger.debug("Assignments refreshed", driver_id=driver_id, count=len(assignments), seq=seq)
        return assignments

    def _parse_assignments(self, response: httpx.Response, driver_id: str) -> Tuple[TempAssignment, ...]:
        try:
            body = response.json()
        except ValueError as e:
            raise ServerError("Malformed assignments response: body is not JSON", response.status_code) from e

        rows = body.get("assignments") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise ServerError("Malformed assignments response: missing 'assignments' list", response.status_code)

        assignments: List[TempAssignment] = []
        for row in rows:
            try:
                assignment = TempAssignment.model_validate(row)
            except pydantic.ValidationError as e:
                row_id = row.get("id") if isinstance(row, dict) else None
                logger.warning(
                    "Skipping malformed assignment row",
                    assignment_id=row_id,
                    validation_errors=e.errors(include_url=False),
                )
                continue

            if assignment.temp_driver_id != driver_id:
                continue
            assignments.append(assignment)

        return sort_assignments(assignments)

    # ────────────────────────────────────────────────────────────────────────
    # Transitions
    # ────────────────────────────────────────────────────────────────────────

    async def extend(self, request: ExtensionRequest) -> None:
        """
        Ask the backend to move an assignment's end time.

        Raises:
            AuthError, NetworkError, ServerError
            ConflictError: The assignment is no longer active on the server
        """
        await self._send("POST", EXTEND_PATH, operation="extend assignment", json=request.to_payload())
        logger.info(
            "Extension accepted",
            assignment_id=request.assignment_id,
            new_end_datetime=request.new_end_datetime.isoformat(),
        )

    async def complete(self, assignment_id: str, notes: Optional[str] = None) -> None:
        """
        Ask the backend to complete an assignment early.

        Raises:
            AuthError, NetworkError, ServerError
            ConflictError: The assignment is no longer active on the server
        """
        payload: Dict[str, Any] = {"assignment_id": assignment_id}
        if notes is not None and notes.strip():
            payload["completion_notes"] = notes.strip()

        await self._send("POST", COMPLETE_PATH, operation="complete assignment", json=payload)
        logger.info("Completion accepted", assignment_id=assignment_id)

    # ────────────────────────────────────────────────────────────────────────
    # Transport
    # ────────────────────────────────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        # Raises AuthError before anything goes on the wire
        token = await self.session_manager.get_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        try:
            response = await self.client.request(method, path, headers=headers, json=json)
        except httpx.RequestError as e:
            raise translate_transport_error(e, operation) from e

        log_http_exchange(response)

        if response.status_code == 401:
            self.session_manager.invalidate()
        raise_for_response(response)
        return response
