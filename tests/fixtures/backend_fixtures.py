"""Fixtures for an in-memory driver backend served by FastAPI and reached through httpx."""

import copy
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import httpx
import pytest
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse

from driver_assignments.models.assignment import to_wire_datetime
from driver_assignments.repository import AssignmentRepository
from tests.consts import BASE_URL
from tests.consts import DRIVER_ID
from tests.consts import DRIVER_TOKEN


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FakeBackend:
    """
    Driver backend holding assignment rows in memory.

    Mirrors the production endpoints closely enough to exercise the client:
    bearer auth, {"error": ...} bodies, 409 for transitions on non-active rows.
    """

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {DRIVER_TOKEN: DRIVER_ID}
        self.calls: List[Tuple[str, str]] = []
        self.filter_by_driver = True
        self.fail_next: Optional[Tuple[int, Any]] = None
        self.app = self._build_app()

    def add(self, row: Dict[str, Any]) -> None:
        self.rows[row["id"]] = copy.deepcopy(row)

    def set_status(self, assignment_id: str, status: str) -> None:
        self.rows[assignment_id]["status"] = status

    def _driver_for(self, request: Request) -> Optional[str]:
        header = request.headers.get("authorization", "")
        if not header.startswith("Bearer "):
            return None
        return self.tokens.get(header[len("Bearer ") :])

    def _take_failure(self) -> Optional[JSONResponse]:
        if self.fail_next is None:
            return None
        status_code, body = self.fail_next
        self.fail_next = None
        return JSONResponse(status_code=status_code, content=body)

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/api/drivers/temp-assignments")
        async def list_assignments(request: Request):
            self.calls.append(("GET", request.url.path))
            failure = self._take_failure()
            if failure is not None:
                return failure
            driver_id = self._driver_for(request)
            if driver_id is None:
                return JSONResponse(status_code=401, content={"error": "Invalid or expired session"})
            rows = [
                row for row in self.rows.values() if not self.filter_by_driver or row["temp_driver_id"] == driver_id
            ]
            return {"assignments": rows}

        @app.post("/api/drivers/temp-assignments/extend")
        async def extend_assignment(request: Request):
            self.calls.append(("POST", request.url.path))
            failure = self._take_failure()
            if failure is not None:
                return failure
            driver_id = self._driver_for(request)
            if driver_id is None:
                return JSONResponse(status_code=401, content={"error": "Invalid or expired session"})

            body = await request.json()
            row = self.rows.get(body.get("assignment_id"))
            if row is None:
                return JSONResponse(status_code=404, content={"error": "Assignment not found"})
            if row["status"] != "active":
                return JSONResponse(
                    status_code=409,
                    content={"error": f"Cannot extend assignment: assignment is already {row['status']}"},
                )
            if not str(body.get("reason", "")).strip():
                return JSONResponse(status_code=400, content={"error": "Reason is required"})

            new_end = _parse(body["new_end_datetime"])
            if new_end <= _parse(row["end_datetime"]):
                return JSONResponse(status_code=400, content={"error": "New end time must be after current end time"})

            now = to_wire_datetime(datetime.now(timezone.utc))
            row["end_datetime"] = to_wire_datetime(new_end)
            row["extension_count"] += 1
            row["last_extended_at"] = now
            row["last_extended_by"] = driver_id
            row["updated_at"] = now
            return {"success": True}

        @app.post("/api/drivers/temp-assignments/complete")
        async def complete_assignment(request: Request):
            self.calls.append(("POST", request.url.path))
            failure = self._take_failure()
            if failure is not None:
                return failure
            driver_id = self._driver_for(request)
            if driver_id is None:
                return JSONResponse(status_code=401, content={"error": "Invalid or expired session"})

            body = await request.json()
            row = self.rows.get(body.get("assignment_id"))
            if row is None:
                return JSONResponse(status_code=404, content={"error": "Assignment not found"})
            if row["status"] != "active":
                return JSONResponse(
                    status_code=409,
                    content={"error": f"Cannot complete assignment: assignment is already {row['status']}"},
                )

            now = to_wire_datetime(datetime.now(timezone.utc))
            row["status"] = "completed"
            row["completion_type"] = "early"
            row["completed_at"] = now
            row["completed_by"] = driver_id
            row["completion_source"] = "driver_app"
            row["completion_notes"] = body.get("completion_notes")
            row["updated_at"] = now
            return {"success": True}

        return app


@pytest.fixture
def backend() -> FakeBackend:
    """Empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def http_client(backend) -> httpx.AsyncClient:
    """httpx client wired to the in-memory backend."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=backend.app), base_url=BASE_URL)


@pytest.fixture
def repository(session_manager, http_client) -> AssignmentRepository:
    """Repository with a valid session talking to the in-memory backend."""
    return AssignmentRepository(session_manager=session_manager, client=http_client)
