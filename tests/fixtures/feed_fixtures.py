"""Fixtures for change channels driven directly by tests."""

import asyncio
from typing import AsyncIterator
from typing import List
from typing import Optional

import pytest

from driver_assignments.enums import ChangeType
from driver_assignments.feed.channels import ChangeEvent

_END = object()


class QueueChangeChannel:
    """Change channel fed by the test through push(), fail() and close()."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.listened_for: List[str] = []

    def push(self, change_type: ChangeType = ChangeType.UPDATE, assignment_id: Optional[str] = "ta-1") -> None:
        self.queue.put_nowait(ChangeEvent(change_type=change_type, assignment_id=assignment_id))

    def fail(self, error: Exception) -> None:
        self.queue.put_nowait(error)

    def close(self) -> None:
        self.queue.put_nowait(_END)

    async def listen(self, driver_id: str) -> AsyncIterator[ChangeEvent]:
        self.listened_for.append(driver_id)
        while True:
            item = await self.queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def change_channel() -> QueueChangeChannel:
    return QueueChangeChannel()
