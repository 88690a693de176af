"""
Countdown Engine

Per-assignment timers that recompute the remaining time on a fixed cadence.

Each tick recomputes from the wall clock and the fixed end time instead of decrementing
a counter, so a suspended process shows the right value on its first tick after resume.
The countdown is display-only: reaching zero never changes an assignment's status.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator
from typing import Callable
from typing import Dict
from typing import Optional
from typing import Set

from loguru import logger

from driver_assignments.models.assignment import TempAssignment
from driver_assignments.models.assignment import TimeRemaining
from driver_assignments.models.assignment import ensure_utc
from driver_assignments.timemath import calculate_time_remaining
from driver_assignments.timemath import utc_now

Clock = Callable[[], datetime]
OnTick = Callable[[str, TimeRemaining], None]


class CountdownTimer:
    """
    Countdown for one assignment.

    Attributes
    ----------
    assignment_id : str
        Assignment this timer belongs to
    end_datetime : datetime
        Fixed end of the window, read from the fetched record
    remaining : Optional[TimeRemaining]
        Value computed by the latest tick
    """

    def __init__(
        self,
        assignment_id: str,
        end_datetime: datetime,
        on_tick: Optional[OnTick] = None,
        interval_seconds: float = 1.0,
        clock: Clock = utc_now,
    ):
        self.assignment_id = assignment_id
        self.end_datetime = ensure_utc(end_datetime)
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.remaining: Optional[TimeRemaining] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> TimeRemaining:
        """Recompute the remaining time now. Never suspends."""
        self.remaining = calculate_time_remaining(self.end_datetime, self.clock())
        if self.on_tick is not None:
            try:
                self.on_tick(self.assignment_id, self.remaining)
            except Exception as e:
                logger.error(f"Countdown listener failed: {e}", assignment_id=self.assignment_id, exc_info=True)
        return self.remaining

    def start(self) -> "CountdownTimer":
        """Tick immediately, then every interval on the running event loop."""
        if not self.running:
            self.tick()
            self._task = asyncio.create_task(self._run())
        return self

    def stop(self) -> None:
        """Stop ticking immediately."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.tick()


class CountdownRegistry:
    """
    Registry of countdown timers keyed by assignment id.

    Timers are only started for active assignments; a terminal assignment releases its
    timer. Use track() for scoped acquisition tied to a view's lifetime.
    """

    def __init__(
        self,
        on_tick: Optional[OnTick] = None,
        interval_seconds: float = 1.0,
        clock: Clock = utc_now,
    ):
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._timers: Dict[str, CountdownTimer] = {}

    def __contains__(self, assignment_id: str) -> bool:
        return assignment_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def get(self, assignment_id: str) -> Optional[CountdownTimer]:
        return self._timers.get(assignment_id)

    def remaining(self, assignment_id: str) -> Optional[TimeRemaining]:
        timer = self._timers.get(assignment_id)
        return timer.remaining if timer else None

    def start(self, assignment: TempAssignment) -> Optional[CountdownTimer]:
        """
        Start (or retarget) the countdown for an assignment.

        Returns None and releases any existing timer when the assignment is terminal.
        An extension moves end_datetime, so a running timer whose end changed is replaced.
        """
        if assignment.is_terminal:
            self.stop(assignment.id)
            return None

        existing = self._timers.get(assignment.id)
        if existing is not None and existing.end_datetime == assignment.end_datetime and existing.running:
            return existing
        if existing is not None:
            existing.stop()

        timer = CountdownTimer(
            assignment_id=assignment.id,
            end_datetime=assignment.end_datetime,
            on_tick=self.on_tick,
            interval_seconds=self.interval_seconds,
            clock=self.clock,
        )
        self._timers[assignment.id] = timer
        logger.debug(
            "Countdown started",
            assignment_id=assignment.id,
            end_datetime=assignment.end_datetime.isoformat(),
        )
        return timer.start()

    def stop(self, assignment_id: str) -> None:
        timer = self._timers.pop(assignment_id, None)
        if timer is not None:
            timer.stop()
            logger.debug("Countdown stopped", assignment_id=assignment_id)

    def stop_all(self) -> None:
        for assignment_id in list(self._timers):
            self.stop(assignment_id)

    def retain(self, assignment_ids: Set[str]) -> None:
        """Stop every timer whose assignment is not in ``assignment_ids``."""
        for assignment_id in list(self._timers):
            if assignment_id not in assignment_ids:
                self.stop(assignment_id)

    @asynccontextmanager
    async def track(self, assignment: TempAssignment) -> AsyncIterator[Optional[CountdownTimer]]:
        """Run a countdown for the duration of the block and always release it."""
        timer = self.start(assignment)
        try:
            yield timer
        finally:
            self.stop(assignment.id)
