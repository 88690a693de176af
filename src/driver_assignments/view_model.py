"""
Assignment View Model

Composes the repository, change feed, countdown registry and workflows into the
observable state a driver screen renders.

Server state only enters through repository fetches; workflow success and change
notifications both trigger a refetch. After close() every in-flight result is discarded.
"""

from typing import Callable
from typing import List
from typing import Optional
from typing import Tuple

from loguru import logger
from pydantic import BaseModel
from pydantic import ConfigDict

from driver_assignments.auth.session import SessionManager
from driver_assignments.auth.session import SessionProvider
from driver_assignments.countdown import CountdownRegistry
from driver_assignments.errors import AssignmentError
from driver_assignments.errors import ConflictError
from driver_assignments.errors import ValidationError
from driver_assignments.feed.subscriber import ChangeFeedSubscriber
from driver_assignments.feed.subscriber import ChangeFeedSubscription
from driver_assignments.models.assignment import ExtensionRequest
from driver_assignments.models.assignment import TempAssignment
from driver_assignments.models.assignment import TimeRemaining
from driver_assignments.monitoring.logger import configure_logger
from driver_assignments.repository import AssignmentRepository
from driver_assignments.settings import Settings
from driver_assignments.timemath import format_time_remaining
from driver_assignments.workflows.completion import CompletionIntent
from driver_assignments.workflows.completion import CompletionWorkflow
from driver_assignments.workflows.extension import DurationInput
from driver_assignments.workflows.extension import ExtensionWorkflow

Listener = Callable[["AssignmentViewState"], None]


class AssignmentViewState(BaseModel):
    """Immutable snapshot of everything the assignment screen renders."""

    model_config = ConfigDict(frozen=True)

    driver_id: str
    assignments: Tuple[TempAssignment, ...] = ()
    active_assignment: Optional[TempAssignment] = None
    time_remaining: Optional[TimeRemaining] = None
    countdown_label: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    extending: bool = False
    completing: bool = False
    pending_completion_id: Optional[str] = None
    is_stale: bool = False

    @property
    def has_active_assignments(self) -> bool:
        return any(a.is_active for a in self.assignments)

    @property
    def countdown_expired(self) -> bool:
        """Local display flag only; never used to gate actions."""
        return bool(self.time_remaining and self.time_remaining.is_expired)

    @property
    def can_extend(self) -> bool:
        """Gated on the fetched status, not the local countdown."""
        return (
            self.active_assignment is not None
            and self.active_assignment.is_active
            and not self.extending
            and not self.completing
        )

    @property
    def can_complete(self) -> bool:
        return self.can_extend


def select_active(assignments: Tuple[TempAssignment, ...]) -> Optional[TempAssignment]:
    """The assignment shown in the banner: the first active one in list order."""
    for assignment in assignments:
        if assignment.is_active:
            return assignment
    return None


class AssignmentViewModel:
    """
    Observable state for one driver's temporary assignments.

    Usage::

        async with AssignmentViewModel.from_settings(settings, provider, driver_id) as vm:
            vm.add_listener(render)
            await vm.request_extension(hours="1", minutes="30", reason="Traffic")
    """

    def __init__(
        self,
        driver_id: str,
        repository: AssignmentRepository,
        subscriber: Optional[ChangeFeedSubscriber] = None,
        countdowns: Optional[CountdownRegistry] = None,
        extension: Optional[ExtensionWorkflow] = None,
        completion: Optional[CompletionWorkflow] = None,
    ):
        self.driver_id = driver_id
        self.repository = repository
        self.subscriber = subscriber
        # an empty registry is falsy (it defines __len__)
        self.countdowns = countdowns if countdowns is not None else CountdownRegistry()
        self.countdowns.on_tick = self._on_tick
        self.extension = extension or ExtensionWorkflow(repository)
        self.completion = completion or CompletionWorkflow(repository)

        self._state = AssignmentViewState(driver_id=driver_id)
        self._listeners: List[Listener] = []
        self._subscription: Optional[ChangeFeedSubscription] = None
        self._inflight = 0
        self._closed = False
        self._owns_repository = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_provider: SessionProvider,
        driver_id: str,
    ) -> "AssignmentViewModel":
        """Wire every collaborator from settings; the view model owns the HTTP client."""
        configure_logger(
            level=settings.log_level,
            log_file=settings.log_file,
            serialize=settings.log_serialize,
        )
        session_manager = SessionManager(session_provider)
        repository = AssignmentRepository.from_settings(settings, session_manager)
        view_model = cls(
            driver_id=driver_id,
            repository=repository,
            subscriber=ChangeFeedSubscriber.from_settings(settings, session_manager),
            countdowns=CountdownRegistry(interval_seconds=settings.countdown_interval_seconds),
        )
        view_model._owns_repository = True
        return view_model

    async def __aenter__(self) -> "AssignmentViewModel":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ────────────────────────────────────────────────────────────────────────
    # Observation
    # ────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> AssignmentViewState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, **changes) -> None:
        if self._closed:
            return
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"View listener failed: {e}", driver_id=self.driver_id, exc_info=True)

    def _set_error(self, error: AssignmentError) -> None:
        self._set_state(error=error.message, error_type=type(error).__name__)

    # ────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to changes and load the first snapshot."""
        if self._closed:
            raise RuntimeError("View model has been closed")
        self._subscribe()
        await self.refresh()

    def _subscribe(self) -> None:
        if self.subscriber is None:
            return
        self._subscription = self.subscriber.subscribe(
            self.driver_id,
            on_change=self.refresh,
            on_stale=self._on_stale,
        )
        self._set_state(is_stale=False)

    async def resubscribe(self) -> None:
        """Reopen a stale change feed and refetch what may have been missed."""
        if self._closed:
            return
        self._subscribe()
        await self.refresh()

    async def close(self) -> None:
        """Tear down timers and the subscription; results still in flight are dropped."""
        if self._closed:
            return
        self._closed = True
        if self.subscriber is not None:
            self.subscriber.unsubscribe(self.driver_id)
        elif self._subscription is not None:
            self._subscription.dispose()
        self._subscription = None
        self.countdowns.stop_all()
        self._listeners.clear()
        if self._owns_repository:
            await self.repository.aclose()
        logger.debug("Assignment view closed", driver_id=self.driver_id)

    def _on_stale(self, error: Optional[BaseException]) -> None:
        self._set_state(is_stale=True)

    # ────────────────────────────────────────────────────────────────────────
    # Read path
    # ────────────────────────────────────────────────────────────────────────

    async def refresh(self) -> AssignmentViewState:
        """
        Refetch assignments from the backend.

        Failures are recorded in ``state.error``; the last confirmed list stays displayed.
        """
        if self._closed:
            return self._state

        self._inflight += 1
        self._set_state(loading=True)
        try:
            assignments = await self.repository.list(self.driver_id)
        except AssignmentError as e:
            logger.warning(f"Failed to load temp assignments: {e.message}", driver_id=self.driver_id)
            # this fetch still counts until the finally block runs
            self._set_state(loading=self._inflight > 1)
            self._set_error(e)
            return self._state
        finally:
            self._inflight -= 1

        if self._closed:
            return self._state
        self._apply(assignments)
        return self._state

    def _apply(self, assignments: Tuple[TempAssignment, ...]) -> None:
        active = select_active(assignments)

        # only the displayed assignment keeps a timer
        self.countdowns.retain({active.id} if active is not None else set())

        pending = self._state.pending_completion_id
        if pending is not None and (active is None or active.id != pending):
            intent = self.completion.pending(pending)
            if intent is not None:
                self.completion.cancel(intent)
            pending = None

        time_remaining = None
        if active is not None:
            timer = self.countdowns.start(active)
            time_remaining = timer.remaining if timer is not None else None

        self._set_state(
            assignments=assignments,
            active_assignment=active,
            time_remaining=time_remaining,
            countdown_label=format_time_remaining(time_remaining) if time_remaining else None,
            loading=self._inflight > 0,
            error=None,
            error_type=None,
            pending_completion_id=pending,
        )

    def _on_tick(self, assignment_id: str, remaining: TimeRemaining) -> None:
        active = self._state.active_assignment
        if active is None or active.id != assignment_id:
            return
        self._set_state(time_remaining=remaining, countdown_label=format_time_remaining(remaining))

    def _find(self, assignment_id: Optional[str]) -> TempAssignment:
        if assignment_id is None:
            target = self._state.active_assignment
        else:
            target = next((a for a in self._state.assignments if a.id == assignment_id), None)
        if target is None:
            raise ValidationError("assignment_id", "No matching temporary assignment is loaded")
        return target

    # ────────────────────────────────────────────────────────────────────────
    # Write path
    # ────────────────────────────────────────────────────────────────────────

    async def request_extension(
        self,
        hours: DurationInput,
        minutes: DurationInput,
        reason: str,
        assignment_id: Optional[str] = None,
    ) -> ExtensionRequest:
        """
        Validate and submit an extension, then refetch.

        Raises:
            ValidationError: Invalid input, or an extension/completion is already in flight
            AuthError, NetworkError, ServerError, ConflictError: From the backend, message preserved
        """
        if self._state.extending or self._state.completing:
            raise ValidationError("assignment_id", "Another request for this assignment is in progress")
        assignment = self._find(assignment_id)

        self._set_state(extending=True, error=None, error_type=None)
        try:
            request = await self.extension.submit(assignment, hours, minutes, reason)
        except ConflictError as e:
            self._set_state(extending=False)
            self._set_error(e)
            # server truth moved on; show it without touching local fields
            await self.refresh()
            self._set_error(e)
            raise
        except AssignmentError as e:
            self._set_state(extending=False)
            self._set_error(e)
            raise

        self._set_state(extending=False)
        await self.refresh()
        return request

    def begin_completion(self, assignment_id: Optional[str] = None) -> CompletionIntent:
        """First phase of completion; the screen asks the driver to confirm."""
        assignment = self._find(assignment_id)
        intent = self.completion.request(assignment)
        self._set_state(pending_completion_id=intent.assignment_id)
        return intent

    def cancel_completion(self) -> None:
        pending = self._state.pending_completion_id
        if pending is None:
            return
        intent = self.completion.pending(pending)
        if intent is not None:
            self.completion.cancel(intent)
        self._set_state(pending_completion_id=None)

    async def confirm_completion(self, notes: Optional[str] = None) -> None:
        """
        Second phase of completion, then refetch.

        On failure the assignment stays active and the intent stays pending for a retry.

        Raises:
            ValidationError: Nothing pending confirmation
            AuthError, NetworkError, ServerError, ConflictError: From the backend, message preserved
        """
        pending = self._state.pending_completion_id
        intent = self.completion.pending(pending) if pending else None
        if intent is None:
            raise ValidationError("confirmation", "Completion must be requested before it is confirmed")
        if self._state.completing or self._state.extending:
            raise ValidationError("assignment_id", "Another request for this assignment is in progress")

        self._set_state(completing=True, error=None, error_type=None)
        try:
            await self.completion.confirm(intent, notes)
        except AssignmentError as e:
            self._set_state(completing=False)
            self._set_error(e)
            raise

        self._set_state(completing=False, pending_completion_id=None)
        await self.refresh()
