"""
Change Feed Subscriber

Background task that listens to a change channel for one temp driver and folds
notifications into debounced "changed" signals that trigger a repository refetch.
"""

import asyncio
import inspect
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import AsyncIterator
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

from loguru import logger

from driver_assignments.auth.session import SessionManager
from driver_assignments.feed.channels import ChangeChannel
from driver_assignments.feed.channels import ChangeEvent
from driver_assignments.feed.channels import PollingChangeChannel
from driver_assignments.feed.channels import RealtimeChangeChannel
from driver_assignments.settings import Settings

OnChange = Callable[[], Any]
OnStale = Callable[[Optional[BaseException]], Any]

_CLOSED = object()


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChangeFeedSubscription:
    """
    Cancellable subscription to one driver's change channel.

    Notifications arriving within ``debounce_seconds`` of the first one collapse into a
    single ``on_change`` call. dispose() is synchronous: once it returns no further
    callback runs and every events() iterator ends.

    When the channel ends or fails the subscription becomes stale instead of stopping
    silently; ``is_stale`` and ``last_error`` expose it and ``on_stale`` is notified.
    """

    def __init__(
        self,
        driver_id: str,
        channel: ChangeChannel,
        on_change: Optional[OnChange] = None,
        debounce_seconds: float = 0.5,
        on_stale: Optional[OnStale] = None,
        on_dispose: Optional[Callable[["ChangeFeedSubscription"], None]] = None,
    ):
        self.driver_id = driver_id
        self.channel = channel
        self.on_change = on_change
        self.on_stale = on_stale
        self.on_dispose = on_dispose
        self.debounce_seconds = debounce_seconds

        self.is_stale = False
        self.last_error: Optional[BaseException] = None
        self.last_event_at: Optional[datetime] = None
        self.dispatch_count = 0

        self._disposed = False
        self._listen_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._pending: Optional[ChangeEvent] = None
        self._queues: List[asyncio.Queue] = []

    @property
    def disposed(self) -> bool:
        return self._disposed

    def start(self) -> "ChangeFeedSubscription":
        """Start listening on the running event loop."""
        if self._disposed:
            raise RuntimeError("Cannot start a disposed subscription")
        if self._listen_task is None:
            self._listen_task = asyncio.create_task(self._listen())
        return self

    def dispose(self) -> None:
        """Stop listening and release the channel. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True

        for task in (self._flush_task, self._listen_task):
            if task is not None and not task.done():
                task.cancel()
        self._flush_task = None
        self._listen_task = None
        self._pending = None
        self._close_queues()
        logger.debug("Change feed subscription disposed", driver_id=self.driver_id)
        if self.on_dispose is not None:
            self.on_dispose(self)

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """
        Debounced change events as a lazy, potentially infinite stream.

        Ends when the subscription is disposed or becomes stale.
        """
        if self._disposed or self.is_stale:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def _close_queues(self) -> None:
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def _listen(self) -> None:
        stream = self.channel.listen(self.driver_id)
        try:
            async for event in stream:
                if self._disposed:
                    return
                self._receive(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._mark_stale(e)
        else:
            if not self._disposed:
                await self._mark_stale(None)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _receive(self, event: ChangeEvent) -> None:
        self.last_event_at = event.received_at
        self._pending = event
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush_after_window())

    async def _flush_after_window(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self._disposed or self._pending is None:
            return

        event = self._pending
        self._pending = None
        self.dispatch_count += 1
        logger.debug(
            "Assignment change detected",
            driver_id=self.driver_id,
            change_type=event.change_type.value,
            assignment_id=event.assignment_id,
        )

        for queue in self._queues:
            queue.put_nowait(event)

        if self.on_change is not None:
            try:
                await _invoke(self.on_change)
            except Exception as e:
                # the refetch reports its own failure to the view; the feed keeps running
                logger.error(f"Change callback failed: {e}", driver_id=self.driver_id, exc_info=True)

    async def _mark_stale(self, error: Optional[BaseException]) -> None:
        self.is_stale = True
        self.last_error = error
        logger.warning(
            "Change feed is stale",
            driver_id=self.driver_id,
            error_type=type(error).__name__ if error else None,
            error_message=str(error) if error else "channel ended",
        )
        self._close_queues()
        if self.on_stale is not None:
            try:
                await _invoke(self.on_stale, error)
            except Exception as e:
                logger.error(f"Stale callback failed: {e}", driver_id=self.driver_id, exc_info=True)


class ChangeFeedSubscriber:
    """
    Registry of change feed subscriptions, one per driver.

    Subscribing again for a driver disposes the previous subscription first.
    """

    def __init__(self, channel: ChangeChannel, debounce_seconds: float = 0.5):
        self.channel = channel
        self.debounce_seconds = debounce_seconds
        self._subscriptions: Dict[str, ChangeFeedSubscription] = {}

    @classmethod
    def from_settings(cls, settings: Settings, session_manager: SessionManager) -> "ChangeFeedSubscriber":
        """Use the realtime socket when configured, polling otherwise."""
        if settings.realtime_enabled:
            channel: ChangeChannel = RealtimeChangeChannel(
                url=settings.realtime_url,
                session_manager=session_manager,
                api_key=settings.realtime_api_key,
                heartbeat_seconds=settings.realtime_heartbeat_seconds,
            )
            logger.info("Change feed using realtime channel", realtime_url=settings.realtime_url)
        else:
            channel = PollingChangeChannel(interval_seconds=settings.poll_interval_seconds)
            logger.info("Change feed using polling channel", interval_seconds=settings.poll_interval_seconds)
        return cls(channel=channel, debounce_seconds=settings.change_debounce_seconds)

    def subscribe(
        self,
        driver_id: str,
        on_change: Optional[OnChange] = None,
        on_stale: Optional[OnStale] = None,
    ) -> ChangeFeedSubscription:
        """
        Open a subscription for a temp driver.

        Args:
            driver_id: Temp driver whose assignment rows are watched
            on_change: Called (sync or async) once per debounce window with changes
            on_stale: Called with the error (or None) when the channel ends or fails

        Returns:
            Started subscription; call dispose() to release it
        """
        self.unsubscribe(driver_id)
        subscription = ChangeFeedSubscription(
            driver_id=driver_id,
            channel=self.channel,
            on_change=on_change,
            debounce_seconds=self.debounce_seconds,
            on_stale=on_stale,
            on_dispose=self._forget,
        )
        self._subscriptions[driver_id] = subscription
        logger.info("Change feed subscribed", driver_id=driver_id)
        return subscription.start()

    def get(self, driver_id: str) -> Optional[ChangeFeedSubscription]:
        return self._subscriptions.get(driver_id)

    def unsubscribe(self, driver_id: str) -> None:
        subscription = self._subscriptions.pop(driver_id, None)
        if subscription is not None:
            subscription.dispose()

    def _forget(self, subscription: ChangeFeedSubscription) -> None:
        # a subscription disposed directly leaves the registry too
        if self._subscriptions.get(subscription.driver_id) is subscription:
            del self._subscriptions[subscription.driver_id]

    def dispose_all(self) -> None:
        for driver_id in list(self._subscriptions):
            self.unsubscribe(driver_id)
