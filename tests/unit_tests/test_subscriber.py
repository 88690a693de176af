"""Unit tests for feed/subscriber.py: debouncing, disposal and stale detection."""

import asyncio
from unittest.mock import AsyncMock
from unittest.mock import MagicMock
from unittest.mock import patch

import pytest

from driver_assignments.enums import ChangeType
from driver_assignments.errors import NetworkError
from driver_assignments.feed.channels import PollingChangeChannel
from driver_assignments.feed.channels import RealtimeChangeChannel
from driver_assignments.feed.subscriber import ChangeFeedSubscriber
from driver_assignments.feed.subscriber import ChangeFeedSubscription
from driver_assignments.settings import Settings
from tests.consts import BASE_URL
from tests.consts import DRIVER_ID
from tests.consts import OTHER_DRIVER_ID

WINDOW = 0.05


async def _settle(windows: float = 3) -> None:
    await asyncio.sleep(WINDOW * windows)


class TestDebounce:
    """Tests for the debounce window of ChangeFeedSubscription."""

    @pytest.mark.asyncio
    async def test_rapid_notifications_trigger_one_callback(self, change_channel):
        """Test that two notifications inside one window cause exactly one refetch."""
        on_change = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_change, debounce_seconds=WINDOW).start()

        change_channel.push(ChangeType.UPDATE)
        change_channel.push(ChangeType.UPDATE)
        await _settle()

        assert on_change.call_count == 1
        assert subscription.dispatch_count == 1
        subscription.dispose()

    @pytest.mark.asyncio
    async def test_separate_windows_trigger_separate_callbacks(self, change_channel):
        on_change = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_change, debounce_seconds=WINDOW).start()

        change_channel.push()
        await _settle()
        change_channel.push()
        await _settle()

        assert on_change.call_count == 2
        subscription.dispose()

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self, change_channel):
        calls = []

        async def on_change():
            calls.append("refetch")

        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_change, debounce_seconds=WINDOW).start()
        change_channel.push()
        await _settle()

        assert calls == ["refetch"]
        subscription.dispose()

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_feed_running(self, change_channel):
        on_change = MagicMock(side_effect=[RuntimeError("boom"), None])
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_change, debounce_seconds=WINDOW).start()

        change_channel.push()
        await _settle()
        change_channel.push()
        await _settle()

        assert on_change.call_count == 2
        assert subscription.is_stale is False
        subscription.dispose()

    @pytest.mark.asyncio
    async def test_last_event_timestamp_is_recorded(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, debounce_seconds=WINDOW).start()

        change_channel.push()
        await _settle()

        assert subscription.last_event_at is not None
        subscription.dispose()


class TestDispose:
    """Tests for ChangeFeedSubscription.dispose."""

    @pytest.mark.asyncio
    async def test_no_callback_after_dispose(self, change_channel):
        """Test that a pending window never fires once disposed."""
        on_change = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_change, debounce_seconds=WINDOW).start()

        change_channel.push()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        subscription.dispose()
        await _settle()

        on_change.assert_not_called()
        assert subscription.disposed is True

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel).start()

        subscription.dispose()
        subscription.dispose()

        assert subscription.is_stale is False

    @pytest.mark.asyncio
    async def test_disposed_subscription_cannot_restart(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel)
        subscription.dispose()

        with pytest.raises(RuntimeError):
            subscription.start()


class TestEventsStream:
    """Tests for the events() async iterator."""

    @pytest.mark.asyncio
    async def test_yields_debounced_events_until_disposed(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, debounce_seconds=WINDOW).start()

        async def consume():
            return [event async for event in subscription.events()]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        change_channel.push(ChangeType.INSERT, "ta-1")
        change_channel.push(ChangeType.UPDATE, "ta-1")
        await _settle()
        subscription.dispose()
        events = await asyncio.wait_for(consumer, timeout=1)

        assert [e.change_type for e in events] == [ChangeType.UPDATE]

    @pytest.mark.asyncio
    async def test_stream_ends_when_channel_fails(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, debounce_seconds=WINDOW).start()

        async def consume():
            return [event async for event in subscription.events()]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        change_channel.fail(NetworkError("socket dropped"))

        assert await asyncio.wait_for(consumer, timeout=1) == []

    @pytest.mark.asyncio
    async def test_disposed_stream_is_empty(self, change_channel):
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel)
        subscription.dispose()

        assert [event async for event in subscription.events()] == []


class TestStale:
    """Tests for stale detection when the channel ends or fails."""

    @pytest.mark.asyncio
    async def test_channel_failure_marks_stale(self, change_channel):
        on_stale = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_stale=on_stale).start()
        error = NetworkError("Realtime channel closed by server (phx_error)")

        change_channel.fail(error)
        await _settle()

        assert subscription.is_stale is True
        assert subscription.last_error is error
        on_stale.assert_called_once_with(error)

    @pytest.mark.asyncio
    async def test_channel_end_marks_stale_without_error(self, change_channel):
        on_stale = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_stale=on_stale).start()

        change_channel.close()
        await _settle()

        assert subscription.is_stale is True
        assert subscription.last_error is None
        on_stale.assert_called_once_with(None)

    @pytest.mark.asyncio
    async def test_async_stale_callback_is_awaited(self, change_channel):
        on_stale = AsyncMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_stale=on_stale).start()
        error = NetworkError("Realtime channel closed by server (phx_close)")

        change_channel.fail(error)
        await _settle()

        on_stale.assert_awaited_once_with(error)
        assert subscription.is_stale is True

    @pytest.mark.asyncio
    async def test_failing_async_stale_callback_is_logged(self, change_channel):
        on_stale = AsyncMock(side_effect=RuntimeError("render failed"))
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_stale=on_stale).start()

        with patch("driver_assignments.feed.subscriber.logger") as mock_logger:
            change_channel.close()
            await _settle()

        on_stale.assert_awaited_once_with(None)
        mock_logger.error.assert_called_once()
        assert subscription.is_stale is True

    @pytest.mark.asyncio
    async def test_dispose_is_not_stale(self, change_channel):
        on_stale = MagicMock()
        subscription = ChangeFeedSubscription(DRIVER_ID, change_channel, on_stale=on_stale).start()
        await asyncio.sleep(0)

        subscription.dispose()
        await _settle()

        on_stale.assert_not_called()


class TestChangeFeedSubscriber:
    """Tests for the ChangeFeedSubscriber registry."""

    @pytest.mark.asyncio
    async def test_resubscribe_disposes_previous(self, change_channel):
        subscriber = ChangeFeedSubscriber(change_channel, debounce_seconds=WINDOW)

        first = subscriber.subscribe(DRIVER_ID)
        second = subscriber.subscribe(DRIVER_ID)

        assert first.disposed is True
        assert subscriber.get(DRIVER_ID) is second
        subscriber.dispose_all()

    @pytest.mark.asyncio
    async def test_subscriptions_are_per_driver(self, change_channel):
        subscriber = ChangeFeedSubscriber(change_channel)

        mine = subscriber.subscribe(DRIVER_ID)
        theirs = subscriber.subscribe(OTHER_DRIVER_ID)
        subscriber.unsubscribe(DRIVER_ID)

        assert mine.disposed is True
        assert theirs.disposed is False
        assert subscriber.get(DRIVER_ID) is None

        subscriber.dispose_all()
        assert theirs.disposed is True

    @pytest.mark.asyncio
    async def test_direct_dispose_leaves_registry(self, change_channel):
        subscriber = ChangeFeedSubscriber(change_channel)
        subscription = subscriber.subscribe(DRIVER_ID)

        subscription.dispose()

        assert subscriber.get(DRIVER_ID) is None

    @pytest.mark.asyncio
    async def test_disposing_replaced_subscription_keeps_current(self, change_channel):
        subscriber = ChangeFeedSubscriber(change_channel)
        first = subscriber.subscribe(DRIVER_ID)
        second = subscriber.subscribe(DRIVER_ID)

        first.dispose()

        assert subscriber.get(DRIVER_ID) is second
        subscriber.dispose_all()

    def test_from_settings_uses_polling_without_realtime_url(self, session_manager):
        settings = Settings(_env_file=None, api_base_url=BASE_URL, poll_interval_seconds=12)

        subscriber = ChangeFeedSubscriber.from_settings(settings, session_manager)

        assert isinstance(subscriber.channel, PollingChangeChannel)
        assert subscriber.channel.interval_seconds == 12

    def test_from_settings_uses_realtime_when_configured(self, session_manager):
        settings = Settings(
            _env_file=None,
            api_base_url=BASE_URL,
            realtime_url="wss://fleet.example.com/realtime/v1/websocket",
            realtime_api_key="anon",
            change_debounce_seconds=0.25,
        )

        subscriber = ChangeFeedSubscriber.from_settings(settings, session_manager)

        assert isinstance(subscriber.channel, RealtimeChangeChannel)
        assert subscriber.channel.api_key == "anon"
        assert subscriber.debounce_seconds == 0.25
