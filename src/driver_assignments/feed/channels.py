"""
Change Channels

Sources of row-level change notifications for a driver's assignments:
- RealtimeChangeChannel: Supabase Realtime (Phoenix) websocket on postgres_changes
- PollingChangeChannel: fixed-interval synthetic notifications when no socket is available

A channel only reports that something changed; the subscriber turns that into a refetch.
"""

import asyncio
import json
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import AsyncIterator
from typing import Dict
from typing import Optional
from typing import Protocol
from urllib.parse import urlencode

import aiohttp
from loguru import logger
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from driver_assignments.auth.session import SessionManager
from driver_assignments.enums import ChangeType
from driver_assignments.errors import NetworkError
from driver_assignments.errors import ServerError
from driver_assignments.errors import translate_transport_error

ASSIGNMENTS_TABLE = "temp_assignments"
REALTIME_PROTOCOL_VERSION = "1.0.0"


class ChangeEvent(BaseModel):
    """A single change notification."""

    model_config = ConfigDict(frozen=True)

    change_type: ChangeType
    assignment_id: Optional[str] = None
    commit_timestamp: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChangeChannel(Protocol):
    """A long-lived source of change events scoped to one temp driver."""

    def listen(self, driver_id: str) -> AsyncIterator[ChangeEvent]:
        """Yield change events until the channel closes or fails."""
        ...


# ════════════════════════════════════════════════════════════════════════════
# Polling
# ════════════════════════════════════════════════════════════════════════════


class PollingChangeChannel:
    """Emits a synthetic change every interval so the caller refetches on a schedule."""

    def __init__(self, interval_seconds: float = 30.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self.interval_seconds = interval_seconds

    async def listen(self, driver_id: str) -> AsyncIterator[ChangeEvent]:
        logger.info("Polling change channel started", driver_id=driver_id, interval_seconds=self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            yield ChangeEvent(change_type=ChangeType.POLL)


# ════════════════════════════════════════════════════════════════════════════
# Realtime (Phoenix protocol)
# ════════════════════════════════════════════════════════════════════════════


def channel_topic(driver_id: str) -> str:
    """Phoenix topic for a driver's assignment changes."""
    return f"realtime:{ASSIGNMENTS_TABLE}:{driver_id}"


def build_join_message(driver_id: str, access_token: str, ref: str, schema: str = "public") -> Dict[str, Any]:
    """phx_join frame subscribing to postgres_changes filtered by temp_driver_id."""
    return {
        "topic": channel_topic(driver_id),
        "event": "phx_join",
        "payload": {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {
                        "event": "*",
                        "schema": schema,
                        "table": ASSIGNMENTS_TABLE,
                        "filter": f"temp_driver_id=eq.{driver_id}",
                    }
                ],
            },
            "access_token": access_token,
        },
        "ref": ref,
    }


def build_heartbeat_message(ref: str) -> Dict[str, Any]:
    return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": ref}


def parse_realtime_message(message: Dict[str, Any], topic: str) -> Optional[ChangeEvent]:
    """
    Interpret one frame from the realtime socket.

    Args:
        message: Decoded JSON frame
        topic: Topic this channel joined

    Returns:
        A ChangeEvent for insert/update/delete notifications on the topic, otherwise None

    Raises:
        ServerError: The join was rejected
        NetworkError: The server closed or errored the channel
    """
    if message.get("topic") != topic:
        return None

    event = message.get("event")
    payload = message.get("payload") or {}

    if event == "postgres_changes":
        data = payload.get("data") or {}
        change = str(data.get("type", "")).upper()
        if change not in (ChangeType.INSERT.value, ChangeType.UPDATE.value, ChangeType.DELETE.value):
            return None
        record = data.get("record") or data.get("old_record") or {}
        assignment_id = record.get("id")
        return ChangeEvent(
            change_type=ChangeType(change),
            assignment_id=str(assignment_id) if assignment_id is not None else None,
            commit_timestamp=data.get("commit_timestamp"),
        )

    if event == "phx_reply" and payload.get("status") == "error":
        response = payload.get("response") or {}
        reason = response.get("reason") or response.get("message") or "Realtime subscription rejected"
        raise ServerError(str(reason))

    if event in ("phx_error", "phx_close"):
        raise NetworkError(f"Realtime channel closed by server ({event})")

    return None


class RealtimeChangeChannel:
    """Supabase Realtime websocket channel on the temp_assignments table."""

    def __init__(
        self,
        url: str,
        session_manager: SessionManager,
        api_key: Optional[str] = None,
        heartbeat_seconds: float = 30.0,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the channel.

        Args:
            url: Websocket endpoint (wss://.../realtime/v1/websocket)
            session_manager: Source of the access token sent on join
            api_key: Project API key sent as a query parameter
            heartbeat_seconds: Interval between Phoenix heartbeat frames
            http_session: Shared aiohttp session; a private one is created per listen() otherwise
        """
        self.url = url
        self.session_manager = session_manager
        self.api_key = api_key
        self.heartbeat_seconds = heartbeat_seconds
        self.http_session = http_session
        self._ref = 0

    def socket_url(self) -> str:
        params = {"vsn": REALTIME_PROTOCOL_VERSION}
        if self.api_key:
            params["apikey"] = self.api_key
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode(params)}"

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                await ws.send_json(build_heartbeat_message(self._next_ref()))
            except (ConnectionResetError, aiohttp.ClientError) as e:
                # the read loop sees the close and ends the channel
                logger.debug(f"Realtime heartbeat stopped: {e}")
                return

    async def listen(self, driver_id: str) -> AsyncIterator[ChangeEvent]:
        token = await self.session_manager.get_token()
        topic = channel_topic(driver_id)

        owns_session = self.http_session is None
        http = self.http_session or aiohttp.ClientSession()
        try:
            async with http.ws_connect(self.socket_url()) as ws:
                await ws.send_json(build_join_message(driver_id, token, self._next_ref()))
                logger.info("Realtime channel joined", driver_id=driver_id, topic=topic)

                heartbeat = asyncio.create_task(self._heartbeat(ws))
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                frame = json.loads(msg.data)
                            except json.JSONDecodeError:
                                logger.warning("Ignoring non-JSON realtime frame", driver_id=driver_id)
                                continue
                            change = parse_realtime_message(frame, topic)
                            if change is not None:
                                yield change
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise NetworkError(f"Realtime socket error: {ws.exception()}")
                        elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                            break
                finally:
                    heartbeat.cancel()
        except aiohttp.ClientError as e:
            raise translate_transport_error(e, "realtime subscribe") from e
        finally:
            if owns_session:
                await http.close()

        logger.warning("Realtime channel ended", driver_id=driver_id, topic=topic)
