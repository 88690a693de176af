"""Centralized session management with in-memory caching for backend bearer tokens.

The driver session itself is owned by an external auth collaborator (the login flow).
This module only asks that collaborator for the current session, caches it in memory
until shortly before it expires, and turns "no session" into an AuthError so that no
request is ever attempted without a bearer token.
"""

import asyncio
from datetime import datetime
from datetime import timezone
from typing import Optional
from typing import Protocol

from loguru import logger
from pydantic import BaseModel
from pydantic import ConfigDict

from driver_assignments.errors import AuthError

# Refresh a cached session this many seconds before it expires
REFRESH_MARGIN_SECONDS = 60


class Session(BaseModel):
    """Bearer session of the signed-in driver."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    driver_id: str
    expires_at: Optional[datetime] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the session has no more than ``seconds`` left (never for open-ended sessions)."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - now).total_seconds() <= seconds


class SessionProvider(Protocol):
    """External auth collaborator."""

    async def get_session(self) -> Optional[Session]:
        """Return the current session, or None when signed out."""
        ...


class StaticSessionProvider:
    """Session provider backed by a fixed session (scripts, tests, service accounts)."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session

    async def get_session(self) -> Optional[Session]:
        return self.session


class SessionManager:
    """
    Session cache shared by every backend call.

    The session is fetched lazily on the first call to get_session() and reused until it
    is about to expire. Concurrent callers on the event loop share one provider call.

    Attributes
    ----------
    provider : SessionProvider
        External auth collaborator
    _session : Optional[Session]
        The currently cached session (in-memory only)
    _lock : asyncio.Lock
        Serializes refreshes
    """

    def __init__(self, provider: SessionProvider, refresh_margin_seconds: float = REFRESH_MARGIN_SECONDS):
        self.provider = provider
        self.refresh_margin_seconds = refresh_margin_seconds
        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()

    async def get_session(self) -> Session:
        """
        Get a valid session.

        Returns the cached session while it is valid for longer than the refresh margin,
        otherwise asks the provider again.

        Raises
        ------
        AuthError
            If the provider has no session or only an expired one
        """
        async with self._lock:
            if self._session and not self._session.expires_within(self.refresh_margin_seconds):
                return self._session

            if self._session:
                logger.info("Cached session expires soon, requesting a fresh one", driver_id=self._session.driver_id)

            session = await self.provider.get_session()
            if session is None or not session.access_token:
                self._session = None
                raise AuthError("No active session. Please sign in again.")

            if session.expires_within(0):
                self._session = None
                raise AuthError("Session has expired. Please sign in again.")

            self._session = session
            logger.debug("Session cached", driver_id=session.driver_id)
            return session

    async def get_token(self) -> str:
        """Bearer token of the current session."""
        session = await self.get_session()
        return session.access_token

    @property
    def cached_session(self) -> Optional[Session]:
        """Get the currently cached session (if any)."""
        return self._session

    def invalidate(self) -> None:
        """
        Drop the cached session.

        Forces the provider to be asked again on the next call, e.g. after a 401.
        """
        if self._session is not None:
            logger.info("Session invalidated", driver_id=self._session.driver_id)
        self._session = None
