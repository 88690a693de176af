"""Session handling for backend calls."""

from driver_assignments.auth.session import Session
from driver_assignments.auth.session import SessionManager
from driver_assignments.auth.session import SessionProvider
from driver_assignments.auth.session import StaticSessionProvider

__all__ = [
    "Session",
    "SessionManager",
    "SessionProvider",
    "StaticSessionProvider",
]
