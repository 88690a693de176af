"""Error taxonomy for the assignment client and translation of backend responses."""

from typing import Any
from typing import Dict
from typing import Optional

import httpx
from loguru import logger

__all__ = [
    "AssignmentError",
    "ValidationError",
    "AuthError",
    "NetworkError",
    "ServerError",
    "ConflictError",
    "raise_for_response",
    "translate_transport_error",
]


class AssignmentError(Exception):
    """Base class for every error raised by the assignment client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for display layers."""
        return {"error_type": type(self).__name__, "message": self.message}


class ValidationError(AssignmentError):
    """Input rejected on the client before any network call."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class AuthError(AssignmentError):
    """No session, or the backend rejected the session."""


class NetworkError(AssignmentError):
    """Transport failure, no response received."""


class ServerError(AssignmentError):
    """Non-2xx response from the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ConflictError(ServerError):
    """The backend refused a transition because the assignment is no longer in the expected state."""


def _server_message(response: httpx.Response) -> str:
    """Extract the backend's error text, falling back to the raw body."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value

    text = response.text.strip()
    if text:
        return text
    return f"Request failed with status {response.status_code}"


def raise_for_response(response: httpx.Response) -> None:
    """
    Raise the matching AssignmentError for a non-2xx backend response.

    Maps status codes to the error taxonomy:
    - 401, 403 -> AuthError
    - 409 -> ConflictError
    - anything else outside 2xx -> ServerError

    The backend's error text is preserved verbatim.

    Parameters
    ----------
    response : httpx.Response
        Completed backend response

    Raises
    ------
    AuthError, ConflictError, ServerError
    """
    if response.is_success:
        return

    message = _server_message(response)
    status_code = response.status_code

    logger.warning(
        f"Backend rejected request: {message}",
        http_status=status_code,
        http_method=response.request.method,
        url_path=response.request.url.path,
    )

    if status_code in (401, 403):
        raise AuthError(message)
    if status_code == 409:
        raise ConflictError(message, status_code=status_code)
    raise ServerError(message, status_code=status_code)


def translate_transport_error(error: Exception, operation: str) -> NetworkError:
    """
    Build a NetworkError for a transport-level failure (timeouts, DNS, refused connections).

    Parameters
    ----------
    error : Exception
        The httpx or aiohttp exception
    operation : str
        Name of the operation that failed, used in the message

    Returns
    -------
    NetworkError
        Error carrying a readable description; the caller raises it ``from error``
    """
    error_message = str(error)
    lowered = error_message.lower()

    if isinstance(error, httpx.TimeoutException) or "timeout" in lowered or "timed out" in lowered:
        detail = f"{operation} timed out"
    elif "name or service not known" in lowered or "nodename nor servname" in lowered:
        detail = f"{operation} failed: backend hostname could not be resolved"
    elif "connection refused" in lowered:
        detail = f"{operation} failed: connection refused"
    elif "ssl" in lowered or "certificate" in lowered:
        detail = f"{operation} failed: SSL/TLS error"
    else:
        detail = f"{operation} failed: {error_message or type(error).__name__}"

    logger.error(
        f"Transport error during {operation}: {type(error).__name__}: {error_message}",
        operation=operation,
        error_type=type(error).__name__,
    )
    return NetworkError(detail)
