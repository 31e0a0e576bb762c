"""
Client-side error taxonomy.

    AuthError            - 401 from the API; surfaced immediately, never retried
    ValidationError      - 400 from the API (e.g. empty message)
    NotFoundError        - 404 for an unknown chat
    UpstreamError        - non-2xx status or an in-band SSE error event
    TurnInProgressError  - ``send`` called while a reply is still streaming

Transport failures (``httpx.ConnectError`` / ``httpx.TimeoutException``) are
not wrapped; the controller recovers from them with the offline queue.
User cancellation is plain ``asyncio.CancelledError``.
"""
from typing import Any, Optional


class ZenuxClientError(Exception):
    """Base class for errors raised by ``zenux_client``."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    @classmethod
    def from_envelope(cls, body: Any, status_code: Optional[int] = None, default: str = "Request failed"):
        """Build from an ``{"error": {...}}`` body, tolerating anything else."""
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return cls(str(error.get("message") or default), error.get("code"), status_code)
        if isinstance(error, str) and error:
            return cls(error, None, status_code)
        return cls(default, None, status_code)


class AuthError(ZenuxClientError):
    pass


class ValidationError(ZenuxClientError):
    pass


class NotFoundError(ZenuxClientError):
    pass


class UpstreamError(ZenuxClientError):
    pass


class TurnInProgressError(ZenuxClientError):
    def __init__(self, message: str = "A reply is still streaming"):
        super().__init__(message, code="turn_in_progress")
