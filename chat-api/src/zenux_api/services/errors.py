"""
Error response utilities for the Zenux Chat API.

Non-streaming failures use the OpenAI-style envelope the web client already
understands:
{
    "error": {
        "message": "Error description",
        "type": "error_type",
        "param": "parameter_name",
        "code": "error_code"
    }
}

Error Types:
    - invalid_request_error: Missing or malformed request fields (400)
    - authentication_error: Missing/invalid bearer token (401)
    - not_found_error: Requested chat doesn't exist (404)
    - upstream_error: AI gateway failure, sent in-band on an SSE stream
    - api_error: Server-side error (500)

Once the relay has committed SSE headers an HTTP status can no longer be
changed, so upstream failures are framed as a single ``data:`` event via
``upstream_error_event``.

Last Grunted: 10/12/2026 10:30:00 AM UTC
"""
import json
from typing import Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel


# ============================================================================
# Error Models
# ============================================================================

class ErrorDetail(BaseModel):
    """
    Error detail structure.

    Attributes:
        message: Human-readable error description
        type: Error category
        param: Parameter that caused the error (nullable)
        code: Machine-readable error code (nullable)
    """
    message: str
    type: str
    param: Optional[str] = None
    code: Optional[str] = None


class ErrorEnvelope(BaseModel):
    """Error response wrapper."""
    error: ErrorDetail


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    message: str,
    error_type: str = "invalid_request_error",
    param: Optional[str] = None,
    code: Optional[str] = None,
    status_code: int = 400
) -> JSONResponse:
    """
    Create an error response in the shared envelope.

    Args:
        message: Human-readable error description
        error_type: Error category (see module docstring for types)
        param: The parameter that caused the error (if applicable)
        code: Machine-readable error code
        status_code: HTTP status code

    Returns:
        JSONResponse with the error envelope

    Last Grunted: 10/12/2026 10:30:00 AM UTC
    """
    envelope = ErrorEnvelope(
        error=ErrorDetail(message=message, type=error_type, param=param, code=code)
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


# ============================================================================
# Request Errors (4xx)
# ============================================================================

def missing_parameter_error(param: str) -> JSONResponse:
    """400 for a required field that is absent or blank (e.g. ``message``)."""
    return create_error_response(
        message=f"'{param}' is required and must not be blank",
        param=param,
        code="missing_required_parameter",
    )


def invalid_parameter_error(param: str, message: str, code: Optional[str] = None) -> JSONResponse:
    """400 for a field with a value the store rejects (role, message_type)."""
    return create_error_response(message=message, param=param, code=code or "invalid_parameter")


def authentication_error(message: str = "Invalid or expired token") -> JSONResponse:
    """
    401 for a bearer token the auth provider did not accept.

    Also used when ``REQUIRE_AUTH`` is on and no token was sent. The
    ``WWW-Authenticate`` header tells the web client to refresh its session.
    """
    response = create_error_response(
        message=message,
        error_type="authentication_error",
        code="invalid_token",
        status_code=401,
    )
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


def resource_not_found_error(resource_type: str, resource_id: str) -> JSONResponse:
    # chat -> param "chat_id", code "chat_not_found"
    return create_error_response(
        message=f"{resource_type.title()} '{resource_id}' not found",
        error_type="not_found_error",
        param=f"{resource_type}_id",
        code=f"{resource_type}_not_found",
        status_code=404,
    )


# ============================================================================
# Server Errors (5xx)
# ============================================================================

def internal_error() -> JSONResponse:
    """500 with a fixed message; details go to the log, never the client."""
    return create_error_response(
        message="An internal server error occurred",
        error_type="api_error",
        code="internal_error",
        status_code=500,
    )


# ============================================================================
# In-band SSE Errors
# ============================================================================

def upstream_error_event(message: str, code: str = "upstream_error") -> str:
    """
    Frame an upstream failure as a single SSE event.

    Args:
        message: Failure description
        code: Machine-readable code (upstream_unreachable, upstream_status, ...)

    Returns:
        str: ``data: {...}\\n\\n`` ready to be written to the stream

    Example:
        >>> upstream_error_event("Connection refused", "upstream_unreachable")
        'data: {"error": {"message": "Connection refused", ...}}\\n\\n'
    """
    payload = {
        "error": {
            "message": message,
            "type": "upstream_error",
            "param": None,
            "code": code,
        }
    }
    return f"data: {json.dumps(payload)}\n\n"
