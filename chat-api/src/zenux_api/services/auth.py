"""Bearer-token verification and caller identity resolution.

The relay trusts a verified token over anything in the request body. When
no token is sent it falls back to the client-supplied ``user_id`` and logs
a warning, unless ``REQUIRE_AUTH`` is enabled.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

from zenux_api.services.observability import emit_audit_event

logger = structlog.get_logger(__name__)

ANONYMOUS_USER_ID = "anonymous"


class AuthenticationError(Exception):
    """Raised when a bearer token is missing (where required) or invalid."""


@dataclass(frozen=True)
class Identity:
    user_id: str
    verified: bool


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> str:
        """Return the user id for *token* or raise AuthenticationError."""
        ...


class SupabaseTokenVerifier:
    """
    Verify access tokens against Supabase Auth (``GET /auth/v1/user``).

    Args:
        client: Shared httpx client
        supabase_url: Project URL, e.g. https://xyz.supabase.co
        service_key: Service role key sent as the ``apikey`` header

    Last Grunted: 10/14/2026 09:00:00 AM UTC
    """

    def __init__(self, client: httpx.AsyncClient, supabase_url: Optional[str], service_key: Optional[str]):
        self._client = client
        self._supabase_url = (supabase_url or "").rstrip("/")
        self._service_key = service_key

    async def verify(self, token: str) -> str:
        if not self._supabase_url or not self._service_key:
            logger.error("auth.supabase.not_configured")
            raise AuthenticationError("Token verification is not configured")

        try:
            response = await self._client.get(
                f"{self._supabase_url}/auth/v1/user",
                headers={
                    "apikey": self._service_key,
                    "Authorization": f"Bearer {token}",
                },
            )
        except httpx.HTTPError as e:
            logger.warning("auth.supabase.unreachable", error=str(e))
            raise AuthenticationError("Invalid or expired token") from e

        if response.status_code != 200:
            logger.info("auth.supabase.rejected", status_code=response.status_code)
            raise AuthenticationError("Invalid or expired token")

        try:
            user_id = response.json().get("id")
        except ValueError as e:
            raise AuthenticationError("Invalid or expired token") from e

        if not user_id:
            raise AuthenticationError("Invalid or expired token")
        return str(user_id)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a ``Bearer <token>`` header, else None."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_identity(
    authorization: Optional[str],
    claimed_user_id: Optional[str],
    verifier: TokenVerifier,
    require_auth: bool = False,
) -> Identity:
    """
    Decide who the caller is.

    Args:
        authorization: Raw Authorization header
        claimed_user_id: ``user_id`` from the request body
        verifier: Token verifier (Supabase in production)
        require_auth: Reject requests without a bearer token

    Returns:
        Identity: Verified identity, or the unverified claimed id

    Raises:
        AuthenticationError: Token invalid, or missing while required
    """
    token = extract_bearer_token(authorization)

    if token is None:
        if require_auth:
            raise AuthenticationError("Authorization bearer token required")
        user_id = claimed_user_id or ANONYMOUS_USER_ID
        logger.warning("relay.auth.fallback_user_id", user_id=user_id)
        emit_audit_event("auth.unverified_user_id", user_id=user_id)
        return Identity(user_id=user_id, verified=False)

    user_id = await verifier.verify(token)
    if claimed_user_id and claimed_user_id != user_id:
        logger.warning(
            "relay.auth.user_id_mismatch",
            claimed_user_id=claimed_user_id,
            user_id=user_id,
        )
        emit_audit_event("auth.user_id_override", claimed_user_id=claimed_user_id, user_id=user_id)
    return Identity(user_id=user_id, verified=True)
