"""
Shared HTTP client with connection pooling for upstream communication.

Provides a long-lived httpx AsyncClient used for both the AI gateway relay
and Supabase token verification. Using a shared client avoids a TLS
handshake per relayed turn, which matters for first-byte latency.

Pool and timeout settings come from ``zenux_api.config.Settings``
(HTTP_MAX_CONNECTIONS, HTTP_MAX_KEEPALIVE, HTTP_TIMEOUT_*).

Last Grunted: 10/12/2026 10:05:00 AM UTC
"""
from typing import Optional

import httpx
import structlog

from zenux_api.config import Settings, get_settings

logger = structlog.get_logger(__name__)


# ============================================================================
# Client Configuration
# ============================================================================

def _create_limits(settings: Settings) -> httpx.Limits:
    """
    Create connection pool limits configuration.

    Args:
        settings: Service settings

    Returns:
        httpx.Limits: Configured connection limits
    """
    return httpx.Limits(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive,
        keepalive_expiry=5.0,  # Close idle connections after 5 seconds
    )


def _create_timeout(settings: Settings) -> httpx.Timeout:
    """
    Create timeout configuration for HTTP requests.

    The read timeout bounds the gap between two upstream chunks, not the
    whole stream.

    Args:
        settings: Service settings

    Returns:
        httpx.Timeout: Configured timeout settings
    """
    return httpx.Timeout(
        connect=settings.http_timeout_connect,
        read=settings.http_timeout_read,
        write=settings.http_timeout_write,
        pool=settings.http_timeout_pool,
    )


# ============================================================================
# Client Singleton
# ============================================================================

# Global client instance - initialized lazily
_client: Optional[httpx.AsyncClient] = None


async def get_client() -> httpx.AsyncClient:
    """
    Get the shared HTTP client instance.

    Creates the client on first call (lazy initialization).
    The client is reused across all requests for connection pooling.

    Returns:
        httpx.AsyncClient: Shared client instance

    Note:
        Call close_client() during application shutdown to properly
        release all connections.

    Last Grunted: 10/12/2026 10:05:00 AM UTC
    """
    global _client

    if _client is None:
        settings = get_settings()
        logger.info(
            "http_client.init",
            max_connections=settings.http_max_connections,
            max_keepalive=settings.http_max_keepalive,
        )
        _client = httpx.AsyncClient(
            limits=_create_limits(settings),
            timeout=_create_timeout(settings),
            http2=True,
            trust_env=False,  # Do not route upstream calls via proxy env vars
        )

    return _client


async def close_client() -> None:
    """
    Close the shared HTTP client and release all connections.

    Should be called during application shutdown.
    """
    global _client

    if _client is not None:
        logger.info("http_client.close")
        await _client.aclose()
        _client = None
