"""
Async client for the Zenux Chat API.

Wraps one shared ``httpx.AsyncClient``:

    - Chats:    create_chat, list_chats, rename_chat, delete_chat
    - Messages: save_message, get_messages
    - Relay:    stream_chat (async context manager over the SSE body)

GET requests retry with exponential backoff on connect errors, timeouts
and 429/502/503/504. Writes and the relay are never retried here; the
controller decides what to do with a failed send.

Last Grunted: 10/16/2026 02:30:00 PM UTC
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional

import httpx

from zenux_client.config import ClientSettings, get_client_settings
from zenux_client.errors import (
    AuthError,
    NotFoundError,
    UpstreamError,
    ValidationError,
    ZenuxClientError,
)

logger = logging.getLogger(__name__)

# HTTP status codes considered transient and eligible for retry.
_RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 502, 503, 504})


def create_http_client(settings: Optional[ClientSettings] = None) -> httpx.AsyncClient:
    """Build a pooled ``httpx.AsyncClient`` pointed at the API."""
    settings = settings or get_client_settings()
    return httpx.AsyncClient(
        base_url=settings.zenux_api_url,
        timeout=httpx.Timeout(settings.zenux_api_timeout, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )


def error_for_status(status_code: int, body: Any) -> ZenuxClientError:
    """Map an API error response to the client exception taxonomy."""
    if status_code == 401:
        return AuthError.from_envelope(body, status_code, "Authentication required")
    if status_code == 400:
        return ValidationError.from_envelope(body, status_code, "Invalid request")
    if status_code == 404:
        return NotFoundError.from_envelope(body, status_code, "Not found")
    return UpstreamError.from_envelope(body, status_code, f"API error ({status_code})")


def _json_or_none(content: bytes) -> Any:
    try:
        return json.loads(content)
    except ValueError:
        return None


class ZenuxApiClient:
    """
    Chat API client.

    Args:
        client: Shared ``httpx.AsyncClient`` with ``base_url`` set
        access_token: Bearer token sent on every request, if any
        user_id: Sent with relay requests; ignored by the server when the
            token verifies
        settings: Retry settings (defaults to ``get_client_settings()``)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
    ):
        self._client = client
        self.access_token = access_token
        self.user_id = user_id
        self._settings = settings or get_client_settings()

    def _headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def _check(self, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise error_for_status(response.status_code, _json_or_none(response.content))
        return response.json()

    async def _get_with_retry(self, path: str) -> httpx.Response:
        """Issue a ``GET`` to *path* with exponential-backoff retry.

        Raises:
            httpx.ConnectError: All attempts failed to connect.
            httpx.TimeoutException: All attempts timed out.
            UpstreamError: The last attempt returned a retryable status.
        """
        max_retries = max(1, self._settings.max_retries)
        last_exc: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                response = await self._client.get(path, headers=self._headers())
                if response.status_code not in _RETRYABLE_STATUS_CODES:
                    return response
                last_exc = error_for_status(response.status_code, _json_or_none(response.content))
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc

            if attempt < max_retries - 1:
                backoff = self._settings.retry_backoff_base * (2 ** attempt)
                logger.warning(
                    "api.retry attempt=%d/%d backoff=%.1fs error=%s",
                    attempt + 1,
                    max_retries,
                    backoff,
                    last_exc,
                )
                await asyncio.sleep(backoff)

        raise last_exc  # type: ignore[misc]

    # -------------------------------------------------------------------------
    # Chats
    # -------------------------------------------------------------------------

    async def create_chat(
        self,
        user_id: str,
        title: Optional[str] = None,
        first_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"user_id": user_id}
        if title:
            payload["title"] = title
        if first_message:
            payload["first_message"] = first_message
        response = await self._client.post("/api/chats", json=payload, headers=self._headers())
        return self._check(response)["chat"]

    async def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        response = await self._get_with_retry(f"/api/chats/{user_id}")
        return self._check(response)["chats"]

    async def rename_chat(self, chat_id: str, title: str) -> Dict[str, Any]:
        response = await self._client.patch(
            f"/api/chats/{chat_id}", json={"title": title}, headers=self._headers()
        )
        return self._check(response)["chat"]

    async def delete_chat(self, chat_id: str) -> None:
        response = await self._client.delete(f"/api/chats/{chat_id}", headers=self._headers())
        self._check(response)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def save_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        message_type: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Persist one message.

        Returns:
            dict: ``{"message": {...}, "chat_title": str | None}``; the
            title is set when saving the message re-titled the chat
        """
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "role": role,
            "content": content,
            "message_type": message_type,
        }
        if metadata is not None:
            payload["metadata"] = metadata
        response = await self._client.post("/api/messages", json=payload, headers=self._headers())
        return self._check(response)

    async def get_messages(self, chat_id: str) -> List[Dict[str, Any]]:
        response = await self._get_with_retry(f"/api/messages/{chat_id}")
        return self._check(response)["messages"]

    # -------------------------------------------------------------------------
    # Relay
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def stream_chat(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        mode: str = "auto",
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a relay stream for one turn.

        Leaving the context (normally or by cancellation) closes the HTTP
        response, which aborts the request.

        Yields:
            The raw response body as an async byte iterator

        Raises:
            AuthError: 401
            ValidationError: 400
            UpstreamError: Any other non-2xx status
        """
        payload: Dict[str, Any] = {"message": message, "mode": mode}
        if conversation_id:
            payload["conversation_id"] = conversation_id
        if self.user_id:
            payload["user_id"] = self.user_id

        headers = {"Accept": "text/event-stream", **self._headers()}
        async with self._client.stream("POST", "/api/ai/chat", json=payload, headers=headers) as response:
            if response.status_code >= 400:
                body = await response.aread()
                logger.warning("api.stream_rejected status=%d", response.status_code)
                raise error_for_status(response.status_code, _json_or_none(body))
            yield response.aiter_bytes()
