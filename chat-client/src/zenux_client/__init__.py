"""Zenux chat client: relay stream consumer and per-chat turn controller.

Typical use::

    http = create_http_client()
    api = ZenuxApiClient(http, access_token=token, user_id=user_id)
    controller = ChatController(api, OfflineQueue(settings.offline_queue_path), user_id)
    reply = await controller.send("How do I top up my wallet?")
"""
from zenux_client.api import ZenuxApiClient, create_http_client
from zenux_client.controller import ChatController, ChatMessage, Notice, TurnState
from zenux_client.errors import (
    AuthError,
    NotFoundError,
    TurnInProgressError,
    UpstreamError,
    ValidationError,
)
from zenux_client.offline import OfflineQueue
from zenux_client.stream import FALLBACK_MESSAGE, consume_stream

__all__ = [
    "AuthError",
    "ChatController",
    "ChatMessage",
    "FALLBACK_MESSAGE",
    "NotFoundError",
    "Notice",
    "OfflineQueue",
    "TurnInProgressError",
    "TurnState",
    "UpstreamError",
    "ValidationError",
    "ZenuxApiClient",
    "consume_stream",
    "create_http_client",
]
