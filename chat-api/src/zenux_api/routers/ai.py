"""
AI chat relay router.

Implements POST /api/ai/chat:
    - Validates the turn (``message`` required) before any upstream call
    - Resolves the caller (verified bearer token wins over body ``user_id``)
    - Streams the upstream reply back as Server-Sent Events

Request:
{
    "message": "How do I pay my electricity bill?",   # Required
    "conversation_id": "3f0c...",                     # Optional (aliases: conversationId, chatId)
    "user_id": "user-123",                            # Optional, ignored when a token verifies
    "mode": "auto"                                    # Optional: fast | heavy | auto
}

Response: ``text/event-stream``; see ``zenux_api.services.relay``.

Last Grunted: 10/14/2026 04:40:00 PM UTC
"""
import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from zenux_api.config import Settings, get_settings
from zenux_api.dependencies import get_chat_relay, get_chat_store, get_token_verifier
from zenux_api.services.auth import AuthenticationError, TokenVerifier, resolve_identity
from zenux_api.services.chat_store import ChatStore
from zenux_api.services.errors import authentication_error, missing_parameter_error
from zenux_api.services.relay import SSE_HEADERS, ChatRelay, RelayTurn

logger = structlog.get_logger(__name__)

router = APIRouter()


class ChatRelayRequest(BaseModel):
    """
    Body of POST /api/ai/chat.

    ``message`` is optional at the schema level so a missing value produces
    the relay's own 400 envelope with ``param="message"``.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message: Optional[str] = None
    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversation_id", "conversationId", "chatId"),
    )
    user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("user_id", "userId"),
    )
    mode: Optional[str] = "auto"


@router.post("/api/ai/chat")
async def relay_chat(
    request: ChatRelayRequest,
    authorization: Optional[str] = Header(default=None),
    relay: ChatRelay = Depends(get_chat_relay),
    verifier: TokenVerifier = Depends(get_token_verifier),
    store: ChatStore = Depends(get_chat_store),
    settings: Settings = Depends(get_settings),
):
    """
    Relay one chat turn to the upstream AI gateway as an SSE stream.

    Returns:
        StreamingResponse (text/event-stream), or a JSON error envelope
        with 400 (missing message) / 401 (bad token)

    Last Grunted: 10/14/2026 04:40:00 PM UTC
    """
    if not request.message or not request.message.strip():
        return missing_parameter_error("message")

    try:
        identity = await resolve_identity(
            authorization,
            request.user_id,
            verifier,
            require_auth=settings.require_auth,
        )
    except AuthenticationError as e:
        logger.info("relay.auth.rejected", reason=str(e))
        return authentication_error(str(e))

    conversation_id = request.conversation_id or f"conv-{int(time.time() * 1000)}"
    turn = RelayTurn(
        message=request.message,
        user_id=identity.user_id,
        conversation_id=conversation_id,
        mode=request.mode or "auto",
    )

    async def record_usage() -> None:
        await store.record_usage(identity.user_id, chat_id=conversation_id)

    logger.info(
        "relay.request.accepted",
        conversation_id=conversation_id,
        verified=identity.verified,
        mode=turn.mode,
    )

    return StreamingResponse(
        relay.stream(turn, on_accepted=record_usage),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
