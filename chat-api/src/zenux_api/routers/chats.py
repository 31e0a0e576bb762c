"""
Chat session and message routes.

Endpoints:
    - POST   /api/chats                 - Create a chat (title derived when omitted)
    - GET    /api/chats/{user_id}       - List a user's chats, most recent first
    - PATCH  /api/chats/{chat_id}       - Rename a chat
    - DELETE /api/chats/{chat_id}       - Delete a chat and its messages
    - POST   /api/messages              - Save a message (touches the chat)
    - GET    /api/messages/{chat_id}    - Messages in ascending created_at order

Request bodies accept the web client's camelCase keys (``userId``,
``chatId``) as well as snake_case.

Last Grunted: 10/15/2026 10:10:00 AM UTC
"""
from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from zenux_api.db.models import Chat, Message, as_utc
from zenux_api.dependencies import get_chat_store
from zenux_api.services.chat_store import ChatNotFoundError, ChatStore
from zenux_api.services.errors import (
    invalid_parameter_error,
    missing_parameter_error,
    resource_not_found_error,
)
from zenux_api.services.title_generator import generate_chat_title, should_update_chat_title

logger = structlog.get_logger(__name__)

router = APIRouter()


# ============================================================================
# Request Models
# ============================================================================

class CreateChatRequest(BaseModel):
    """Request to create a new chat."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    title: Optional[str] = None
    first_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("first_message", "firstMessage")
    )


class UpdateChatRequest(BaseModel):
    """Request to update chat metadata."""
    title: Optional[str] = None


class CreateMessageRequest(BaseModel):
    """Request to save one message."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chat_id: Optional[UUID] = Field(default=None, validation_alias=AliasChoices("chat_id", "chatId"))
    role: Optional[str] = None
    content: Optional[str] = None
    message_type: str = Field(default="text", validation_alias=AliasChoices("message_type", "messageType", "type"))
    metadata: Optional[dict[str, Any]] = None
    encrypted: bool = False
    ai_validated: bool = Field(default=False, validation_alias=AliasChoices("ai_validated", "aiValidated"))


# ============================================================================
# Response Models
# ============================================================================

class ChatResponse(BaseModel):
    """
    Chat session as returned to the client.

    Attributes:
        id: Chat UUID
        user_id: Owner id
        title: Chat title
        last_message_at: Most recent message timestamp (UTC)
        created_at: Creation timestamp (UTC)
    """
    id: UUID
    user_id: str
    title: str
    last_message_at: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, chat: Chat) -> "ChatResponse":
        return cls(
            id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            last_message_at=as_utc(chat.last_message_at),
            created_at=as_utc(chat.created_at),
        )


class MessageResponse(BaseModel):
    """Message as returned to the client."""
    id: UUID
    chat_id: UUID
    role: str
    content: str
    message_type: str
    metadata: Optional[dict[str, Any]] = None
    encrypted: bool
    ai_validated: bool
    created_at: datetime

    @classmethod
    def from_model(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            chat_id=message.chat_id,
            role=message.role,
            content=message.content,
            message_type=message.message_type,
            metadata=message.message_metadata,
            encrypted=message.encrypted,
            ai_validated=message.ai_validated,
            created_at=as_utc(message.created_at),
        )


class ChatEnvelope(BaseModel):
    chat: ChatResponse


class ChatListEnvelope(BaseModel):
    chats: List[ChatResponse]


class MessageEnvelope(BaseModel):
    message: MessageResponse
    chat_title: Optional[str] = None


class MessageListEnvelope(BaseModel):
    messages: List[MessageResponse]


# ============================================================================
# Chat Endpoints
# ============================================================================

@router.post("/api/chats", response_model=ChatEnvelope)
async def create_chat(
    request: CreateChatRequest,
    store: ChatStore = Depends(get_chat_store),
):
    """
    Create a chat.

    When no title is given it is derived from ``first_message`` with the
    keyword heuristic, falling back to "New Chat".

    Last Grunted: 10/15/2026 10:10:00 AM UTC
    """
    if not request.user_id:
        return missing_parameter_error("user_id")

    title = (request.title or "").strip()
    if not title and request.first_message:
        title = generate_chat_title([{"role": "user", "content": request.first_message}])

    chat = await store.create_chat(request.user_id, title or None)
    return ChatEnvelope(chat=ChatResponse.from_model(chat))


@router.get("/api/chats/{user_id}", response_model=ChatListEnvelope)
async def list_chats(user_id: str, store: ChatStore = Depends(get_chat_store)):
    """List a user's chats, most recently active first."""
    chats = await store.get_chats_by_user_id(user_id)
    return ChatListEnvelope(chats=[ChatResponse.from_model(c) for c in chats])


@router.patch("/api/chats/{chat_id}", response_model=ChatEnvelope)
async def update_chat(
    chat_id: UUID,
    request: UpdateChatRequest,
    store: ChatStore = Depends(get_chat_store),
):
    """Rename a chat. Last write wins."""
    if not request.title or not request.title.strip():
        return missing_parameter_error("title")

    try:
        chat = await store.update_chat(chat_id, request.title.strip())
    except ChatNotFoundError:
        return resource_not_found_error("chat", str(chat_id))
    return ChatEnvelope(chat=ChatResponse.from_model(chat))


@router.delete("/api/chats/{chat_id}")
async def delete_chat(chat_id: UUID, store: ChatStore = Depends(get_chat_store)):
    """Delete a chat and all of its messages."""
    try:
        await store.delete_chat(chat_id)
    except ChatNotFoundError:
        return resource_not_found_error("chat", str(chat_id))
    return {"id": str(chat_id), "deleted": True}


# ============================================================================
# Message Endpoints
# ============================================================================

@router.post("/api/messages", response_model=MessageEnvelope)
async def create_message(
    request: CreateMessageRequest,
    store: ChatStore = Depends(get_chat_store),
):
    """
    Save one message to a chat.

    Saving a user message re-titles the chat once it has two or more user
    messages and its title is still generic.

    Returns:
        MessageEnvelope: The stored message and the new chat title, if any

    Last Grunted: 10/15/2026 10:10:00 AM UTC
    """
    if request.chat_id is None:
        return missing_parameter_error("chat_id")
    if not request.role:
        return missing_parameter_error("role")
    if request.content is None:
        return missing_parameter_error("content")

    try:
        message = await store.create_message(
            request.chat_id,
            request.role,
            request.content,
            message_type=request.message_type,
            metadata=request.metadata,
            encrypted=request.encrypted,
            ai_validated=request.ai_validated,
        )
    except ChatNotFoundError:
        return resource_not_found_error("chat", str(request.chat_id))
    except ValueError as e:
        param = "role" if "role" in str(e) else "message_type"
        return invalid_parameter_error(param, str(e))

    new_title: Optional[str] = None
    if message.role == "user":
        chat = await store.get_chat(request.chat_id)
        history = await store.get_messages_by_chat_id(request.chat_id)
        new_title = should_update_chat_title(history, chat.title if chat else None)
        if new_title and chat and new_title != chat.title:
            await store.update_chat(request.chat_id, new_title)
            logger.info("chat.title_updated", chat_id=str(request.chat_id), title=new_title)
        else:
            new_title = None

    return MessageEnvelope(message=MessageResponse.from_model(message), chat_title=new_title)


@router.get("/api/messages/{chat_id}", response_model=MessageListEnvelope)
async def get_messages(chat_id: UUID, store: ChatStore = Depends(get_chat_store)):
    """Return a chat's messages in chronological order."""
    chat = await store.get_chat(chat_id)
    if chat is None:
        return resource_not_found_error("chat", str(chat_id))

    messages = await store.get_messages_by_chat_id(chat_id)
    return MessageListEnvelope(messages=[MessageResponse.from_model(m) for m in messages])
