"""
SQLModel database models for the Zenux Chat API.

Defines the database schema for:
    - Chat: Conversation sessions owned by a user
    - Message: Individual messages within a chat
    - UsageRecord: Per-turn usage rows written by the relay

Chat and message ids are UUIDs; user ids are opaque strings because the
relay may fall back to a client-supplied id. Timestamps are stored
timezone-aware in UTC.

Last Grunted: 10/13/2026 02:15:00 PM UTC
"""
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, Relationship, SQLModel


MESSAGE_ROLES = ("user", "assistant")
MESSAGE_TYPES = ("text", "voice", "file", "image")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Chat(SQLModel, table=True):
    """
    Chat session model.

    Created on the first user message of a new conversation and touched on
    every new message. Never deleted automatically.

    Attributes:
        id: Unique chat identifier (UUID)
        user_id: Owner id (verified auth identity or client-supplied fallback)
        title: User-supplied or heuristic title
        last_message_at: UTC timestamp of the most recent message
        created_at: UTC timestamp of creation
        updated_at: UTC timestamp of last metadata change
        messages: Related Message objects (relationship)

    Table: chat
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(index=True)
    title: str = Field(default="New Chat")
    last_message_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    messages: List["Message"] = Relationship(back_populates="chat")


class Message(SQLModel, table=True):
    """
    Chat message model.

    Attributes:
        id: Unique message identifier (UUID)
        chat_id: Parent chat ID (foreign key)
        role: 'user' or 'assistant'
        content: Message text
        message_type: 'text', 'voice', 'file' or 'image'
        message_metadata: File/voice details (stored in the ``metadata`` column;
            renamed to avoid SQLAlchemy's reserved attribute)
        encrypted: Whether content is encrypted client-side
        ai_validated: Whether the content passed AI validation
        created_at: UTC timestamp, strictly increasing within a chat

    Table: message

    Last Grunted: 10/13/2026 02:15:00 PM UTC
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    chat_id: uuid.UUID = Field(foreign_key="chat.id", index=True)
    role: str
    content: str
    message_type: str = Field(default="text")
    message_metadata: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column("metadata", JSON)
    )
    encrypted: bool = Field(default=False)
    ai_validated: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )

    chat: Optional[Chat] = Relationship(back_populates="messages")


class UsageRecord(SQLModel, table=True):
    """One row per relayed turn that reached the upstream gateway.

    Table: usage_record
    """
    __tablename__ = "usage_record"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(index=True)
    chat_id: Optional[str] = Field(default=None)
    feature: str = Field(default="chat")  # chat, image_gen, file_analysis, voice_transcription
    usage_type: str = Field(default="requests")  # tokens, requests, minutes, files
    amount: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
