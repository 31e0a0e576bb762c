"""Chat session store backed by SQLModel.

``ChatStore`` is the persistence seam used by the chat/message routers and
the relay. It is constructed with a session factory so tests (and other
processes) can point it at any engine.

Ordering contract: messages come back by ``created_at`` ascending, and
``created_at`` is kept strictly increasing within a chat so siblings saved
in the same clock tick still sort in insertion order.
"""
from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, select as sa_select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from zenux_api.db.models import (
    MESSAGE_ROLES,
    MESSAGE_TYPES,
    Chat,
    Message,
    UsageRecord,
    as_utc,
    utcnow,
)
from zenux_api.services.title_generator import DEFAULT_TITLE

logger = structlog.get_logger(__name__)

_TICK = timedelta(microseconds=1)


class ChatNotFoundError(LookupError):
    """Raised when an operation references an unknown chat id."""

    def __init__(self, chat_id: Any):
        super().__init__(f"Chat '{chat_id}' not found")
        self.chat_id = chat_id


class ChatStore:
    """Async CRUD over chats, messages and usage rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create_chat(self, user_id: str, title: Optional[str] = None) -> Chat:
        chat = Chat(user_id=user_id, title=(title or DEFAULT_TITLE).strip()[:255] or DEFAULT_TITLE)
        async with self._session_factory() as session:
            session.add(chat)
            await session.commit()
            await session.refresh(chat)
        logger.info("chat_store.chat_created", chat_id=str(chat.id), user_id=user_id)
        return chat

    async def get_chat(self, chat_id: uuid.UUID) -> Optional[Chat]:
        async with self._session_factory() as session:
            return await session.get(Chat, chat_id)

    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        """Chats for *user_id*, most recently active first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Chat)
                .where(Chat.user_id == user_id)
                .order_by(Chat.last_message_at.desc())
            )
            return list(result.scalars().all())

    async def update_chat(self, chat_id: uuid.UUID, title: str) -> Chat:
        async with self._session_factory() as session:
            chat = await session.get(Chat, chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            chat.title = title
            chat.updated_at = utcnow()
            session.add(chat)
            await session.commit()
            await session.refresh(chat)
            return chat

    async def touch_chat(self, chat_id: uuid.UUID) -> Chat:
        async with self._session_factory() as session:
            chat = await session.get(Chat, chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            chat.last_message_at = utcnow()
            session.add(chat)
            await session.commit()
            await session.refresh(chat)
            return chat

    async def delete_chat(self, chat_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            chat = await session.get(Chat, chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            await session.execute(delete(Message).where(Message.chat_id == chat_id))
            await session.execute(delete(Chat).where(Chat.id == chat_id))
            await session.commit()
        logger.info("chat_store.chat_deleted", chat_id=str(chat_id))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(
        self,
        chat_id: uuid.UUID,
        role: str,
        content: str,
        message_type: str = "text",
        metadata: Optional[dict[str, Any]] = None,
        encrypted: bool = False,
        ai_validated: bool = False,
    ) -> Message:
        """
        Persist one message and touch its chat.

        Raises:
            ValueError: Unknown role or message type
            ChatNotFoundError: The chat does not exist
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"role must be one of {', '.join(MESSAGE_ROLES)}")
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"message_type must be one of {', '.join(MESSAGE_TYPES)}")

        async with self._session_factory() as session:
            chat = await session.get(Chat, chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)

            created_at = utcnow()
            latest = (
                await session.execute(
                    sa_select(func.max(Message.created_at)).where(Message.chat_id == chat_id)
                )
            ).scalar()
            if latest is not None and created_at <= as_utc(latest):
                created_at = as_utc(latest) + _TICK

            message = Message(
                chat_id=chat_id,
                role=role,
                content=content,
                message_type=message_type,
                message_metadata=metadata,
                encrypted=encrypted,
                ai_validated=ai_validated,
                created_at=created_at,
            )
            session.add(message)
            chat.last_message_at = created_at
            session.add(chat)
            await session.commit()
            await session.refresh(message)

        logger.debug(
            "chat_store.message_created",
            chat_id=str(chat_id),
            message_id=str(message.id),
            role=role,
        )
        return message

    save_message = create_message

    async def get_messages_by_chat_id(self, chat_id: uuid.UUID) -> list[Message]:
        """Messages of *chat_id* in ascending ``created_at`` order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Message)
                .where(Message.chat_id == chat_id)
                .order_by(Message.created_at)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        user_id: str,
        chat_id: Optional[str] = None,
        feature: str = "chat",
        usage_type: str = "requests",
        amount: int = 1,
    ) -> UsageRecord:
        record = UsageRecord(
            user_id=user_id,
            chat_id=chat_id,
            feature=feature,
            usage_type=usage_type,
            amount=amount,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    async def get_usage_by_user_id(self, user_id: str) -> list[UsageRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UsageRecord)
                .where(UsageRecord.user_id == user_id)
                .order_by(UsageRecord.created_at)
            )
            return list(result.scalars().all())
