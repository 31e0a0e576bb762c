"""
Per-chat turn controller.

Each send runs one turn through an explicit state machine::

    IDLE -> STREAMING(buffer) -> FINALIZED(text)
                              -> CANCELLED
                              -> FAILED(error)

The stream buffer belongs to the ``STREAMING`` turn only and is dropped on
any transition other than ``FINALIZED``. While a turn is streaming, the
visible message list holds exactly one assistant placeholder with id
``__stream_ai``; it is replaced by the persisted message on success and
removed otherwise.

Nothing is written to the chat store until the reply is final: the user
message and the assistant reply are saved together, so a cancelled or
failed turn leaves no messages behind. Cancelling the first turn of a new
conversation also deletes the chat it created.

Failure handling:
    - connect error / timeout before the relay answers: the user message
      goes to the offline queue and an info notice says it will be sent
      later
    - AuthError, ValidationError, UpstreamError, broken stream: error
      notice with a retry prompt
    - connect error / timeout while saving a finished turn: the reply
      stays visible and the unsaved part of the turn is queued as a
      ``turn`` item, with the same info notice
    - any other error while saving: error notice, nothing queued
    - cancel(): silent; the typed text is handed back as ``draft``

Last Grunted: 10/19/2026 11:05:00 AM UTC
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from zenux_client.api import ZenuxApiClient
from zenux_client.errors import TurnInProgressError, ZenuxClientError
from zenux_client.offline import OfflineQueue, OfflineQueueItem
from zenux_client.stream import consume_stream

logger = logging.getLogger(__name__)

STREAM_PLACEHOLDER_ID = "__stream_ai"

OFFLINE_NOTICE = "You're offline. Your message was saved and will be sent later."
FAILED_NOTICE = "The AI response failed. Please try again."
PERSIST_FAILED_NOTICE = "The reply could not be saved to your chat history."

_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class Turn:
    """State of the current (or last) turn."""

    state: TurnState = TurnState.IDLE
    buffer: str = ""
    text: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class ChatMessage:
    """A message in the visible list.

    Attributes:
        id: Store id once persisted; ``local-...`` or ``__stream_ai`` before.
        role: ``user`` or ``assistant``.
        content: Message text.
        pending: True while the message waits in the offline queue.
    """

    id: str
    role: str
    content: str
    message_type: str = "text"
    pending: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=str(data["id"]),
            role=data["role"],
            content=data["content"],
            message_type=data.get("message_type", "text"),
            created_at=data.get("created_at"),
        )


@dataclass(frozen=True)
class Notice:
    """User-visible notification; ``level`` is ``info`` or ``error``."""

    level: str
    message: str
    dismissible: bool = True
    retryable: bool = False


Callback = Callable[[Any], Union[Awaitable[None], None]]


async def _call(callback: Optional[Callback], arg: Any) -> None:
    if callback is None:
        return
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class ChatController:
    """
    Drive chat turns for one chat session.

    Args:
        api: Chat API client
        queue: Offline queue for unsent user messages
        user_id: Owner of chats created by this controller
        chat_id: Existing chat to continue, or None to create one on first send
        notifier: Receives ``Notice`` objects
        on_update: Receives the placeholder ``ChatMessage`` after every
            streamed content update
        mode: Relay mode (fast, heavy, auto)
    """

    def __init__(
        self,
        api: ZenuxApiClient,
        queue: OfflineQueue,
        user_id: str,
        chat_id: Optional[str] = None,
        notifier: Optional[Callback] = None,
        on_update: Optional[Callback] = None,
        mode: str = "auto",
    ):
        self.api = api
        self.queue = queue
        self.user_id = user_id
        self.chat_id = chat_id
        self.title: Optional[str] = None
        self.notifier = notifier
        self.on_update = on_update
        self.mode = mode

        self.messages: List[ChatMessage] = []
        self.turn = Turn()
        self.draft: Optional[str] = None

        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._relay_opened = False
        self._last_failed: Optional[ChatMessage] = None

    @property
    def is_streaming(self) -> bool:
        return self.turn.state is TurnState.STREAMING

    @property
    def failed_text(self) -> Optional[str]:
        """Text of the user message ``retry()`` would re-send, if any."""
        return self._last_failed.content if self._last_failed is not None else None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def load_history(self) -> List[ChatMessage]:
        """Replace the visible list with the stored messages of this chat."""
        if self.chat_id is None:
            self.messages = []
        else:
            rows = await self.api.get_messages(self.chat_id)
            self.messages = [ChatMessage.from_api(row) for row in rows]
        return self.messages

    async def send(self, text: str) -> Optional[ChatMessage]:
        """
        Send one user message and stream the reply.

        Returns:
            ChatMessage: The persisted assistant message, or None when the
            turn did not finalize (blank input, offline, failed, cancelled)

        Raises:
            TurnInProgressError: A reply is still streaming
        """
        text = (text or "").strip()
        if not text:
            return None
        self._begin_turn()

        self.draft = None
        user_message = ChatMessage(id=f"local-{uuid.uuid4().hex}", role="user", content=text)
        self.messages.append(user_message)
        return await self._exchange(user_message)

    async def retry(self) -> Optional[ChatMessage]:
        """Re-run the last failed turn without adding a second user message."""
        user_message = self._last_failed
        if user_message is None or not any(m is user_message for m in self.messages):
            return None
        self._begin_turn()
        return await self._exchange(user_message)

    def cancel(self) -> bool:
        """
        Abort the streaming reply.

        Idempotent: returns False when nothing is streaming, including a
        second call or a call after the reply finished.
        """
        task = self._task
        if task is None or task.done() or self._cancel_requested:
            return False
        self._cancel_requested = True
        task.cancel()
        logger.info("chat.cancel_requested chat_id=%s", self.chat_id)
        return True

    async def flush_offline_queue(self) -> int:
        """
        Deliver queued work, oldest first.

        ``message`` items are re-sent as full turns; ``turn`` items only
        need their finished messages saved. Stops at the first failure;
        that item's ``retry_count`` is incremented and it stays queued.

        Returns:
            int: Number of items delivered
        """
        delivered = 0
        for item in await self.queue.items():
            chat_id = item.data.get("chat_id")
            if chat_id and self.chat_id and chat_id != self.chat_id:
                continue

            if item.type == "message":
                ok = await self._resend_message(item)
            elif item.type == "turn":
                ok = await self._save_queued_turn(item)
            else:
                continue

            if not ok:
                await self.queue.increment_retry(item.id)
                logger.info("offline_queue.flush_stopped id=%s type=%s", item.id, item.type)
                break
            await self.queue.remove(item.id)
            delivered += 1

        if delivered:
            logger.info("offline_queue.flushed count=%d", delivered)
        return delivered

    async def _resend_message(self, item: OfflineQueueItem) -> bool:
        self._begin_turn()
        chat_id = item.data.get("chat_id")
        if chat_id and self.chat_id is None:
            self.chat_id = chat_id
        user_message = self._find(item.data.get("local_id"))
        if user_message is None:
            user_message = ChatMessage(
                id=item.data.get("local_id") or f"local-{uuid.uuid4().hex}",
                role="user",
                content=item.data["content"],
                pending=True,
            )
            self.messages.append(user_message)

        await self._exchange(user_message, queued_item=item)
        return self.turn.state is TurnState.FINALIZED

    async def _save_queued_turn(self, item: OfflineQueueItem) -> bool:
        data = dict(item.data)
        try:
            if data.get("user_content") is not None:
                saved_user = await self.api.save_message(data["chat_id"], "user", data["user_content"])
                self._mark_saved(data.get("user_local_id"), saved_user["message"])
                data["user_content"] = None
                await self.queue.update(item.id, data)

            saved = await self.api.save_message(data["chat_id"], "assistant", data["assistant_content"])
            self._mark_saved(data.get("assistant_local_id"), saved["message"])
        except (ZenuxClientError, httpx.HTTPError) as exc:
            logger.warning("offline_queue.turn_save_failed id=%s error=%s", item.id, exc)
            return False
        return True

    # -------------------------------------------------------------------------
    # Turn lifecycle
    # -------------------------------------------------------------------------

    def _begin_turn(self) -> None:
        if self.is_streaming:
            raise TurnInProgressError()
        self.turn = Turn(state=TurnState.STREAMING)
        self._cancel_requested = False
        self._relay_opened = False

    async def _exchange(
        self,
        user_message: ChatMessage,
        queued_item: Optional[OfflineQueueItem] = None,
    ) -> Optional[ChatMessage]:
        placeholder = ChatMessage(id=STREAM_PLACEHOLDER_ID, role="assistant", content="")
        self.messages.append(placeholder)
        new_chat = self.chat_id is None

        # One task covers chat creation and streaming so cancel() reaches both.
        self._task = asyncio.create_task(self._run_turn(user_message.content, placeholder))
        try:
            try:
                reply = await self._task
            finally:
                self._task = None

        except asyncio.CancelledError:
            self._remove(placeholder)
            if not self._cancel_requested:
                self.turn = Turn(state=TurnState.CANCELLED)
                raise
            if queued_item is None:
                self._remove(user_message)
                self.draft = user_message.content
            self.turn = Turn(state=TurnState.CANCELLED)
            logger.info("chat.cancelled chat_id=%s", self.chat_id)
            if new_chat and self.chat_id is not None:
                await self._discard_chat()
            return None

        except _TRANSPORT_ERRORS as exc:
            self._remove(placeholder)
            if self._relay_opened:
                return await self._fail(user_message, exc)
            self.turn = Turn(state=TurnState.FAILED, error=exc)
            user_message.pending = True
            if queued_item is None:
                await self.queue.add(
                    {"chat_id": self.chat_id, "content": user_message.content, "local_id": user_message.id}
                )
                await _call(self.notifier, Notice(level="info", message=OFFLINE_NOTICE))
            logger.warning("chat.offline chat_id=%s error=%s", self.chat_id, exc)
            return None

        except (ZenuxClientError, httpx.HTTPError) as exc:
            self._remove(placeholder)
            return await self._fail(user_message, exc)

        return await self._finalize(user_message, placeholder, reply, queued_item)

    async def _run_turn(self, text: str, placeholder: ChatMessage) -> str:
        if self.chat_id is None:
            chat = await self.api.create_chat(self.user_id, first_message=text)
            self.chat_id = str(chat["id"])
            self.title = chat.get("title")
        return await self._stream_reply(text, placeholder)

    async def _stream_reply(self, text: str, placeholder: ChatMessage) -> str:
        async def on_chunk(buffer: str) -> None:
            self.turn.buffer = buffer
            placeholder.content = buffer
            await _call(self.on_update, placeholder)

        async with self.api.stream_chat(text, conversation_id=self.chat_id, mode=self.mode) as chunks:
            self._relay_opened = True
            return await consume_stream(chunks, on_update=on_chunk)

    async def _discard_chat(self) -> None:
        """Delete the chat a cancelled first turn created; it has no messages."""
        chat_id, self.chat_id, self.title = self.chat_id, None, None
        try:
            await self.api.delete_chat(chat_id)
        except (ZenuxClientError, httpx.HTTPError) as exc:
            logger.warning("chat.discard_failed chat_id=%s error=%s", chat_id, exc)

    async def _finalize(
        self,
        user_message: ChatMessage,
        placeholder: ChatMessage,
        reply: str,
        queued_item: Optional[OfflineQueueItem] = None,
    ) -> ChatMessage:
        placeholder.content = reply
        assistant = ChatMessage(id=f"local-{uuid.uuid4().hex}", role="assistant", content=reply)
        user_saved = False
        try:
            saved_user = await self.api.save_message(self.chat_id, "user", user_message.content)
            user_message.id = str(saved_user["message"]["id"])
            user_message.pending = False
            user_saved = True
            if saved_user.get("chat_title"):
                self.title = saved_user["chat_title"]

            saved = await self.api.save_message(self.chat_id, "assistant", reply)
            assistant = ChatMessage.from_api(saved["message"])

        except _TRANSPORT_ERRORS as exc:
            # The reply is shown; whatever is unsaved is written on the next flush
            user_message.pending = not user_saved
            assistant.pending = True
            await self.queue.add(
                {
                    "chat_id": self.chat_id,
                    "user_content": None if user_saved else user_message.content,
                    "user_local_id": user_message.id,
                    "assistant_content": reply,
                    "assistant_local_id": assistant.id,
                },
                type="turn",
            )
            logger.warning("chat.persist_deferred chat_id=%s user_saved=%s error=%s", self.chat_id, user_saved, exc)
            if queued_item is None:
                await _call(self.notifier, Notice(level="info", message=OFFLINE_NOTICE))

        except (ZenuxClientError, httpx.HTTPError) as exc:
            logger.error("chat.persist_failed chat_id=%s user_saved=%s error=%s", self.chat_id, user_saved, exc)
            await _call(self.notifier, Notice(level="error", message=PERSIST_FAILED_NOTICE))

        self._replace(placeholder, assistant)
        self.turn = Turn(state=TurnState.FINALIZED, text=reply)
        self._last_failed = None
        logger.info("chat.response_complete chat_id=%s len=%d", self.chat_id, len(reply))
        return assistant

    async def _fail(self, user_message: ChatMessage, exc: BaseException) -> Optional[ChatMessage]:
        self.turn = Turn(state=TurnState.FAILED, error=exc)
        self._last_failed = user_message
        logger.error("chat.failed chat_id=%s error=%s", self.chat_id, exc)
        await _call(self.notifier, Notice(level="error", message=FAILED_NOTICE, retryable=True))
        return None

    # -------------------------------------------------------------------------
    # Visible list helpers
    # -------------------------------------------------------------------------

    def _find(self, message_id: Optional[str]) -> Optional[ChatMessage]:
        if message_id is None:
            return None
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def _mark_saved(self, local_id: Optional[str], data: Dict[str, Any]) -> None:
        message = self._find(local_id)
        if message is not None:
            message.id = str(data["id"])
            message.pending = False

    def _remove(self, message: ChatMessage) -> None:
        self.messages = [m for m in self.messages if m is not message]

    def _replace(self, old: ChatMessage, new: ChatMessage) -> None:
        self.messages = [new if m is old else m for m in self.messages]
