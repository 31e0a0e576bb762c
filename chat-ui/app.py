"""
Chainlit Frontend for Zenux AI.

Thin UI over ``zenux_client.ChatController``:
- Streams relay deltas into a Chainlit message as they arrive
- Mode selection (auto / fast / heavy) via ChatSettings
- Stop button cancels the turn without saving anything
- Offline sends are queued and flushed on the next turn

Architecture::

    chat-ui (Chainlit, port 8080)
        -> zenux-chat-api (FastAPI, port 8000)
            -> upstream AI gateway

Last Grunted: 10/17/2026 03:40:00 PM UTC
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import chainlit as cl
from chainlit.input_widget import Select

from zenux_client import (
    ChatController,
    ChatMessage,
    Notice,
    OfflineQueue,
    TurnInProgressError,
    ZenuxApiClient,
    create_http_client,
)
from zenux_client.config import get_client_settings

settings = get_client_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_MODES = ["auto", "fast", "heavy"]

# Shared across sessions of this worker process.
_http_client = create_http_client(settings)
_offline_queue = OfflineQueue(settings.offline_queue_path)


# =============================================================================
# Session helpers
# =============================================================================


def _controller() -> ChatController:
    return cl.user_session.get("controller")


async def _notify(notice: Notice) -> None:
    prefix = "**Error:** " if notice.level == "error" else ""
    suffix = " Send the same message again to retry." if notice.retryable else ""
    await cl.Message(content=f"{prefix}{notice.message}{suffix}", author="system").send()


class _StreamView:
    """Mirror the controller's placeholder into one Chainlit message."""

    def __init__(self) -> None:
        self.message: Optional[cl.Message] = None
        self.shown = ""

    async def update(self, placeholder: ChatMessage) -> None:
        if self.message is None:
            self.message = cl.Message(content="")
            await self.message.send()

        text = placeholder.content
        if text.startswith(self.shown):
            await self.message.stream_token(text[len(self.shown):])
        else:
            # Full replacement from a non-delta upstream shape
            self.message.content = text
            await self.message.update()
        self.shown = text

    async def finish(self, final: Optional[ChatMessage]) -> None:
        if final is None:
            if self.message is not None:
                await self.message.remove()
            return
        if self.message is None:
            await cl.Message(content=final.content).send()
            return
        self.message.content = final.content
        await self.message.update()


# =============================================================================
# Chat Lifecycle Hooks
# =============================================================================


@cl.on_chat_start
async def on_chat_start() -> None:
    """Create the per-session controller and the mode selector."""
    user = cl.user_session.get("user")
    user_id = user.identifier if user else "anonymous"

    api = ZenuxApiClient(_http_client, user_id=user_id, settings=settings)
    controller = ChatController(api, _offline_queue, user_id=user_id, notifier=_notify)
    cl.user_session.set("controller", controller)

    chat_settings = await cl.ChatSettings(
        [Select(id="mode", label="Mode", values=_MODES, initial_index=0)]
    ).send()
    controller.mode = chat_settings.get("mode", "auto")

    logger.info("chat.start user=%s mode=%s", user_id, controller.mode)


@cl.on_settings_update
async def on_settings_update(new_settings: Dict[str, Any]) -> None:
    mode = new_settings.get("mode")
    if mode:
        _controller().mode = mode
        logger.info("settings.mode_changed mode=%s", mode)


@cl.on_message
async def on_message(message: cl.Message) -> None:
    """Send the user's message and stream the reply into the chat."""
    controller = _controller()

    if await _offline_queue.items():
        await controller.flush_offline_queue()

    view = _StreamView()
    controller.on_update = view.update
    try:
        if controller.failed_text and message.content.strip() == controller.failed_text:
            reply = await controller.retry()
        else:
            reply = await controller.send(message.content)
    except TurnInProgressError:
        await cl.Message(content="Please wait for the current reply to finish.", author="system").send()
        return
    finally:
        controller.on_update = None

    await view.finish(reply)
    if controller.draft:
        await cl.Message(content="*-- Generation stopped --*", author="system").send()


@cl.on_stop
async def on_stop() -> None:
    """Stop button: abort the in-flight reply; nothing gets saved."""
    if _controller().cancel():
        logger.info("chat.stopped_by_user")


@cl.on_chat_end
async def on_chat_end() -> None:
    logger.info("chat.end")


# =============================================================================
# Chat Starters (Quick Actions)
# =============================================================================


@cl.set_starters
async def set_starters():
    return [
        cl.Starter(label="Pay a bill", message="How do I pay my electricity bill?"),
        cl.Starter(label="Check my credits", message="How many credits do I have left?"),
        cl.Starter(label="Help with code", message="Can you help me write a Python function?"),
    ]
