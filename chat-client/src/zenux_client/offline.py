"""
Offline queue for user messages that could not be sent.

Items live in a single JSON file so they survive restarts; the controller
flushes them in insertion order once the API is reachable again.
Uses aiofiles for async file I/O operations.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class OfflineQueueItem(BaseModel):
    """One queued operation.

    Attributes:
        id: Queue item id.
        type: ``"message"`` (a user message to re-send) or ``"turn"``
            (a finished exchange whose messages still need saving).
        data: Operation payload (``chat_id``, ``content``, ...).
        timestamp: Unix time the item was queued.
        retry_count: Failed flush attempts so far.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str = "message"
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    retry_count: int = 0


class OfflineQueue:
    """JSON-file backed FIFO of ``OfflineQueueItem``."""

    def __init__(self, path: str):
        self.path = path
        self._lock = asyncio.Lock()

    async def _load(self) -> List[OfflineQueueItem]:
        if not await aiofiles.os.path.exists(self.path):
            return []
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            raw = await f.read()
        if not raw.strip():
            return []
        try:
            return [OfflineQueueItem(**item) for item in json.loads(raw)]
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("offline_queue.corrupt path=%s error=%s", self.path, exc)
            return []

    async def _save(self, items: List[OfflineQueueItem]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            await aiofiles.os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps([item.model_dump() for item in items]))
        await aiofiles.os.replace(tmp_path, self.path)

    async def add(self, data: Dict[str, Any], type: str = "message") -> OfflineQueueItem:
        async with self._lock:
            items = await self._load()
            item = OfflineQueueItem(type=type, data=data)
            items.append(item)
            await self._save(items)
        logger.info("offline_queue.added id=%s size=%d", item.id, len(items))
        return item

    async def items(self) -> List[OfflineQueueItem]:
        """All queued items, oldest first."""
        async with self._lock:
            items = await self._load()
        return sorted(items, key=lambda item: item.timestamp)

    async def remove(self, item_id: str) -> None:
        async with self._lock:
            items = await self._load()
            await self._save([item for item in items if item.id != item_id])

    async def update(self, item_id: str, data: Dict[str, Any]) -> Optional[OfflineQueueItem]:
        """Replace the payload of *item_id*, keeping its place in the queue."""
        async with self._lock:
            items = await self._load()
            found: Optional[OfflineQueueItem] = None
            for item in items:
                if item.id == item_id:
                    item.data = data
                    found = item
            await self._save(items)
        return found

    async def increment_retry(self, item_id: str) -> Optional[OfflineQueueItem]:
        async with self._lock:
            items = await self._load()
            found: Optional[OfflineQueueItem] = None
            for item in items:
                if item.id == item_id:
                    item.retry_count += 1
                    found = item
            await self._save(items)
        return found

    async def clear(self) -> None:
        async with self._lock:
            await self._save([])
