"""
Incremental consumer for the relay's Server-Sent Events stream.

The relay passes upstream payloads through verbatim, so every shape the
gateway may emit is accepted here::

    data: {"choices": [{"delta": {"content": "Hel"}}]}      -> append
    data: {"choices": [{"message": {"content": "Hello"}}]}  -> replace
    data: {"content": "lo"}                                 -> append
    data: {"response": "Hello"}                             -> replace (non-streaming upstream)
    data: {"error": {"message": "...", "code": "..."}}      -> UpstreamError
    data: [DONE]                                            -> ignored

Bytes are decoded with an incremental UTF-8 decoder so a multi-byte
character split across two network chunks is never mangled, and a
trailing partial line is held back until the rest of it arrives. A line
that cannot be parsed is logged and skipped; it never aborts the stream.

Last Grunted: 10/16/2026 11:45:00 AM UTC
"""
from __future__ import annotations

import codecs
import inspect
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Optional, Sequence, Union

from zenux_client.errors import UpstreamError

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "AI did not return a response."
DONE_SENTINEL = "[DONE]"

_DATA_PREFIX = re.compile(r"^data:\s*", re.IGNORECASE)

UpdateCallback = Callable[[str], Union[Awaitable[None], None]]


# =============================================================================
# Delta Extraction
# =============================================================================


@dataclass(frozen=True)
class Delta:
    """A piece of assistant text and how to apply it to the buffer."""

    text: str
    replace: bool = False


Extractor = Callable[[Any], Optional[Delta]]


def _first_choice(obj: Any) -> Optional[dict]:
    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def extract_choice_delta(obj: Any) -> Optional[Delta]:
    choice = _first_choice(obj)
    delta = choice.get("delta") if choice else None
    if isinstance(delta, dict) and isinstance(delta.get("content"), str):
        return Delta(delta["content"])
    return None


def extract_choice_message(obj: Any) -> Optional[Delta]:
    choice = _first_choice(obj)
    message = choice.get("message") if choice else None
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return Delta(message["content"], replace=True)
    return None


def extract_flat_content(obj: Any) -> Optional[Delta]:
    if isinstance(obj, dict) and isinstance(obj.get("content"), str):
        return Delta(obj["content"])
    return None


def extract_response(obj: Any) -> Optional[Delta]:
    if isinstance(obj, dict) and isinstance(obj.get("response"), str):
        return Delta(obj["response"], replace=True)
    return None


# Tried in order; the first extractor that matches wins.
EXTRACTORS: tuple[Extractor, ...] = (
    extract_choice_delta,
    extract_choice_message,
    extract_flat_content,
    extract_response,
)


def extract_delta(obj: Any, extractors: Sequence[Extractor] = EXTRACTORS) -> Optional[Delta]:
    for extractor in extractors:
        delta = extractor(obj)
        if delta is not None:
            return delta
    return None


# =============================================================================
# Line Handling
# =============================================================================


def strip_data_prefix(line: str) -> Optional[str]:
    """
    Return the payload of a ``data:`` line, or None for any other line.

    Repeated prefixes (``data: data: {...}``) are all removed.

    Example:
        >>> strip_data_prefix("DATA: data: [DONE]")
        '[DONE]'
    """
    line = line.strip()
    match = _DATA_PREFIX.match(line)
    if match is None:
        return None
    while match is not None:
        line = line[match.end():].lstrip()
        match = _DATA_PREFIX.match(line)
    return line.strip()


def parse_payload(payload: str) -> Any:
    """
    Parse a JSON payload, retrying from the first ``{`` when the line
    carries leading noise.

    Raises:
        ValueError: If neither attempt yields JSON
    """
    try:
        return json.loads(payload)
    except ValueError:
        start = payload.find("{")
        if start < 0:
            raise
        obj, _ = json.JSONDecoder().raw_decode(payload, start)
        return obj


class LineSplitter:
    """Turn a byte stream into complete text lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        self._pending += self._decoder.decode(b"", final=True)
        tail, self._pending = self._pending, ""
        return [line.rstrip("\r") for line in tail.split("\n") if line.strip()]


# =============================================================================
# Accumulation
# =============================================================================


class StreamAccumulator:
    """
    Running text of one assistant reply.

    Attributes:
        text: Content accumulated so far
        done: True once the ``[DONE]`` sentinel was seen
        skipped_lines: Count of lines dropped as unparseable
    """

    def __init__(self, extractors: Sequence[Extractor] = EXTRACTORS) -> None:
        self._extractors = extractors
        self._parts: list[str] = []
        self.done = False
        self.skipped_lines = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed_line(self, line: str) -> bool:
        """
        Apply one line to the buffer.

        Returns:
            bool: True when the line changed the buffer

        Raises:
            UpstreamError: The line is an in-band error event
        """
        payload = strip_data_prefix(line)
        if not payload:
            return False
        if payload == DONE_SENTINEL:
            self.done = True
            return False

        try:
            obj = parse_payload(payload)
        except ValueError:
            self.skipped_lines += 1
            logger.warning("chat.stream.parse_skip line=%r", line[:200])
            return False

        if isinstance(obj, dict) and obj.get("error"):
            raise UpstreamError.from_envelope(obj, default="AI service error")

        delta = extract_delta(obj, self._extractors)
        if delta is None:
            return False
        if delta.replace:
            self._parts = [delta.text]
            return True
        if not delta.text:
            return False
        self._parts.append(delta.text)
        return True

    def finalize(self) -> str:
        """Final reply text; never empty."""
        return self.text or FALLBACK_MESSAGE


async def _notify(on_update: Optional[UpdateCallback], text: str) -> None:
    if on_update is None:
        return
    result = on_update(text)
    if inspect.isawaitable(result):
        await result


async def consume_stream(
    chunks: AsyncIterable[Union[bytes, str]],
    on_update: Optional[UpdateCallback] = None,
    accumulator: Optional[StreamAccumulator] = None,
) -> str:
    """
    Read a relay stream to the end and return the assistant's reply.

    Args:
        chunks: Raw response body, e.g. ``response.aiter_bytes()``
        on_update: Called with the whole buffer after every line that
            added content; may be sync or async
        accumulator: Supply one to inspect counters afterwards

    Returns:
        str: Final text, or ``FALLBACK_MESSAGE`` when nothing arrived

    Raises:
        UpstreamError: The relay sent an error event
    """
    splitter = LineSplitter()
    acc = accumulator or StreamAccumulator()

    async for chunk in chunks:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        for line in splitter.feed(chunk):
            if acc.feed_line(line):
                await _notify(on_update, acc.text)

    for line in splitter.flush():
        if acc.feed_line(line):
            await _notify(on_update, acc.text)

    if acc.skipped_lines:
        logger.info("chat.stream.complete skipped_lines=%d", acc.skipped_lines)
    return acc.finalize()
