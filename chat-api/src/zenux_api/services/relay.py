"""
Streaming relay between the web client and the upstream AI gateway.

The relay never buffers a full reply: each upstream chunk is framed and
handed to the outbound ``StreamingResponse`` before the next one is read,
so a slow client paces the upstream read (backpressure) and the first
token reaches the browser as soon as the gateway emits it.

Framing rules:
    - ``text/event-stream`` upstream: bytes are forwarded verbatim.
    - Other streaming upstreams: decoded text is forwarded line by line
      (a partial line waits for its newline). A block that already starts
      with ``data:`` or ``event:`` is terminated with a blank line; any
      other line becomes its own ``data: <line>`` event.
    - ``application/json`` upstream (non-streaming reply): one event
      ``data: {"response": "<assistant text>"}``.
    - Upstream failure: one in-band error event, then the stream closes.

SSE wire format emitted to the client::

    data: {"choices": [{"delta": {"content": "Hel"}}]}

    data: {"choices": [{"delta": {"content": "lo"}}]}

    data: [DONE]

Last Grunted: 10/14/2026 03:25:00 PM UTC
"""
from __future__ import annotations

import codecs
import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx
import structlog

from zenux_api.config import Settings
from zenux_api.services.errors import upstream_error_event
from zenux_api.services.observability import record_metric

logger = structlog.get_logger(__name__)

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

# Max characters of an upstream error body echoed into the error event
MAX_ERROR_DETAIL_LENGTH: int = 200


@dataclass(frozen=True)
class RelayTurn:
    """One user turn to forward upstream."""
    message: str
    user_id: str
    conversation_id: str
    mode: str = "auto"


def frame_chunk(text: str) -> str:
    """
    Wrap one upstream text chunk in SSE framing.

    Args:
        text: Decoded upstream chunk

    Returns:
        str: SSE text ready to write, or "" when the chunk carries nothing

    Example:
        >>> frame_chunk('{"content": "hi"}')
        'data: {"content": "hi"}\\n\\n'
    """
    stripped = text.lstrip()
    if stripped.startswith("data:") or stripped.startswith("event:"):
        if text.rstrip(" \t").endswith("\n\n"):
            return text
        return text.rstrip("\r\n") + "\n\n"

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return ""
    return "".join(f"data: {line}\n\n" for line in lines)


def _message_content(body: Any) -> str:
    if isinstance(body, dict):
        choices = body.get("choices") or []
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
            if isinstance(content, str):
                return content
    return ""


class ChatRelay:
    """
    Forward chat turns to the upstream gateway and re-stream the reply.

    Args:
        client: Shared httpx client
        settings: Service settings (upstream URL, key, sampling defaults)

    Last Grunted: 10/14/2026 03:25:00 PM UTC
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self._client = client
        self._settings = settings

    def build_payload(self, turn: RelayTurn) -> dict[str, Any]:
        """Build the OpenAI-shaped upstream request body."""
        return {
            "model": self._settings.model_for_mode(turn.mode),
            "messages": [{"role": "user", "content": turn.message}],
            "user_id": turn.user_id,
            "conversation_id": turn.conversation_id,
            "stream": True,
            "temperature": self._settings.upstream_temperature,
            "max_tokens": self._settings.upstream_max_tokens,
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._settings.zenux_api_key:
            headers["Authorization"] = f"Bearer {self._settings.zenux_api_key}"
        return headers

    async def stream(
        self,
        turn: RelayTurn,
        on_accepted: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> AsyncIterator[Union[str, bytes]]:
        """
        Relay one turn, yielding SSE text/bytes as upstream chunks arrive.

        Args:
            turn: The user turn
            on_accepted: Awaited once when the upstream accepts the request
                (2xx); failures there are logged and never break the stream

        Yields:
            SSE frames (str) or verbatim SSE bytes
        """
        payload = self.build_payload(turn)
        start = time.perf_counter()
        success = False
        chunk_count = 0
        ttfb_ms: Optional[float] = None
        failure_code: Optional[str] = None

        logger.info(
            "relay.stream.start",
            conversation_id=turn.conversation_id,
            model=payload["model"],
        )

        try:
            async with self._client.stream(
                "POST",
                self._settings.zenux_chat_api_url,
                json=payload,
                headers=self._headers(),
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "relay.upstream.error_status",
                        status_code=response.status_code,
                        conversation_id=turn.conversation_id,
                    )
                    detail = body[:MAX_ERROR_DETAIL_LENGTH].strip()
                    message = f"Upstream returned {response.status_code}"
                    if detail:
                        message = f"{message} - {detail}"
                    failure_code = "upstream_status"
                    yield upstream_error_event(message, failure_code)
                    return

                if on_accepted is not None:
                    try:
                        await on_accepted()
                    except Exception as e:
                        logger.warning("relay.usage.record_failed", error=str(e))

                content_type = response.headers.get("content-type", "").lower()

                if content_type.startswith("application/json"):
                    body = await response.aread()
                    try:
                        text = _message_content(json.loads(body))
                    except ValueError:
                        text = body.decode("utf-8", errors="replace")
                    yield f"data: {json.dumps({'response': text})}\n\n"
                    chunk_count = 1
                    success = True
                    return

                passthrough = content_type.startswith("text/event-stream")
                decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                pending = ""

                async for chunk in response.aiter_bytes():
                    if ttfb_ms is None:
                        ttfb_ms = (time.perf_counter() - start) * 1000
                        logger.debug(
                            "relay.stream.first_chunk",
                            conversation_id=turn.conversation_id,
                            ttfb_ms=round(ttfb_ms, 2),
                        )
                    chunk_count += 1

                    if passthrough:
                        yield chunk
                        continue

                    pending += decoder.decode(chunk)
                    complete, newline, pending = pending.rpartition("\n")
                    if newline:
                        framed = frame_chunk(complete + newline)
                        if framed:
                            yield framed

                if not passthrough:
                    tail = frame_chunk(pending + decoder.decode(b"", final=True))
                    if tail:
                        yield tail

                success = True

        except httpx.ConnectError as e:
            logger.warning("relay.upstream.unreachable", error=str(e))
            failure_code = "upstream_unreachable"
            yield upstream_error_event("AI service is unreachable", failure_code)
        except httpx.TimeoutException as e:
            logger.warning("relay.upstream.timeout", error=str(e), chunks=chunk_count)
            failure_code = "upstream_timeout"
            yield upstream_error_event("AI service timed out", failure_code)
        except httpx.HTTPError as e:
            logger.warning("relay.upstream.interrupted", error=str(e), chunks=chunk_count)
            failure_code = "upstream_interrupted"
            yield upstream_error_event(f"Failed to stream AI response: {e}", failure_code)
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            record_metric("relay.chat", latency_ms, success, ttfb_ms=ttfb_ms, failure_code=failure_code)
            logger.info(
                "relay.stream.complete",
                conversation_id=turn.conversation_id,
                success=success,
                chunks=chunk_count,
                duration_ms=round(latency_ms, 2),
            )
