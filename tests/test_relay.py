import asyncio
import json

import httpx

from zenux_api.config import get_settings
from zenux_api.services import observability
from zenux_api.services.relay import ChatRelay, RelayTurn, frame_chunk


def _turn(mode: str = "auto") -> RelayTurn:
    return RelayTurn(message="hello", user_id="user-1", conversation_id="conv-1", mode=mode)


def _relay(handler) -> ChatRelay:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatRelay(client, get_settings())


def _collect(relay: ChatRelay, turn: RelayTurn, on_accepted=None) -> list:
    async def run():
        return [chunk async for chunk in relay.stream(turn, on_accepted=on_accepted)]

    return asyncio.run(run())


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


# ============================================================================
# Framing
# ============================================================================


def test_frame_chunk_wraps_plain_lines():
    assert frame_chunk('{"content": "hi"}') == 'data: {"content": "hi"}\n\n'
    assert frame_chunk("a\nb\n") == "data: a\n\ndata: b\n\n"


def test_frame_chunk_keeps_existing_sse_framing():
    assert frame_chunk("data: x") == "data: x\n\n"
    assert frame_chunk("data: x\n\n") == "data: x\n\n"
    assert frame_chunk("event: ping\ndata: y") == "event: ping\ndata: y\n\n"


def test_frame_chunk_drops_blank_chunks():
    assert frame_chunk("\n\n") == ""
    assert frame_chunk("") == ""


# ============================================================================
# Upstream request
# ============================================================================


def test_build_payload_maps_mode_and_sampling_defaults():
    relay = _relay(lambda request: httpx.Response(200))
    payload = relay.build_payload(_turn("fast"))
    assert payload["model"] == "zenux-1o-fast"
    assert payload["messages"] == [{"role": "user", "content": "hello"}]
    assert payload["stream"] is True
    assert payload["temperature"] == 0.7
    assert payload["max_tokens"] == 1000
    assert relay.build_payload(_turn("heavy"))["model"] == "zenux-1o-heavy"
    assert relay.build_payload(_turn("whatever"))["model"] == "zenux-1o-alpha"


def test_sse_upstream_is_forwarded_verbatim_in_order():
    parts = [
        b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n',
        b'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n',
        b"data: [DONE]\n\n",
    ]
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=_chunks(*parts))

    out = _collect(_relay(handler), _turn())

    assert b"".join(out) == b"".join(parts)
    assert seen["auth"] == "Bearer upstream-key"
    assert seen["body"]["conversation_id"] == "conv-1"
    assert seen["body"]["user_id"] == "user-1"


def test_non_sse_stream_is_wrapped_and_utf8_split_survives():
    encoded = '{"content": "café"}\n'.encode("utf-8")
    split = encoded.index(b"\xc3") + 1
    handler = lambda request: httpx.Response(
        200,
        headers={"content-type": "text/plain"},
        content=_chunks(encoded[:split], encoded[split:]),
    )

    out = "".join(_collect(_relay(handler), _turn()))

    assert "\ufffd" not in out
    assert 'data: {"content": "café"}\n\n' in out


def test_json_upstream_becomes_single_response_event():
    body = {"choices": [{"message": {"content": "Hi there"}}]}
    handler = lambda request: httpx.Response(200, json=body)

    out = _collect(_relay(handler), _turn())

    assert out == ['data: {"response": "Hi there"}\n\n']


def test_error_status_becomes_one_error_event():
    handler = lambda request: httpx.Response(502, text="bad gateway")
    accepted = []

    async def on_accepted():
        accepted.append(True)

    out = _collect(_relay(handler), _turn(), on_accepted=on_accepted)

    assert len(out) == 1
    event = json.loads(out[0][len("data: "):])
    assert event["error"]["code"] == "upstream_status"
    assert "502" in event["error"]["message"]
    assert accepted == []


def test_unreachable_upstream_is_reported_in_band():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    out = _collect(_relay(handler), _turn())

    event = json.loads(out[0][len("data: "):])
    assert event["error"]["type"] == "upstream_error"
    assert event["error"]["code"] == "upstream_unreachable"
    stats = observability.get_metric_snapshot()["relay.chat"]
    assert stats["failures"] == 1.0
    assert stats["failure_codes"] == {"upstream_unreachable": 1}


def test_on_accepted_failure_does_not_break_stream():
    handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=b"data: [DONE]\n\n"
    )

    async def on_accepted():
        raise RuntimeError("database down")

    out = _collect(_relay(handler), _turn(), on_accepted=on_accepted)

    assert b"".join(out) == b"data: [DONE]\n\n"


def test_upstream_is_read_only_as_fast_as_the_client_consumes():
    produced = []

    async def upstream():
        for i in range(3):
            produced.append(i)
            yield f'data: {{"content": "{i}"}}\n\n'.encode()

    handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=upstream()
    )
    relay = _relay(handler)

    async def run():
        stream = relay.stream(_turn())
        first = await stream.__anext__()
        read_after_first = len(produced)
        await stream.aclose()
        return first, read_after_first

    first, read_after_first = asyncio.run(run())

    assert first == b'data: {"content": "0"}\n\n'
    assert read_after_first == 1
