import asyncio
import json

import pytest

from zenux_client import stream
from zenux_client.errors import UpstreamError
from zenux_client.stream import (
    FALLBACK_MESSAGE,
    LineSplitter,
    StreamAccumulator,
    consume_stream,
    strip_data_prefix,
)


async def _body(*parts):
    for part in parts:
        yield part


def _consume(*parts, accumulator=None):
    updates = []
    text = asyncio.run(consume_stream(_body(*parts), on_update=updates.append, accumulator=accumulator))
    return text, updates


def _delta(text: str) -> str:
    return f"data: {json.dumps({'choices': [{'delta': {'content': text}}]}, ensure_ascii=False)}\n\n"


def test_deltas_concatenate_in_arrival_order_across_chunk_boundaries():
    sse = (_delta("Hel") + _delta("lo, ") + _delta("wörld") + "data: [DONE]\n\n").encode("utf-8")
    # split inside a line and inside the two-byte "ö"
    cut_a = 7
    cut_b = sse.index("ö".encode("utf-8")) + 1
    assert sse[cut_b - 1:cut_b + 1] == "ö".encode("utf-8")

    text, updates = _consume(sse[:cut_a], sse[cut_a:cut_b], sse[cut_b:])

    assert text == "Hello, wörld"
    assert updates == ["Hel", "Hello, ", "Hello, wörld"]


def test_one_chunk_with_many_lines_updates_per_line():
    text, updates = _consume((_delta("a") + _delta("b")).encode())
    assert text == "ab"
    assert updates == ["a", "ab"]


def test_message_content_replaces_buffer():
    message = json.dumps({"choices": [{"message": {"content": "Full answer"}}]})
    text, updates = _consume((_delta("partial ") + f"data: {message}\n\n").encode())
    assert text == "Full answer"
    assert updates[-1] == "Full answer"


def test_flat_content_and_relay_response_shapes():
    assert _consume(b'data: {"content": "x"}\n\ndata: {"content": "y"}\n\n')[0] == "xy"
    assert _consume(b'data: {"response": "Hi there"}\n\n')[0] == "Hi there"


def test_done_sentinel_never_reaches_the_parser(monkeypatch):
    parsed = []
    real_parse = stream.parse_payload

    def spy(payload):
        parsed.append(payload)
        return real_parse(payload)

    monkeypatch.setattr(stream, "parse_payload", spy)
    acc = StreamAccumulator()

    text, _ = _consume(b"data: [DONE]\n\n", _delta("ok").encode(), b"DATA: data: [DONE]\n", accumulator=acc)

    assert text == "ok"
    assert all("[DONE]" not in p for p in parsed)
    assert acc.done is True


def test_unparseable_line_is_skipped_without_stopping_the_stream():
    acc = StreamAccumulator()
    text, updates = _consume(
        _delta("one ").encode(),
        b"data: {not json at all\n\n",
        b"data: plain words\n\n",
        _delta("two").encode(),
        accumulator=acc,
    )

    assert text == "one two"
    assert updates == ["one ", "one two"]
    assert acc.skipped_lines == 2


def test_leading_noise_is_recovered_from_first_brace():
    assert _consume(b'data: garbage {"content": "x"} trailing\n')[0] == "x"


def test_prefix_handling_is_case_insensitive_and_repeated():
    assert strip_data_prefix("data: data: {}") == "{}"
    assert strip_data_prefix("DATA:{}") == "{}"
    assert strip_data_prefix("event: ping") is None
    assert strip_data_prefix("") is None
    assert _consume(b'Data: data:{"content": "z"}\r\n')[0] == "z"


def test_non_data_lines_are_ignored():
    assert _consume(b": keep-alive\n\nevent: ping\n\n" + _delta("x").encode())[0] == "x"


def test_trailing_line_without_newline_is_processed_at_end():
    assert _consume(b'data: {"content": "tail"}')[0] == "tail"


def test_empty_stream_finalizes_to_fallback():
    text, updates = _consume(b"data: [DONE]\n\n")
    assert text == FALLBACK_MESSAGE
    assert updates == []


def test_empty_delta_does_not_notify():
    text, updates = _consume(_delta("").encode(), _delta("x").encode())
    assert updates == ["x"]


def test_error_event_raises_upstream_error():
    error = {"error": {"message": "AI service is unreachable", "type": "upstream_error", "code": "upstream_unreachable"}}
    with pytest.raises(UpstreamError) as info:
        _consume(_delta("partial").encode(), f"data: {json.dumps(error)}\n\n".encode())

    assert info.value.code == "upstream_unreachable"
    assert str(info.value) == "AI service is unreachable"


def test_async_update_callbacks_are_awaited():
    seen = []

    async def on_update(text):
        await asyncio.sleep(0)
        seen.append(text)

    asyncio.run(consume_stream(_body(_delta("a").encode()), on_update=on_update))
    assert seen == ["a"]


def test_line_splitter_holds_partial_lines():
    splitter = LineSplitter()
    assert splitter.feed(b"data: a") == []
    assert splitter.feed(b"bc\r\ndata: d") == ["data: abc"]
    assert splitter.flush() == ["data: d"]
