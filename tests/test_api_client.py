import asyncio
import json

import httpx
import pytest

from zenux_client.api import ZenuxApiClient
from zenux_client.config import ClientSettings
from zenux_client.errors import AuthError, NotFoundError, UpstreamError, ValidationError
from zenux_client.stream import consume_stream

SETTINGS = ClientSettings(max_retries=3, retry_backoff_base=0)


def _api(handler, **kwargs) -> ZenuxApiClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    return ZenuxApiClient(client, settings=SETTINGS, **kwargs)


def _error(status: int, message: str, code: str = "x") -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message, "type": "t", "param": None, "code": code}})


def _stream_reply(api: ZenuxApiClient) -> str:
    async def run():
        async with api.stream_chat("hello", conversation_id="chat-1") as chunks:
            return await consume_stream(chunks)

    return asyncio.run(run())


def test_stream_chat_sends_token_and_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=b'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\ndata: [DONE]\n\n',
        )

    api = _api(handler, access_token="tok", user_id="u-1")

    assert _stream_reply(api) == "Hi"
    assert seen["path"] == "/api/ai/chat"
    assert seen["auth"] == "Bearer tok"
    assert seen["body"] == {"message": "hello", "mode": "auto", "conversation_id": "chat-1", "user_id": "u-1"}


@pytest.mark.parametrize(
    "status, error_type",
    [(401, AuthError), (400, ValidationError), (500, UpstreamError)],
)
def test_stream_chat_maps_error_statuses(status, error_type):
    api = _api(lambda request: _error(status, "nope", code="c"))

    with pytest.raises(error_type) as info:
        _stream_reply(api)

    assert info.value.status_code == status
    assert info.value.message == "nope"


def test_get_requests_retry_transient_failures():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        if len(calls) == 2:
            return httpx.Response(503)
        return httpx.Response(200, json={"chats": [{"id": "c1"}]})

    chats = asyncio.run(_api(handler).list_chats("u-1"))

    assert chats == [{"id": "c1"}]
    assert calls == ["/api/chats/u-1"] * 3


def test_get_requests_give_up_after_max_retries():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(429)

    with pytest.raises(UpstreamError):
        asyncio.run(_api(handler).get_messages("chat-1"))
    assert len(calls) == SETTINGS.max_retries


def test_writes_are_not_retried_and_map_404():
    calls = []

    def handler(request):
        calls.append(1)
        return _error(404, "Chat 'x' not found", code="chat_not_found")

    with pytest.raises(NotFoundError):
        asyncio.run(_api(handler).save_message("x", "user", "hi"))
    assert calls == [1]


def test_create_chat_passes_first_message():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"chat": {"id": "c1", "title": "Payment Discussion"}})

    chat = asyncio.run(_api(handler).create_chat("u-1", first_message="pay my bill"))

    assert chat["title"] == "Payment Discussion"
    assert seen == {"user_id": "u-1", "first_message": "pay my bill"}
