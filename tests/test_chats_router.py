import pytest
from fastapi.testclient import TestClient

from zenux_api.dependencies import get_chat_store
from zenux_api.main import app


@pytest.fixture
def client(store):
    app.dependency_overrides[get_chat_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_chat(client, **body) -> dict:
    response = client.post("/api/chats", json={"user_id": "u-1", **body})
    assert response.status_code == 200
    return response.json()["chat"]


def _post_message(client, chat_id: str, role: str, content: str):
    return client.post("/api/messages", json={"chatId": chat_id, "role": role, "content": content})


def test_create_chat_derives_title_from_first_message(client):
    chat = _create_chat(client, first_message="How do I pay my electricity bill?")
    assert chat["title"] == "Payment Discussion"
    assert chat["user_id"] == "u-1"


def test_create_chat_defaults_to_new_chat(client):
    assert _create_chat(client)["title"] == "New Chat"


def test_create_chat_requires_user_id(client):
    response = client.post("/api/chats", json={"title": "x"})
    assert response.status_code == 400
    assert response.json()["error"]["param"] == "user_id"


def test_messages_round_trip_in_creation_order(client):
    chat = _create_chat(client, title="Pinned")
    for i, role in enumerate(["user", "assistant", "user", "assistant"]):
        assert _post_message(client, chat["id"], role, f"m{i}").status_code == 200

    messages = client.get(f"/api/messages/{chat['id']}").json()["messages"]

    assert [m["content"] for m in messages] == ["m0", "m1", "m2", "m3"]
    assert [m["created_at"] for m in messages] == sorted(m["created_at"] for m in messages)


def test_second_user_message_retitles_generic_chat(client):
    chat = _create_chat(client)

    first = _post_message(client, chat["id"], "user", "zebra").json()
    second = _post_message(client, chat["id"], "user", "yak").json()

    assert first["chat_title"] is None
    assert second["chat_title"] == "Zebra Yak"
    chats = client.get("/api/chats/u-1").json()["chats"]
    assert chats[0]["title"] == "Zebra Yak"


def test_user_supplied_title_is_kept(client):
    chat = _create_chat(client, title="Groceries")
    _post_message(client, chat["id"], "user", "zebra")
    assert _post_message(client, chat["id"], "user", "yak").json()["chat_title"] is None


def test_invalid_role_is_rejected(client):
    chat = _create_chat(client)
    response = _post_message(client, chat["id"], "system", "hi")
    assert response.status_code == 400
    assert response.json()["error"]["param"] == "role"


def test_unknown_chat_returns_404(client):
    missing = "00000000-0000-0000-0000-000000000000"
    assert _post_message(client, missing, "user", "hi").status_code == 404
    response = client.get(f"/api/messages/{missing}")
    assert response.status_code == 404
    assert response.json()["error"]["type"] == "not_found_error"


def test_malformed_chat_id_is_a_validation_error(client):
    response = client.get("/api/messages/not-a-uuid")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_list_chats_most_recent_first(client):
    older = _create_chat(client, title="Older")
    newer = _create_chat(client, title="Newer")
    _post_message(client, older["id"], "user", "bump")

    titles = [c["title"] for c in client.get("/api/chats/u-1").json()["chats"]]

    assert titles == ["Older", "Newer"]
    assert client.get("/api/chats/someone-else").json()["chats"] == []
    assert newer["id"] != older["id"]


def test_rename_and_delete_chat(client):
    chat = _create_chat(client)
    _post_message(client, chat["id"], "user", "hello")

    renamed = client.patch(f"/api/chats/{chat['id']}", json={"title": "Renamed"})
    assert renamed.json()["chat"]["title"] == "Renamed"

    assert client.delete(f"/api/chats/{chat['id']}").json() == {"id": chat["id"], "deleted": True}
    assert client.get(f"/api/messages/{chat['id']}").status_code == 404
    assert client.delete(f"/api/chats/{chat['id']}").status_code == 404
