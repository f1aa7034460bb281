"""HTTP surface tests via FastAPI TestClient.

The app runs its real lifespan against a database in tmp_path; the provider
is replaced by a scripted fake.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fakes import FakeProvider

CARD = {
    "character": {"name": "Aiko", "description": "A cheerful innkeeper.", "greeting": "Welcome!"},
    "world": {"description": "A mountain village."},
}
PERSONA = {"name": "Ren"}


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(tmp_path, monkeypatch, provider):
    from rpchat.chat.service import chat_service
    from rpchat.config import settings
    from rpchat.main import app

    monkeypatch.setattr(settings, "db_path", str(tmp_path / "api.db"))
    monkeypatch.setattr(chat_service, "_provider", provider)
    with TestClient(app) as c:
        yield c


def _create_chat(client) -> int:
    response = client.post("/chats", json={"card": CARD, "persona": PERSONA})
    assert response.status_code == 200
    return response.json()["id"]


class TestChatsApi:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_create_and_history(self, client):
        chat_id = _create_chat(client)
        response = client.get(f"/chats/{chat_id}/messages")
        assert response.status_code == 200
        messages = response.json()["messages"]
        assert [(m["sender"], m["text"]) for m in messages] == [("character", "Welcome!")]
        assert client.get("/chats/recent").json() == {"chat_id": chat_id}
        assert [c["character"] for c in client.get("/chats").json()["chats"]] == ["Aiko"]

    def test_unknown_chat_is_404(self, client):
        assert client.get("/chats/999/messages").status_code == 404
        assert client.post("/chats/999/messages", json={"text": "hi"}).status_code == 404


class TestGenerationApi:

    def test_send(self, client, provider):
        provider.replies = ["Hello, Ren."]
        chat_id = _create_chat(client)
        response = client.post(f"/chats/{chat_id}/messages", json={"text": "Hi there"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["user"]["text"] == "Hi there"
        assert body["reply"]["text"] == "Hello, Ren."

    def test_provider_failure_is_502_and_persists_nothing(self, client, provider):
        from rpchat.errors import ProviderError
        provider.error = ProviderError("connection refused")
        chat_id = _create_chat(client)
        response = client.post(f"/chats/{chat_id}/messages", json={"text": "Hi"})
        assert response.status_code == 502
        assert len(client.get(f"/chats/{chat_id}/messages").json()["messages"]) == 1

    def test_budget_exceeded_is_422(self, client, monkeypatch):
        from rpchat.config import settings
        monkeypatch.setattr(settings, "token_limit", 50)
        chat_id = _create_chat(client)
        response = client.post(f"/chats/{chat_id}/messages", json={"text": "Hi"})
        assert response.status_code == 422
        assert "minimum 300" in response.json()["detail"]

    def test_in_flight_is_409(self, client):
        from rpchat.chat.service import chat_service
        chat_id = _create_chat(client)
        chat_service._generating.add(chat_id)
        try:
            response = client.post(f"/chats/{chat_id}/messages", json={"text": "Hi"})
        finally:
            chat_service._generating.discard(chat_id)
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_regenerate_then_clear_prime(self, client, provider):
        provider.replies = ["first", "second"]
        chat_id = _create_chat(client)
        reply_id = client.post(f"/chats/{chat_id}/messages", json={"text": "Hi"}).json()["reply"]["id"]

        response = client.post(f"/messages/{reply_id}/regenerate")
        assert response.status_code == 200
        assert response.json()["message"]["canonical_text"] == "second"

        response = client.delete(f"/messages/{reply_id}/prime")
        assert response.json()["canonical_text"] == "first"

    def test_context_preview(self, client):
        chat_id = _create_chat(client)
        response = client.post(f"/chats/{chat_id}/context", json={"text": "Hi"})
        assert response.status_code == 200
        body = response.json()
        assert "### World Info\nA mountain village." in body["system"]
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]

    def test_unsupported_variant_is_400(self, client, monkeypatch):
        from rpchat.config import settings
        monkeypatch.setattr(settings, "prompt_variant", "xml")
        chat_id = _create_chat(client)
        response = client.post(f"/chats/{chat_id}/context", json={"text": "Hi"})
        assert response.status_code == 400


class TestStructuralApi:

    def test_set_prime_foreign_candidate_is_400(self, client):
        chat_id = _create_chat(client)
        first = client.post(f"/chats/{chat_id}/messages", json={"text": "a"}).json()["reply"]["id"]
        second = client.post(f"/chats/{chat_id}/messages", json={"text": "b"}).json()["reply"]["id"]
        candidate = client.post(f"/messages/{second}/regenerate").json()["candidate_id"]

        response = client.put(f"/messages/{first}/prime", json={"candidate_id": candidate})
        assert response.status_code == 400

        response = client.put(f"/messages/{second}/prime", json={"candidate_id": candidate})
        assert response.status_code == 200

    def test_edit(self, client):
        chat_id = _create_chat(client)
        user_id = client.post(f"/chats/{chat_id}/messages", json={"text": "typo"}).json()["user"]["id"]

        assert client.post("/edit", json={"text": "x"}).status_code == 400
        response = client.post("/edit", json={"text": "fixed", "message_id": user_id})
        assert response.status_code == 200

        texts = [m["text"] for m in client.get(f"/chats/{chat_id}/messages").json()["messages"]]
        assert "fixed" in texts and "typo" not in texts

    def test_rewind_and_delete(self, client):
        chat_id = _create_chat(client)
        first = client.post(f"/chats/{chat_id}/messages", json={"text": "a"}).json()
        client.post(f"/chats/{chat_id}/messages", json={"text": "b"})

        response = client.post(f"/chats/{chat_id}/rewind", json={"message_id": first["reply"]["id"]})
        assert response.json() == {"success": True, "deleted": 2}

        assert client.delete(f"/messages/{first['user']['id']}").status_code == 200
        assert client.delete(f"/messages/{first['user']['id']}").status_code == 400
        ids = [m["id"] for m in client.get(f"/chats/{chat_id}/messages").json()["messages"]]
        assert ids == [1, first["reply"]["id"]]
