"""Tests for conversation CRUD endpoints."""

import jwt
from fastapi.testclient import TestClient


def _create(client, **body):
    response = client.post("/api/v1/conversations", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/").json()["service"] == "chatrelay"


def test_list_conversations_empty(client):
    response = client.get("/api/v1/conversations")
    assert response.status_code == 200
    assert response.json() == []


def test_create_defaults_to_test_service(client, owner):
    data = _create(client)
    assert data["llm_service"] == "test"
    assert data["llm_model"] == "test_model"
    assert data["title"] == "New Conversation"
    assert data["owner"] == owner
    assert data["temperature"] == 0.7
    assert data["messages"] == []
    assert data["created"] == data["updated"]


def test_create_with_service(client):
    data = _create(client, llm_service="openai", llm_model="gpt-4o", system_prompt="  Be terse. ", temperature=3)
    assert data["llm_service"] == "openai"
    assert data["llm_model"] == "gpt-4o"
    assert data["system_prompt"] == "Be terse."
    assert data["temperature"] == 1.0


def test_test_mode_overrides_service(client):
    data = _create(client, llm_service="openai", llm_model="gpt-4o", test_mode="true")
    assert (data["llm_service"], data["llm_model"]) == ("test", "test_model")


def test_unknown_service_rejected_at_creation(client):
    response = client.post("/api/v1/conversations", json={"llm_service": "unsupported-xyz", "llm_model": "m"})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "invalid_llm_service"
    assert body["data"] == {"status": 400}
    assert client.get("/api/v1/conversations?include_deleted=true").json() == []


def test_disabled_service_rejected(client, app, settings):
    app.state.conversations.registry.settings = settings.model_copy(update={"ollama_enabled": False})
    response = client.post("/api/v1/conversations", json={"llm_service": "ollama", "llm_model": "llama3"})
    assert response.status_code == 400


def test_get_conversation(client):
    created = _create(client)
    response = client.get(f"/api/v1/conversations/{created['id']}")
    assert response.status_code == 200
    assert response.json() == created


def test_get_conversation_not_found(client):
    response = client.get("/api/v1/conversations/does-not-exist")
    assert response.status_code == 404
    assert response.json()["code"] == "conversation_not_found"


def test_conversations_are_scoped_to_owner(client):
    created = _create(client)
    response = client.get(f"/api/v1/conversations/{created['id']}", headers={"X-Guest-Id": "guest-2"})
    assert response.status_code == 404
    assert client.get("/api/v1/conversations", headers={"X-Guest-Id": "guest-2"}).json() == []


def test_missing_owner(app):
    with TestClient(app) as anonymous:
        response = anonymous.get("/api/v1/conversations")
    assert response.status_code == 401
    assert response.json()["code"] == "rest_forbidden"


def test_bearer_token_owner(client, settings):
    token = jwt.encode({"sub": "user-42"}, settings.nextauth_secret, algorithm="HS256")
    data = _create(client, llm_service="test")
    assert data["owner"] == "guest-1"

    response = client.post("/api/v1/conversations", json={}, headers={"Authorization": f"Bearer {token}"})
    assert response.json()["owner"] == "user-42"


def test_bad_bearer_token_falls_back_to_guest(client):
    token = jwt.encode({"sub": "user-42"}, "some-other-secret-0123456789abcdefgh", algorithm="HS256")
    response = client.post("/api/v1/conversations", json={}, headers={"Authorization": f"Bearer {token}"})
    assert response.json()["owner"] == "guest-1"


def test_update_conversation(client, clock):
    created = _create(client)
    clock.advance(30)
    response = client.patch(
        f"/api/v1/conversations/{created['id']}",
        json={"title": "  Renamed  ", "system_prompt": "Pirate voice.", "temperature": -2},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Renamed"
    assert data["system_prompt"] == "Pirate voice."
    assert data["temperature"] == 0.0
    assert data["updated"] == created["updated"] + 30


def test_update_partial(client):
    created = _create(client, temperature=0.3)
    data = client.patch(f"/api/v1/conversations/{created['id']}", json={"title": "Only title"}).json()
    assert data["title"] == "Only title"
    assert data["temperature"] == 0.3


def test_delete_is_soft_and_idempotent(client):
    created = _create(client)
    cid = created["id"]

    response = client.delete(f"/api/v1/conversations/{cid}")
    assert response.status_code == 200
    assert response.json() == {"message": "Conversation deleted successfully."}
    assert client.delete(f"/api/v1/conversations/{cid}").json() == {"message": "Conversation already deleted."}

    response = client.get(f"/api/v1/conversations/{cid}")
    assert response.status_code == 410
    assert response.json()["code"] == "conversation_deleted"
    assert client.patch(f"/api/v1/conversations/{cid}", json={"title": "x"}).status_code == 410

    assert client.get("/api/v1/conversations").json() == []
    tombstones = client.get("/api/v1/conversations", params={"include_deleted": "true"}).json()
    assert [(c["id"], c["deleted"]) for c in tombstones] == [(cid, True)]


def test_delete_not_found(client):
    assert client.delete("/api/v1/conversations/nope").status_code == 404


def test_list_newest_first(client, clock):
    first = _create(client)
    clock.advance(10)
    second = _create(client)
    clock.advance(10)
    client.patch(f"/api/v1/conversations/{first['id']}", json={"title": "bumped"})

    listed = client.get("/api/v1/conversations").json()
    assert [c["id"] for c in listed] == [first["id"], second["id"]]
    assert listed[0]["message_count"] == 0


def test_conversation_limit(client, settings):
    for _ in range(settings.max_conversations):
        _create(client)
    response = client.post("/api/v1/conversations", json={})
    assert response.status_code == 403
    assert response.json()["code"] == "conversation_limit_reached"


def test_export(client):
    created = _create(client)
    client.post(f"/api/v1/conversations/{created['id']}/messages", json={"content": "hello there"})

    response = client.get(f"/api/v1/conversations/{created['id']}/export")
    assert response.status_code == 200
    data = response.json()
    content = data["content"]
    assert content.startswith("# hello there\n")
    assert f"**Conversation ID:** {created['id']}" in content
    assert "**LLM Service:** test" in content
    assert "**LLM Model:** test_model" in content
    assert "**User** (2023-11-14 22:13:20 GMT)" in content
    assert "hello there" in content
    assert "Hello! How can I help you today?" in content
    assert data["filename"] == "hello-there-2023-11-14.md"


def test_settings(client, settings):
    data = client.get("/api/v1/settings").json()
    assert set(data["available_llm_services"]) == {"test", "openai", "ollama"}
    assert data["available_llm_services"]["openai"]["models"] == settings.openai_models
    assert data["available_llm_services"]["test"] == {"name": "Test Service", "models": ["test_model"]}
    assert data["global_rate_limit"] == 5
    assert data["global_max_conversations"] == 10
    assert data["global_max_messages"] == 20
