"""Tests for API endpoints."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from flynn import __version__
from flynn.main import app
from flynn.services.chat import NOT_CONFIGURED_MESSAGE
from flynn.storage.database import Database
from flynn.storage.family_repo import FamilyRepository


async def seed_database(path: str) -> None:
    db = Database(path)
    await db.initialize()
    try:
        repo = FamilyRepository(db)
        await repo.create_family("Rivera", family_id="f1")
        await repo.create_family("Chen", family_id="f2")
        await repo.create_caregiver("f1", "Ana Rivera", "ana@example.com", caregiver_id="cg1")
        await repo.create_child("f1", "Emma", birth_date="2021-03-14", child_id="c1")
        await repo.create_child("f2", "Leo", child_id="c2")
    finally:
        await db.close()


@pytest.fixture
def client(tmp_path, monkeypatch):
    """App client backed by a fresh, seeded database and no model provider."""
    path = str(tmp_path / "api.db")
    asyncio.run(seed_database(path))
    monkeypatch.setenv("FLYNN_DATABASE_PATH", path)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with TestClient(app) as test_client:
        yield test_client


def sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data:") :].strip()) for line in body.splitlines() if line.startswith("data:")]


def create_conversation(client: TestClient, **payload) -> dict:
    response = client.post("/conversations", json={"caregiverId": "cg1", **payload})
    assert response.status_code == 201
    return response.json()["data"]


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_response_structure(self, client):
        """Test that health check returns expected JSON structure."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert "timestamp" in data


class TestConversationEndpoints:
    """Conversation CRUD over HTTP."""

    def test_create_conversation(self, client):
        """Test that created conversations use camelCase fields."""
        data = create_conversation(client, childId="c1", title="Emma")

        assert data["caregiverId"] == "cg1"
        assert data["childId"] == "c1"
        assert data["title"] == "Emma"
        assert "createdAt" in data

    def test_create_conversation_unknown_caregiver(self, client):
        """Test that unknown caregivers return 404."""
        response = client.post("/conversations", json={"caregiverId": "ghost"})
        assert response.status_code == 404

    def test_create_conversation_unknown_child(self, client):
        """Test that unknown children return 404."""
        response = client.post("/conversations", json={"caregiverId": "cg1", "childId": "nope"})
        assert response.status_code == 404

    def test_create_conversation_other_family_child(self, client):
        """Test that another family's child returns 403."""
        response = client.post("/conversations", json={"caregiverId": "cg1", "childId": "c2"})

        assert response.status_code == 403
        assert response.json()["detail"] == "You don't have access to this child"

    def test_create_conversation_requires_caregiver(self, client):
        """Test request validation."""
        response = client.post("/conversations", json={})
        assert response.status_code == 422

    def test_list_conversations(self, client):
        """Test listing with and without a child filter."""
        create_conversation(client, childId="c1")
        create_conversation(client)

        everything = client.get("/conversations", params={"caregiverId": "cg1"}).json()["data"]
        for_emma = client.get("/conversations", params={"caregiverId": "cg1", "childId": "c1"}).json()["data"]

        assert len(everything) == 2
        assert [c["childId"] for c in for_emma] == ["c1"]

    def test_list_conversations_requires_caregiver(self, client):
        """Test that caregiverId is a required query parameter."""
        assert client.get("/conversations").status_code == 422

    def test_get_and_delete_conversation(self, client):
        """Test the detail view and deletion."""
        conversation = create_conversation(client)

        detail = client.get(f"/conversations/{conversation['id']}")
        assert detail.status_code == 200
        assert detail.json()["data"]["messages"] == []

        deleted = client.delete(f"/conversations/{conversation['id']}")
        assert deleted.json() == {"message": "Conversation deleted"}
        assert client.get(f"/conversations/{conversation['id']}").status_code == 404
        assert client.delete(f"/conversations/{conversation['id']}").status_code == 404


class TestSendMessage:
    """Streaming replies."""

    def test_stream_without_model_configured(self, client):
        """Test the fallback reply stream and the stored rows."""
        conversation = create_conversation(client)

        response = client.post(f"/conversations/{conversation['id']}/messages", json={"content": "Hello Flynn"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert [e["type"] for e in events] == ["text", "done"]
        assert events[0]["content"] == NOT_CONFIGURED_MESSAGE
        assert events[1]["usage"] == {"input": 0, "output": 0}

        messages = client.get(f"/conversations/{conversation['id']}/messages").json()["data"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "Hello Flynn"),
            ("assistant", NOT_CONFIGURED_MESSAGE),
        ]

        detail = client.get(f"/conversations/{conversation['id']}").json()["data"]
        assert detail["title"] == "Hello Flynn"

    def test_message_pagination(self, client):
        """Test limit and offset on the message list."""
        conversation = create_conversation(client)
        client.post(f"/conversations/{conversation['id']}/messages", json={"content": "one"})
        client.post(f"/conversations/{conversation['id']}/messages", json={"content": "two"})

        page = client.get(
            f"/conversations/{conversation['id']}/messages", params={"limit": 2, "offset": 2}
        ).json()["data"]

        assert [m["content"] for m in page] == ["two", NOT_CONFIGURED_MESSAGE]

    def test_send_to_missing_conversation(self, client):
        """Test that unknown conversations return 404."""
        response = client.post("/conversations/nope/messages", json={"content": "hi"})
        assert response.status_code == 404

    def test_empty_content_rejected(self, client):
        """Test that empty messages fail validation."""
        conversation = create_conversation(client)

        response = client.post(f"/conversations/{conversation['id']}/messages", json={"content": ""})

        assert response.status_code == 422


class TestAPIDocumentation:
    """Tests for API documentation endpoints."""

    def test_openapi_json_available(self, client):
        """Test that OpenAPI JSON specification is available."""
        response = client.get("/openapi.json")
        assert response.status_code == 200
        assert "/conversations/{conversation_id}/messages" in response.json()["paths"]

    def test_swagger_ui_available(self, client):
        """Test that Swagger UI is available."""
        response = client.get("/docs")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
