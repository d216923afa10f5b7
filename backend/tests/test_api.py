"""
HTTP-level tests for the FastAPI app.

The app is built with create_app() on the test engine and the scripted
vendor transport; its lifespan runs for each test so app.state is wired
exactly as in production.
"""

import uuid

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import GEMINI_KEY, OPENAI_KEY, openai_reply, vendor_error
from studyvault.config import settings
from studyvault.main import create_app

HEADERS = {"X-User-ID": "user-123"}


@pytest_asyncio.fixture
async def app(engine, session_factory, vendor):
    application = create_app(
        engine=engine,
        session_factory=session_factory,
        transport=httpx.MockTransport(vendor),
    )
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client


async def _activate_openai(client: AsyncClient) -> None:
    response = await client.put(
        "/api/ai/configs",
        json={"provider": "openai", "api_key": OPENAI_KEY, "model": "gpt-4o-mini", "is_active": True},
        headers=HEADERS,
    )
    assert response.status_code == 200


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["providers"] == ["openai", "gemini", "anthropic"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, client):
        response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8


class TestConfigs:
    @pytest.mark.asyncio
    async def test_owner_header_required(self, client):
        response = await client.get("/api/ai/configs")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_save_activate_and_list(self, client):
        save = await client.put(
            "/api/ai/configs",
            json={"provider": "gemini", "api_key": GEMINI_KEY},
            headers=HEADERS,
        )
        assert save.status_code == 200
        saved = save.json()
        assert saved["config"]["model"] == "gemini-1.5-flash"
        assert saved["config"]["is_active"] is False
        assert saved["config"]["api_key_masked"] == f"{GEMINI_KEY[:4]}...{GEMINI_KEY[-4:]}"
        assert saved["warnings"] == ["No model specified, using default: gemini-1.5-flash"]

        activate = await client.post("/api/ai/configs/gemini/activate", headers=HEADERS)
        assert activate.status_code == 200
        assert activate.json()["is_active"] is True

        listing = await client.get("/api/ai/configs", headers=HEADERS)
        assert [c["provider"] for c in listing.json()] == ["gemini"]
        assert GEMINI_KEY not in listing.text

    @pytest.mark.asyncio
    async def test_unsupported_provider_rejected(self, client):
        response = await client.put(
            "/api/ai/configs",
            json={"provider": "mistral", "api_key": "abc"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Unsupported AI provider: mistral"

    @pytest.mark.asyncio
    async def test_activate_without_stored_config(self, client):
        response = await client.post("/api/ai/configs/anthropic/activate", headers=HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_probe_key(self, client, vendor):
        vendor.queue(httpx.Response(200, json={"data": []}))

        response = await client.post(
            "/api/ai/configs/test",
            json={"provider": "openai", "api_key": OPENAI_KEY},
            headers=HEADERS,
        )

        assert response.json() == {"provider": "openai", "valid": True}

    @pytest.mark.asyncio
    async def test_capabilities(self, client):
        response = await client.get("/api/ai/capabilities")

        body = response.json()
        assert set(body) == {"openai", "gemini", "anthropic"}
        assert body["anthropic"]["max_context_tokens"] == 200000


class TestGeneration:
    @pytest.mark.asyncio
    async def test_generate_without_config(self, client, vendor):
        response = await client.post("/api/ai/generate", json={"prompt": "Hello"}, headers=HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "no_credential"
        assert body["requires_config"] is True
        assert vendor.calls == 0

    @pytest.mark.asyncio
    async def test_generate(self, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply("Hi there"))

        response = await client.post("/api/ai/generate", json={"prompt": "Hello"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["content"] == "Hi there"
        assert response.json()["usage"]["total_tokens"] == 20

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_429(self, client, vendor):
        await _activate_openai(client)
        vendor.default = vendor_error(429, "Rate limit reached")

        response = await client.post("/api/ai/generate", json={"prompt": "Hello"}, headers=HEADERS)

        assert response.status_code == 429
        assert response.json()["message"] == "Rate limit reached"

    @pytest.mark.asyncio
    async def test_enhancement_failure_is_a_200_result(self, client, vendor):
        await _activate_openai(client)
        vendor.default = vendor_error(500)

        response = await client.post("/api/ai/summary", json={"content": "notes"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_enhance_note(self, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply('{"keyPoints": ["Cells"], "categories": ["Biology"]}'))

        response = await client.post(
            "/api/ai/enhance",
            json={"content": "notes", "enhancement_type": "key_points"},
            headers=HEADERS,
        )

        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"keyPoints": ["Cells"], "categories": ["Biology"]}
        assert body["metadata"]["degraded"] is False

    @pytest.mark.asyncio
    async def test_usage(self, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply("ok"))
        await client.post("/api/ai/generate", json={"prompt": "Hello"}, headers=HEADERS)

        response = await client.get("/api/ai/usage?days=7", headers=HEADERS)

        assert response.json()["operation_counts"] == {"text_generation": 1}


class TestChat:
    @pytest.mark.asyncio
    async def test_send_read_and_close(self, app, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply("Hello, student!"))

        sent = await client.post("/api/chat/messages", json={"message": "Hi"}, headers=HEADERS)

        assert sent.status_code == 200
        body = sent.json()
        assert body["state"] == "idle"
        assert [m["content"] for m in body["messages"]] == ["Hi", "Hello, student!"]
        session_id = body["session_id"]

        listed = await client.get(f"/api/chat/sessions/{session_id}/messages", headers=HEADERS)
        assert [m["role"] for m in listed.json()] == ["user", "assistant"]
        assert uuid.UUID(session_id) in app.state.chat_controllers

        closed = await client.delete(f"/api/chat/sessions/{session_id}", headers=HEADERS)
        assert closed.json() == {"session_id": session_id, "deleted": False}
        assert uuid.UUID(session_id) not in app.state.chat_controllers

    @pytest.mark.asyncio
    async def test_send_without_config(self, client):
        response = await client.post("/api/chat/messages", json={"message": "Hi"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["requires_config"] is True

    @pytest.mark.asyncio
    async def test_other_owner_cannot_read_session(self, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply("Hello"))
        sent = await client.post("/api/chat/messages", json={"message": "Hi"}, headers=HEADERS)
        session_id = sent.json()["session_id"]

        response = await client.get(
            f"/api/chat/sessions/{session_id}/messages",
            headers={"X-User-ID": "someone-else"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, client, vendor):
        await _activate_openai(client)
        vendor.queue(openai_reply("Hello"))
        first = await client.post("/api/chat/messages", json={"message": "Hi"}, headers=HEADERS)
        session_id = first.json()["session_id"]

        vendor.default = vendor_error(503)
        failed = await client.post(
            "/api/chat/messages",
            json={"message": "Still there?", "session_id": session_id},
            headers=HEADERS,
        )
        assert failed.status_code == 503

        vendor.queue(openai_reply("Yes!"))
        retried = await client.post(f"/api/chat/sessions/{session_id}/retry", headers=HEADERS)

        assert retried.status_code == 200
        body = retried.json()
        assert body["state"] == "idle"
        assert [m["content"] for m in body["messages"]] == ["Hi", "Hello", "Still there?", "Yes!"]

    @pytest.mark.asyncio
    async def test_cleanup_endpoint(self, client):
        response = await client.post("/api/chat/sessions/cleanup", headers=HEADERS)
        assert response.json() == {"deleted": 0}

    @pytest.mark.asyncio
    async def test_cleanup_releases_controllers_of_deleted_sessions(self, app, client, monkeypatch):
        session = await app.state.store.create_session("user-123", "openai", "gpt-4o-mini")
        listed = await client.get(f"/api/chat/sessions/{session.id}/messages", headers=HEADERS)
        assert listed.json() == []
        assert session.id in app.state.chat_controllers

        monkeypatch.setattr(settings, "session_cleanup_min_age", 0)
        response = await client.post("/api/chat/sessions/cleanup", headers=HEADERS)

        assert response.json() == {"deleted": 1}
        assert session.id not in app.state.chat_controllers
        assert len(app.state.chat_controllers) == 0
