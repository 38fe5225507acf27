"""Tests for the HTTP API connector."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from leara.config import ServerConfig
from leara.connectors.base import IncomingMessage
from leara.connectors.http import HTTPConnector
from leara.engines.base import AgentResponse
from leara.memory.errors import StoreError, StoreUnavailableError, ValidationError
from leara.memory.service import KnowledgeService

received: list[IncomingMessage] = []


async def _echo(msg: IncomingMessage) -> AgentResponse:
    received.append(msg)
    return AgentResponse(text=f"echo: {msg.text}")


async def _healthy() -> bool:
    return True


@pytest.fixture
def service(tmp_path: Path):
    svc = KnowledgeService.open(tmp_path / "leara.db")
    yield svc
    svc.close()


@pytest_asyncio.fixture
async def client(service: KnowledgeService):
    received.clear()
    connector = HTTPConnector(ServerConfig(), service, engine_health=_healthy)
    async with TestClient(TestServer(connector.build_app(_echo))) as c:
        yield c


class TestHealthAndChat:
    @pytest.mark.asyncio
    async def test_health(self, client: TestClient):
        resp = await client.get("/api/health")
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "healthy"
        assert body["database"] is True
        assert body["engine"] is True

    @pytest.mark.asyncio
    async def test_chat(self, client: TestClient):
        resp = await client.post("/api/chat", json={"message": "hi", "conversation_id": "c1"})
        assert resp.status == 200
        body = await resp.json()
        assert body["message"] == "echo: hi"
        assert body["conversation_id"] == "c1"
        assert "timestamp" in body
        assert received[-1].chat_id == "c1"
        assert received[-1].connector_name == "http"

    @pytest.mark.asyncio
    async def test_chat_assigns_conversation_id(self, client: TestClient):
        resp = await client.post("/api/chat", json={"message": "hi"})
        body = await resp.json()
        assert body["conversation_id"]

    @pytest.mark.asyncio
    async def test_chat_requires_message(self, client: TestClient):
        resp = await client.post("/api/chat", json={"message": "  "})
        assert resp.status == 400
        assert "message" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: TestClient):
        resp = await client.post(
            "/api/chat", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400


class TestMemoryRoutes:
    @pytest.mark.asyncio
    async def test_store_and_get(self, client: TestClient):
        resp = await client.post(
            "/api/memory",
            json={"key": "editor", "value": "prefers vim", "priority": 4, "metadata": {"a": 1}},
        )
        assert resp.status == 201
        created = await resp.json()
        assert created["key"] == "editor"
        assert created["priority"] == 4

        resp = await client.get("/api/memory/editor")
        assert resp.status == 200
        assert (await resp.json())["value"] == "prefers vim"

    @pytest.mark.asyncio
    async def test_get_missing(self, client: TestClient):
        resp = await client.get("/api/memory/nope")
        assert resp.status == 404
        assert "error" in await resp.json()

    @pytest.mark.asyncio
    async def test_store_validation(self, client: TestClient):
        resp = await client.post("/api/memory", json={"key": "k", "value": "v", "priority": 9})
        assert resp.status == 400
        resp = await client.post("/api/memory", json={"key": "k"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_list_with_filters(self, client: TestClient, service: KnowledgeService):
        service.store_memory("a", "one", category="project", priority=5)
        service.store_memory("b", "two", category="general", priority=2)
        service.store_memory("c", "three", category="project", priority=3)

        resp = await client.get("/api/memory", params={"category": "project", "limit": "1"})
        body = await resp.json()
        assert body["total"] == 2
        assert [m["key"] for m in body["memories"]] == ["a"]

        resp = await client.get("/api/memory", params={"min_priority": "3"})
        assert (await resp.json())["total"] == 2

    @pytest.mark.asyncio
    async def test_list_bad_param(self, client: TestClient):
        resp = await client.get("/api/memory", params={"limit": "many"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_negative_paging_rejected(self, client: TestClient):
        for params in ({"limit": "-1"}, {"offset": "-5"}):
            resp = await client.get("/api/memory", params=params)
            assert resp.status == 400
            assert "at least 0" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_zero_limit_returns_total_only(self, client: TestClient, service: KnowledgeService):
        service.store_memory("a", "alpha")
        resp = await client.get("/api/memory", params={"limit": "0"})
        body = await resp.json()
        assert body["memories"] == []
        assert body["total"] == 1

    @pytest.mark.asyncio
    async def test_search(self, client: TestClient, service: KnowledgeService):
        service.store_memory("system.rs_changes", "Changed system.rs to fix a leak", priority=4)
        service.store_memory("weather", "sunny", category="general")
        resp = await client.get("/api/memory/search", params={"q": "urgent system.rs fix", "limit": "3"})
        assert resp.status == 200
        memories = (await resp.json())["memories"]
        assert memories[0]["key"] == "system.rs_changes"
        assert len(memories) <= 3

    @pytest.mark.asyncio
    async def test_search_requires_query(self, client: TestClient):
        resp = await client.get("/api/memory/search")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_summary(self, client: TestClient):
        resp = await client.get("/api/memory/summary")
        assert (await resp.json())["summary"] == "No recent memories or pending tasks found."

    @pytest.mark.asyncio
    async def test_delete(self, client: TestClient, service: KnowledgeService):
        service.store_memory("k", "v")
        resp = await client.delete("/api/memory/k")
        assert resp.status == 200
        assert (await resp.json())["success"] is True
        resp = await client.delete("/api/memory/k")
        assert resp.status == 404


class TestTaskRoutes:
    @pytest.mark.asyncio
    async def test_create_from_text(self, client: TestClient):
        resp = await client.post("/api/tasks", json={"text": "urgent fix the build tomorrow"})
        assert resp.status == 201
        task = await resp.json()
        assert task["title"] == "fix the build"
        assert task["priority"] == 5
        assert task["due_date"] is not None

    @pytest.mark.asyncio
    async def test_create_structured_and_get(self, client: TestClient):
        resp = await client.post(
            "/api/tasks",
            json={"title": "Pay rent", "priority": 4, "due_date": "2030-01-01T09:00:00Z"},
        )
        assert resp.status == 201
        task = await resp.json()
        assert task["due_date"].startswith("2030-01-01T09:00:00")

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert (await resp.json())["title"] == "Pay rent"

    @pytest.mark.asyncio
    async def test_create_requires_title(self, client: TestClient):
        resp = await client.post("/api/tasks", json={"priority": 2})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_bad_due_date(self, client: TestClient):
        resp = await client.post("/api/tasks", json={"title": "x", "due_date": "someday"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_status_update(self, client: TestClient, service: KnowledgeService):
        task = service.create_task("Ship it")
        resp = await client.patch(f"/api/tasks/{task.id}/status", json={"status": "completed"})
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "completed"
        assert body["completed_at"] is not None

        resp = await client.get("/api/tasks")
        assert (await resp.json())["total"] == 0
        resp = await client.get("/api/tasks", params={"include_completed": "true"})
        assert (await resp.json())["total"] == 1

    @pytest.mark.asyncio
    async def test_status_update_missing_status(self, client: TestClient, service: KnowledgeService):
        task = service.create_task("Ship it")
        resp = await client.patch(f"/api/tasks/{task.id}/status", json={})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_status_update_unknown_task(self, client: TestClient):
        resp = await client.patch("/api/tasks/999/status", json={"status": "completed"})
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_non_numeric_id(self, client: TestClient):
        resp = await client.get("/api/tasks/abc")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_negative_limit_rejected(self, client: TestClient):
        resp = await client.get("/api/tasks", params={"limit": "-1"})
        assert resp.status == 400

    def test_missing_task_id_is_validation_error(self, service: KnowledgeService):
        connector = HTTPConnector(ServerConfig(), service)
        with pytest.raises(ValidationError, match="task_id is required"):
            connector._task_id(make_mocked_request("GET", "/api/tasks/"))


class TestSessionRoutes:
    @pytest.mark.asyncio
    async def test_put_get_delete(self, client: TestClient):
        resp = await client.put("/api/sessions/s1/context", json={"key": "topic", "value": "taxes"})
        assert resp.status == 200
        assert (await resp.json())["context_value"] == "taxes"

        resp = await client.get("/api/sessions/s1/context")
        contexts = (await resp.json())["contexts"]
        assert [(c["context_key"], c["context_value"]) for c in contexts] == [("topic", "taxes")]

        resp = await client.delete("/api/sessions/s1/context")
        assert (await resp.json())["removed"] == 1


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_store_unavailable_is_503(self, client: TestClient, service: KnowledgeService):
        with patch.object(service, "summarize", side_effect=StoreUnavailableError("pool exhausted")):
            resp = await client.get("/api/memory/summary")
        assert resp.status == 503
        assert (await resp.json())["error"] == "pool exhausted"

    @pytest.mark.asyncio
    async def test_store_error_is_500(self, client: TestClient, service: KnowledgeService):
        with patch.object(service, "summarize", side_effect=StoreError("disk I/O error")):
            resp = await client.get("/api/memory/summary")
        assert resp.status == 500
        assert "error" in await resp.json()

    @pytest.mark.asyncio
    async def test_health_degraded_when_store_down(self, client: TestClient, service: KnowledgeService):
        with patch.object(service.store, "ping", side_effect=StoreUnavailableError("closed")):
            resp = await client.get("/api/health")
        assert resp.status == 503
        assert (await resp.json())["status"] == "degraded"
