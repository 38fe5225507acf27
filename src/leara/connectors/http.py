"""HTTP JSON API connector.

Serves the chat endpoint plus CRUD/search endpoints over the knowledge
service. Handlers only translate between JSON and typed service calls; the
service itself runs on worker threads so a slow query never blocks the loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from aiohttp import web

from leara.connectors.base import IncomingMessage
from leara.memory.errors import StoreError, StoreUnavailableError, ValidationError
from leara.memory.models import MemoryQuery, TaskQuery, utcnow

if TYPE_CHECKING:
    from leara.config import ServerConfig
    from leara.connectors.base import MessageHandler
    from leara.memory.service import KnowledgeService

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[bool]]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


# ── Parameter parsing ────────────────────────────────────────


def _parse_int(raw: Any, name: str, minimum: int | None = None) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}, got {value}")
    return value


def _parse_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return False
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(f"{name} must be a boolean, got {raw!r}")


def _parse_datetime(raw: Any, name: str) -> datetime | None:
    if raw is None or raw == "":
        return None
    text = str(raw)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO 8601 timestamp, got {raw!r}") from None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except StoreUnavailableError as e:
        logger.error("Store unavailable for %s %s: %s", request.method, request.path, e)
        return web.json_response({"error": str(e)}, status=503)
    except StoreError as e:
        logger.error("Store failure for %s %s: %s", request.method, request.path, e)
        return web.json_response({"error": "internal store error"}, status=500)


class HTTPConnector:
    """aiohttp server exposing chat and knowledge endpoints under /api."""

    def __init__(
        self,
        config: ServerConfig,
        service: KnowledgeService,
        engine_health: HealthCheck | None = None,
    ) -> None:
        self._config = config
        self._service = service
        self._engine_health = engine_health
        self._handler: MessageHandler | None = None
        self._runner: web.AppRunner | None = None

    @property
    def name(self) -> str:
        return "http"

    # ── Lifecycle ────────────────────────────────────────────

    def build_app(self, handler: MessageHandler | None = None) -> web.Application:
        if handler is not None:
            self._handler = handler
        app = web.Application(middlewares=[error_middleware])
        r = app.router
        r.add_get("/api/health", self._health)
        r.add_post("/api/chat", self._chat)
        r.add_get("/api/memory", self._list_memories)
        r.add_post("/api/memory", self._store_memory)
        r.add_get("/api/memory/search", self._search_memories)
        r.add_get("/api/memory/summary", self._summary)
        r.add_get("/api/memory/{key}", self._get_memory)
        r.add_delete("/api/memory/{key}", self._forget_memory)
        r.add_get("/api/tasks", self._list_tasks)
        r.add_post("/api/tasks", self._create_task)
        r.add_get("/api/tasks/{task_id}", self._get_task)
        r.add_patch("/api/tasks/{task_id}/status", self._update_task_status)
        r.add_get("/api/sessions/{session_id}/context", self._get_session_context)
        r.add_put("/api/sessions/{session_id}/context", self._put_session_context)
        r.add_delete("/api/sessions/{session_id}/context", self._clear_session_context)
        return app

    async def start(self, handler: MessageHandler) -> None:
        app = self.build_app(handler)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        logger.info("HTTP API listening on %s:%d", self._config.host, self._config.port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP API stopped")

    # ── Health & chat ────────────────────────────────────────

    async def _health(self, request: web.Request) -> web.Response:
        try:
            database = await asyncio.to_thread(self._service.store.ping)
        except StoreError as e:
            logger.warning("Health check: database unreachable: %s", e)
            database = False
        engine = await self._engine_health() if self._engine_health else None
        status = "healthy" if database else "degraded"
        return web.json_response(
            {
                "status": status,
                "database": database,
                "engine": engine,
                "timestamp": utcnow().isoformat(),
            },
            status=200 if database else 503,
        )

    async def _chat(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        message = str(body.get("message") or "").strip()
        if not message:
            raise ValidationError("message is required")
        if self._handler is None:
            return web.json_response({"error": "chat handler not attached"}, status=503)
        conversation_id = str(body.get("conversation_id") or uuid.uuid4())
        response = await self._handler(
            IncomingMessage(
                text=message,
                chat_id=conversation_id,
                sender=str(body.get("sender") or "user"),
                connector_name=self.name,
            )
        )
        return web.json_response(
            {
                "message": response.text,
                "conversation_id": conversation_id,
                "timestamp": utcnow().isoformat(),
            }
        )

    # ── Memories ─────────────────────────────────────────────

    async def _list_memories(self, request: web.Request) -> web.Response:
        q = request.query
        query = MemoryQuery(
            key=q.get("key") or None,
            category=q.get("category") or None,
            priority=_parse_int(q.get("priority"), "priority"),
            min_priority=_parse_int(q.get("min_priority"), "min_priority"),
            include_expired=_parse_bool(q.get("include_expired"), "include_expired"),
        )
        limit = _parse_int(q.get("limit"), "limit", minimum=0)
        if limit is not None:
            query.limit = limit
        query.offset = _parse_int(q.get("offset"), "offset", minimum=0) or 0
        page = await asyncio.to_thread(self._service.list_memories, query)
        return web.json_response(
            {"memories": [m.to_dict() for m in page.items], "total": page.total}
        )

    async def _store_memory(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        metadata = body.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be a JSON object")
        memory = await asyncio.to_thread(
            self._service.store_memory,
            body.get("key"),
            body.get("value"),
            context=body.get("context"),
            priority=_parse_int(body.get("priority"), "priority"),
            category=body.get("category"),
            metadata=metadata,
            expires_at=_parse_datetime(body.get("expires_at"), "expires_at"),
        )
        return web.json_response(memory.to_dict(), status=201)

    async def _search_memories(self, request: web.Request) -> web.Response:
        text = request.query.get("q", "")
        if not text.strip():
            raise ValidationError("q is required")
        limit = _parse_int(request.query.get("limit"), "limit")
        memories = await asyncio.to_thread(self._service.search, text, limit)
        return web.json_response({"memories": [m.to_dict() for m in memories]})

    async def _summary(self, request: web.Request) -> web.Response:
        summary = await asyncio.to_thread(self._service.summarize)
        return web.json_response({"summary": summary})

    async def _get_memory(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        memory = await asyncio.to_thread(self._service.get_memory, key)
        if memory is None:
            return web.json_response({"error": f"memory not found: {key}"}, status=404)
        return web.json_response(memory.to_dict())

    async def _forget_memory(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        if not await asyncio.to_thread(self._service.forget_memory, key):
            return web.json_response({"error": f"memory not found: {key}"}, status=404)
        return web.json_response({"success": True, "message": f"Forgot memory: {key}"})

    # ── Tasks ────────────────────────────────────────────────

    async def _list_tasks(self, request: web.Request) -> web.Response:
        q = request.query
        query = TaskQuery(
            status=q.get("status") or None,
            priority=_parse_int(q.get("priority"), "priority"),
            due_before=_parse_datetime(q.get("due_before"), "due_before"),
            tag=q.get("tag") or None,
            include_completed=_parse_bool(q.get("include_completed"), "include_completed"),
        )
        limit = _parse_int(q.get("limit"), "limit", minimum=0)
        if limit is not None:
            query.limit = limit
        query.offset = _parse_int(q.get("offset"), "offset", minimum=0) or 0
        page = await asyncio.to_thread(self._service.list_tasks, query)
        return web.json_response({"tasks": [t.to_dict() for t in page.items], "total": page.total})

    async def _create_task(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        if body.get("text"):
            task = await asyncio.to_thread(
                self._service.create_task_from_text, body["text"], body.get("context")
            )
        else:
            task = await asyncio.to_thread(
                self._service.create_task,
                body.get("title"),
                description=body.get("description"),
                priority=_parse_int(body.get("priority"), "priority"),
                due_date=_parse_datetime(body.get("due_date"), "due_date"),
                context=body.get("context"),
                tags=body.get("tags"),
            )
        return web.json_response(task.to_dict(), status=201)

    def _task_id(self, request: web.Request) -> int:
        task_id = _parse_int(request.match_info.get("task_id"), "task_id")
        if task_id is None:
            raise ValidationError("task_id is required")
        return task_id

    async def _get_task(self, request: web.Request) -> web.Response:
        task_id = self._task_id(request)
        task = await asyncio.to_thread(self._service.get_task, task_id)
        if task is None:
            return web.json_response({"error": f"task not found: {task_id}"}, status=404)
        return web.json_response(task.to_dict())

    async def _update_task_status(self, request: web.Request) -> web.Response:
        task_id = self._task_id(request)
        body = await _json_body(request)
        task = await asyncio.to_thread(
            self._service.update_task_status, task_id, body.get("status")
        )
        if task is None:
            return web.json_response({"error": f"task not found: {task_id}"}, status=404)
        return web.json_response(task.to_dict())

    # ── Session context ──────────────────────────────────────

    async def _get_session_context(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        contexts = await asyncio.to_thread(self._service.get_session_context, session_id)
        return web.json_response({"contexts": [c.to_dict() for c in contexts]})

    async def _put_session_context(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        body = await _json_body(request)
        ctx = await asyncio.to_thread(
            self._service.put_session_context,
            session_id,
            body.get("key"),
            body.get("value"),
        )
        return web.json_response(ctx.to_dict())

    async def _clear_session_context(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        removed = await asyncio.to_thread(self._service.clear_session_context, session_id)
        return web.json_response({"removed": removed})
