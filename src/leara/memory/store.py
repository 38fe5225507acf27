"""Entity store: typed CRUD and upserts over the memory, tasks and
session_context tables.

Each method checks a single connection out of the pool, runs its
statement(s) and hands the connection back. Nothing here spans a
transaction; a write to an existing key or id simply replaces what was there.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from leara.memory import query
from leara.memory.db import (
    ConnectionPool,
    decode_json,
    decode_optional_ts,
    decode_ts,
    encode_json,
    encode_ts,
    initialize_schema,
)
from leara.memory.models import (
    Memory,
    MemoryQuery,
    Page,
    SessionContext,
    SessionContextQuery,
    Task,
    TaskQuery,
    TaskStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

MEMORY_ORDER = "priority DESC, updated_at DESC"
TASK_ORDER = "priority DESC, created_at DESC"
SESSION_ORDER = "updated_at DESC"


class EntityStore:
    """Persistence for Memory, Task and SessionContext records."""

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool
        initialize_schema(pool)

    # ── Row mapping ──────────────────────────────────────────

    @staticmethod
    def _memory_from_row(row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            key=row["key"],
            value=row["value"],
            category=row["category"],
            priority=row["priority"],
            metadata=decode_json(row["metadata"]),
            created_at=decode_ts(row["created_at"], "memory.created_at"),
            updated_at=decode_ts(row["updated_at"], "memory.updated_at"),
            expires_at=decode_optional_ts(row["expires_at"], "memory.expires_at"),
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _task_from_row(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            due_date=decode_optional_ts(row["due_date"], "tasks.due_date"),
            created_at=decode_ts(row["created_at"], "tasks.created_at"),
            updated_at=decode_ts(row["updated_at"], "tasks.updated_at"),
            completed_at=decode_optional_ts(row["completed_at"], "tasks.completed_at"),
            context=row["context"],
            tags=row["tags"],
        )

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> SessionContext:
        return SessionContext(
            id=row["id"],
            session_id=row["session_id"],
            context_key=row["context_key"],
            context_value=row["context_value"],
            created_at=decode_ts(row["created_at"], "session_context.created_at"),
            updated_at=decode_ts(row["updated_at"], "session_context.updated_at"),
        )

    # ── Filters ──────────────────────────────────────────────

    @staticmethod
    def memory_filter(q: MemoryQuery, now: datetime | None = None) -> query.Filter:
        flt = (
            query.Filter("memory")
            .where("key", "contains", q.key)
            .where("category", "=", q.category)
            .where("priority", "=", q.priority)
            .where("priority", ">=", q.min_priority)
        )
        if not q.include_inactive:
            flt.require("is_active", "=", 1)
        if not q.include_expired:
            flt.require("expires_at", "null_or_gte", encode_ts(now or utcnow()))
        return flt

    @staticmethod
    def task_filter(q: TaskQuery) -> query.Filter:
        flt = (
            query.Filter("tasks")
            .where("status", "=", q.status)
            .where("priority", "=", q.priority)
            .where("due_date", "<", encode_ts(q.due_before))
            .where("tags", "contains", q.tag)
        )
        if not q.include_completed:
            flt.require("status", "!=", TaskStatus.COMPLETED.value)
        return flt

    @staticmethod
    def session_filter(q: SessionContextQuery) -> query.Filter:
        return (
            query.Filter("session_context")
            .where("session_id", "=", q.session_id)
            .where("context_key", "=", q.context_key)
        )

    # ── Memory ───────────────────────────────────────────────

    def upsert_memory(self, memory: Memory) -> Memory:
        """Insert a memory, or replace the one already stored under its key.

        The existing row keeps its id and created_at.
        """
        with self.pool.connection() as conn:
            conn.execute(
                """
                INSERT INTO memory
                    (key, value, category, priority, metadata,
                     created_at, updated_at, expires_at, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    category = excluded.category,
                    priority = excluded.priority,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at,
                    expires_at = excluded.expires_at,
                    is_active = excluded.is_active
                """,
                (
                    memory.key,
                    memory.value,
                    memory.category,
                    memory.priority,
                    encode_json(memory.metadata),
                    encode_ts(memory.created_at),
                    encode_ts(memory.updated_at),
                    encode_ts(memory.expires_at),
                    int(memory.is_active),
                ),
            )
            row = conn.execute(
                "SELECT id, created_at FROM memory WHERE key = ?", (memory.key,)
            ).fetchone()
        memory.id = row["id"]
        memory.created_at = decode_ts(row["created_at"], "memory.created_at")
        logger.debug("Upserted memory %s (id=%d)", memory.key, memory.id)
        return memory

    def get_memory(
        self,
        key: str,
        include_inactive: bool = False,
        include_expired: bool = False,
        now: datetime | None = None,
    ) -> Memory | None:
        """Exact-key lookup, honouring the same default visibility as queries."""
        flt = self.memory_filter(
            MemoryQuery(include_expired=include_expired, include_inactive=include_inactive),
            now,
        ).require("key", "=", key)
        with self.pool.connection() as conn:
            rows = query.fetch_page(conn, flt, MEMORY_ORDER, limit=1)
        return self._memory_from_row(rows[0]) if rows else None

    def query_memories(self, q: MemoryQuery, now: datetime | None = None) -> Page[Memory]:
        flt = self.memory_filter(q, now)
        with self.pool.connection() as conn:
            rows, total = query.fetch_with_total(conn, flt, MEMORY_ORDER, q.limit, q.offset)
        return Page([self._memory_from_row(r) for r in rows], total)

    def count_memories(self, q: MemoryQuery, now: datetime | None = None) -> int:
        with self.pool.connection() as conn:
            return query.count(conn, self.memory_filter(q, now))

    def deactivate_memory(self, key: str) -> bool:
        with self.pool.connection() as conn:
            cur = conn.execute(
                "UPDATE memory SET is_active = 0, updated_at = ? WHERE key = ? AND is_active = 1",
                (encode_ts(utcnow()), key),
            )
        return cur.rowcount > 0

    def delete_memory(self, key: str) -> bool:
        with self.pool.connection() as conn:
            cur = conn.execute("DELETE FROM memory WHERE key = ?", (key,))
        return cur.rowcount > 0

    # ── Tasks ────────────────────────────────────────────────

    def insert_task(self, task: Task) -> Task:
        with self.pool.connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO tasks
                    (title, description, status, priority, due_date,
                     created_at, updated_at, completed_at, context, tags)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.title,
                    task.description,
                    task.status,
                    task.priority,
                    encode_ts(task.due_date),
                    encode_ts(task.created_at),
                    encode_ts(task.updated_at),
                    encode_ts(task.completed_at),
                    task.context,
                    task.tags,
                ),
            )
        task.id = cur.lastrowid
        logger.debug("Inserted task %d: %s", task.id, task.title)
        return task

    def get_task(self, task_id: int) -> Task | None:
        flt = query.Filter("tasks").require("id", "=", task_id)
        with self.pool.connection() as conn:
            rows = query.fetch_page(conn, flt, TASK_ORDER, limit=1)
        return self._task_from_row(rows[0]) if rows else None

    def query_tasks(self, q: TaskQuery) -> Page[Task]:
        flt = self.task_filter(q)
        with self.pool.connection() as conn:
            rows, total = query.fetch_with_total(conn, flt, TASK_ORDER, q.limit, q.offset)
        return Page([self._task_from_row(r) for r in rows], total)

    def count_tasks(self, q: TaskQuery) -> int:
        with self.pool.connection() as conn:
            return query.count(conn, self.task_filter(q))

    def update_task_status(
        self, task_id: int, status: str, now: datetime | None = None
    ) -> bool:
        """Overwrite a task's status. completed_at follows the new status."""
        now = now or utcnow()
        completed_at = encode_ts(now) if status == TaskStatus.COMPLETED.value else None
        with self.pool.connection() as conn:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?",
                (status, completed_at, encode_ts(now), task_id),
            )
        return cur.rowcount > 0

    def delete_task(self, task_id: int) -> bool:
        with self.pool.connection() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cur.rowcount > 0

    # ── Session context ──────────────────────────────────────

    def upsert_session_context(self, ctx: SessionContext) -> SessionContext:
        with self.pool.connection() as conn:
            conn.execute(
                """
                INSERT INTO session_context
                    (session_id, context_key, context_value, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id, context_key) DO UPDATE SET
                    context_value = excluded.context_value,
                    updated_at = excluded.updated_at
                """,
                (
                    ctx.session_id,
                    ctx.context_key,
                    ctx.context_value,
                    encode_ts(ctx.created_at),
                    encode_ts(ctx.updated_at),
                ),
            )
            row = conn.execute(
                "SELECT id, created_at FROM session_context"
                " WHERE session_id = ? AND context_key = ?",
                (ctx.session_id, ctx.context_key),
            ).fetchone()
        ctx.id = row["id"]
        ctx.created_at = decode_ts(row["created_at"], "session_context.created_at")
        return ctx

    def query_session_contexts(self, q: SessionContextQuery) -> Page[SessionContext]:
        flt = self.session_filter(q)
        with self.pool.connection() as conn:
            rows, total = query.fetch_with_total(conn, flt, SESSION_ORDER, q.limit, q.offset)
        return Page([self._session_from_row(r) for r in rows], total)

    def delete_session_contexts(self, session_id: str) -> int:
        with self.pool.connection() as conn:
            cur = conn.execute("DELETE FROM session_context WHERE session_id = ?", (session_id,))
        return cur.rowcount

    # ── Health ───────────────────────────────────────────────

    def ping(self) -> bool:
        with self.pool.connection() as conn:
            conn.execute("SELECT 1").fetchone()
        return True
