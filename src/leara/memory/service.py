"""Knowledge service: the entry point other subsystems call.

Orchestrates the text interpreter, the relevance ranker and the entity store.
It keeps no copies of stored records; every read goes back to the store.

Composite reads (``search``, ``summarize``) are several independent store
calls. A concurrent writer can land between them, so the result may mix
state from before and after that write.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from leara.memory import interpreter, ranking
from leara.memory.db import ConnectionPool
from leara.memory.errors import ValidationError
from leara.memory.models import (
    Memory,
    MemoryQuery,
    Page,
    SessionContext,
    SessionContextQuery,
    Task,
    TaskQuery,
    TaskStatus,
    as_utc,
    normalize_category,
    normalize_status,
    utcnow,
)
from leara.memory.store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
CATEGORY_CANDIDATES = 10
KEY_CANDIDATES = 5
SUMMARY_MIN_PRIORITY = 4
SUMMARY_MEMORY_LIMIT = 5
PENDING_TASK_LIMIT = 50

EMPTY_SUMMARY = "No recent memories or pending tasks found."


def _check_priority(priority: int | None) -> None:
    if priority is None:
        return
    if isinstance(priority, bool) or not isinstance(priority, int) or not 1 <= priority <= 5:
        raise ValidationError(f"priority must be an integer between 1 and 5, got {priority!r}")


def _check_page(limit: int | None, offset: int) -> None:
    if limit is not None and limit < 0:
        raise ValidationError(f"limit must not be negative, got {limit}")
    if offset < 0:
        raise ValidationError(f"offset must not be negative, got {offset}")


def _require_text(name: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value)


class KnowledgeService:
    """Store, interpret and look up memories, tasks and session context."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    @classmethod
    def open(
        cls, path: Path | str, pool_size: int = 5, pool_timeout: float = 5.0
    ) -> KnowledgeService:
        """Open (creating if needed) the database at ``path``."""
        return cls(EntityStore(ConnectionPool(path, size=pool_size, timeout=pool_timeout)))

    def close(self) -> None:
        self.store.pool.close()

    # ── Memories ─────────────────────────────────────────────

    def store_memory(
        self,
        key: str,
        value: str,
        context: str | None = None,
        priority: int | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> Memory:
        """Upsert a memory by key, inferring category and priority when absent."""
        key = _require_text("key", key).strip()
        value = _require_text("value", value)
        _check_priority(priority)

        now = utcnow()
        inferred = category is None or not category.strip()
        resolved_category = (
            interpreter.categorize(value, context) if inferred else normalize_category(category)
        )
        resolved_priority = (
            priority if priority is not None else interpreter.determine_priority(value, context)
        )

        stamped: dict[str, Any] = dict(metadata or {})
        stamped.update(
            {
                "context": context,
                "auto_categorized": inferred,
                "stored_at": now.isoformat(),
            }
        )

        memory = self.store.upsert_memory(
            Memory(
                key=key,
                value=value,
                category=resolved_category,
                priority=resolved_priority,
                metadata=stamped,
                created_at=now,
                updated_at=now,
                expires_at=as_utc(expires_at) if expires_at else None,
            )
        )
        logger.info(
            "Stored memory: %s (category: %s, priority: %d)",
            key,
            resolved_category,
            resolved_priority,
        )
        return memory

    def get_memory(self, key: str, include_inactive: bool = False) -> Memory | None:
        return self.store.get_memory(key, include_inactive=include_inactive)

    def list_memories(self, query: MemoryQuery | None = None) -> Page[Memory]:
        query = query or MemoryQuery()
        _check_priority(query.priority)
        _check_priority(query.min_priority)
        _check_page(query.limit, query.offset)
        if query.category:
            query = replace(query, category=normalize_category(query.category))
        return self.store.query_memories(query)

    def forget_memory(self, key: str) -> bool:
        """Soft-delete: the row stays but no longer shows up in default reads."""
        forgotten = self.store.deactivate_memory(key)
        if forgotten:
            logger.info("Forgot memory: %s", key)
        return forgotten

    def search(
        self, query: str, limit: int | None = None, now: datetime | None = None
    ) -> list[Memory]:
        """Rank stored memories against free text.

        Candidates come from two independent passes, one by the query's
        inferred category and one per keyword as a key substring. They are
        merged by key (the copy fetched last wins), ranked, and truncated.
        """
        limit = DEFAULT_SEARCH_LIMIT if limit is None else limit
        if limit <= 0 or not query.strip():
            return []

        candidates: dict[str, Memory] = {}

        by_category = self.store.query_memories(
            MemoryQuery(category=interpreter.categorize(query), limit=CATEGORY_CANDIDATES),
            now,
        )
        for memory in by_category:
            candidates[memory.key] = memory

        for keyword in interpreter.extract_keywords(query):
            by_key = self.store.query_memories(MemoryQuery(key=keyword, limit=KEY_CANDIDATES), now)
            for memory in by_key:
                candidates[memory.key] = memory

        ranked = ranking.rank(candidates.values(), query, now)
        logger.debug("Search %r: %d candidates", query, len(ranked))
        return [memory for _, memory in ranked[:limit]]

    # ── Tasks ────────────────────────────────────────────────

    def create_task_from_text(
        self, text: str, context: str | None = None, now: datetime | None = None
    ) -> Task:
        """Create a pending task from a natural-language request."""
        text = _require_text("text", text)
        now = as_utc(now) if now else utcnow()
        parsed = interpreter.parse_task_input(text, now)
        task = self.store.insert_task(
            Task(
                title=parsed.title,
                description=parsed.description,
                status=TaskStatus.PENDING.value,
                priority=parsed.priority,
                due_date=parsed.due_date,
                created_at=now,
                updated_at=now,
                context=context,
                tags=interpreter.extract_tags(text),
            )
        )
        logger.info(
            "Created task: %s (priority: %d, due: %s)",
            task.title,
            task.priority,
            task.due_date.isoformat() if task.due_date else None,
        )
        return task

    def create_task(
        self,
        title: str,
        description: str | None = None,
        priority: int | None = None,
        due_date: datetime | None = None,
        context: str | None = None,
        tags: str | None = None,
    ) -> Task:
        """Create a pending task from already-structured fields."""
        title = _require_text("title", title).strip()
        _check_priority(priority)
        now = utcnow()
        task = self.store.insert_task(
            Task(
                title=title,
                description=description,
                priority=priority if priority is not None else interpreter.DEFAULT_PRIORITY,
                due_date=as_utc(due_date) if due_date else None,
                created_at=now,
                updated_at=now,
                context=context,
                tags=tags,
            )
        )
        logger.info("Created task: %s (priority: %d)", task.title, task.priority)
        return task

    def get_task(self, task_id: int) -> Task | None:
        return self.store.get_task(task_id)

    def list_tasks(self, query: TaskQuery | None = None) -> Page[Task]:
        query = query or TaskQuery()
        _check_priority(query.priority)
        _check_page(query.limit, query.offset)
        if query.status:
            query = replace(query, status=normalize_status(query.status))
        return self.store.query_tasks(query)

    def update_task_status(self, task_id: int, status: str | None) -> Task | None:
        """Set a task's status. No transition rules; returns None if unknown."""
        status = normalize_status(_require_text("status", status))
        if not self.store.update_task_status(task_id, status):
            return None
        logger.info("Task %d -> %s", task_id, status)
        return self.store.get_task(task_id)

    def get_pending_tasks(self, include_overdue: bool = True) -> list[Task]:
        tasks = self.store.query_tasks(
            TaskQuery(status=TaskStatus.PENDING.value, limit=PENDING_TASK_LIMIT)
        ).items
        if include_overdue:
            return tasks
        now = utcnow()
        return [t for t in tasks if not t.is_overdue(now)]

    # ── Summary ──────────────────────────────────────────────

    def summarize(self, now: datetime | None = None) -> str:
        """Human-readable digest of important memories and pending tasks."""
        now = as_utc(now) if now else utcnow()
        lines: list[str] = []

        memories = self.store.query_memories(
            MemoryQuery(min_priority=SUMMARY_MIN_PRIORITY, limit=SUMMARY_MEMORY_LIMIT), now
        ).items
        if memories:
            lines.append("Recent important memories:")
            lines.extend(f"- {m.key}: {m.value}" for m in memories)
            lines.append("")

        tasks = self.get_pending_tasks(include_overdue=True)
        if tasks:
            lines.append("Pending tasks:")
            for task in tasks:
                due = ""
                if task.due_date:
                    due = f" (due: {task.due_date:%Y-%m-%d}"
                    due += ", overdue)" if task.is_overdue(now) else ")"
                lines.append(f"- {task.title} [Priority: {task.priority}]{due}")

        if not lines:
            return EMPTY_SUMMARY
        return "\n".join(lines).rstrip() + "\n"

    # ── Session context ──────────────────────────────────────

    def put_session_context(self, session_id: str, key: str, value: str) -> SessionContext:
        session_id = _require_text("session_id", session_id)
        key = _require_text("context_key", key)
        if value is None:
            raise ValidationError("context_value is required")
        now = utcnow()
        ctx = self.store.upsert_session_context(
            SessionContext(
                session_id=session_id,
                context_key=key,
                context_value=str(value),
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Stored session context: %s/%s", session_id, key)
        return ctx

    def get_session_context(self, session_id: str) -> list[SessionContext]:
        return self.store.query_session_contexts(
            SessionContextQuery(session_id=session_id)
        ).items

    def get_session_value(self, session_id: str, key: str) -> str | None:
        page = self.store.query_session_contexts(
            SessionContextQuery(session_id=session_id, context_key=key, limit=1)
        )
        return page.items[0].context_value if page.items else None

    def clear_session_context(self, session_id: str) -> int:
        removed = self.store.delete_session_contexts(session_id)
        if removed:
            logger.info("Cleared %d context entries for session %s", removed, session_id)
        return removed
