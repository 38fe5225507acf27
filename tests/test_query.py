"""Tests for the filter-predicate builder and paging."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from leara.memory import query
from leara.memory.db import ConnectionPool
from leara.memory.models import Memory, MemoryQuery, Task, TaskQuery
from leara.memory.store import MEMORY_ORDER, TASK_ORDER, EntityStore

BASE = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path: Path):
    pool = ConnectionPool(tmp_path / "leara.db")
    s = EntityStore(pool)
    for i in range(7):
        s.upsert_memory(
            Memory(
                key=f"note_{i}",
                value=f"value {i}",
                category="project" if i % 2 else "general",
                priority=(i % 3) + 2,
                created_at=BASE,
                updated_at=BASE + timedelta(minutes=i),
            )
        )
    yield s
    pool.close()


class TestRender:
    def test_empty_filter(self):
        assert query.Filter("memory").render() == ("", [])

    def test_where_skips_none(self):
        flt = query.Filter("memory").where("category", "=", None).where("priority", ">=", 4)
        assert flt.render() == ("WHERE priority >= ?", [4])

    def test_contains_escapes_wildcards(self):
        flt = query.Filter("memory").require("key", "contains", "50%_off")
        assert flt.render() == ("WHERE key LIKE ? ESCAPE '\\'", ["%50\\%\\_off%"])

    def test_null_or_gte(self):
        flt = query.Filter("memory").require("expires_at", "null_or_gte", "2024")
        assert flt.render() == ("WHERE (expires_at IS NULL OR expires_at >= ?)", ["2024"])

    def test_unknown_column_rejected(self):
        with pytest.raises(ValueError, match="Unknown column"):
            query.Filter("memory").require("title", "=", "x")

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError, match="Unsupported operator"):
            query.Filter("tasks").require("title", "~", "x")

    def test_unknown_table_rejected(self):
        with pytest.raises(ValueError, match="Unknown table"):
            query.Filter("users")


class TestPaging:
    def test_count_matches_full_fetch(self, store: EntityStore):
        for q in [MemoryQuery(), MemoryQuery(category="project"), MemoryQuery(min_priority=3)]:
            flt = store.memory_filter(q)
            with store.pool.connection() as conn:
                rows = query.fetch_page(conn, flt, MEMORY_ORDER, limit=None)
                assert query.count(conn, flt) == len(rows)

    def test_task_count_matches_full_fetch(self, store: EntityStore):
        for i in range(6):
            task = store.insert_task(
                Task(
                    title=f"task {i}",
                    priority=(i % 3) + 1,
                    due_date=BASE + timedelta(days=i),
                    tags="rust" if i % 2 else None,
                )
            )
            if i == 5:
                store.update_task_status(task.id, "completed")

        for q in [
            TaskQuery(),
            TaskQuery(include_completed=True),
            TaskQuery(tag="rust"),
            TaskQuery(due_before=BASE + timedelta(days=3)),
            TaskQuery(priority=2, include_completed=True),
        ]:
            flt = store.task_filter(q)
            with store.pool.connection() as conn:
                rows = query.fetch_page(conn, flt, TASK_ORDER, limit=None)
                assert query.count(conn, flt) == len(rows)
            assert store.query_tasks(q).total == len(rows)

    def test_pages_are_contiguous_slices(self, store: EntityStore):
        everything = store.query_memories(MemoryQuery(limit=None))
        assert everything.total == 7

        keys: list[str] = []
        offset = 0
        while True:
            page = store.query_memories(MemoryQuery(limit=3, offset=offset))
            assert page.total == 7
            if not page.items:
                break
            keys.extend(m.key for m in page)
            offset += 3
        assert keys == [m.key for m in everything]

    def test_ordering_priority_then_recency(self, store: EntityStore):
        items = store.query_memories(MemoryQuery(limit=None)).items
        pairs = [(m.priority, m.updated_at) for m in items]
        assert pairs == sorted(pairs, reverse=True)

    def test_total_ignores_limit(self, store: EntityStore):
        page = store.query_memories(MemoryQuery(category="general", limit=1))
        assert len(page) == 1
        assert page.total == 4
