"""Filter-predicate builder shared by every entity table.

A ``Filter`` is a list of ``(column, op, value)`` predicates rendered once
into a parameterized WHERE clause. The page query and the count query render
the same ``Filter``, so the reported total always matches the page.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any

_COMPARISONS = {"=", "!=", "<", "<=", ">", ">="}
_SPECIAL = {"contains", "null_or_gte"}

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "memory": (
        "id", "key", "value", "category", "priority", "metadata",
        "created_at", "updated_at", "expires_at", "is_active",
    ),
    "tasks": (
        "id", "title", "description", "status", "priority", "due_date",
        "created_at", "updated_at", "completed_at", "context", "tags",
    ),
    "session_context": (
        "id", "session_id", "context_key", "context_value", "created_at", "updated_at",
    ),
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class Predicate:
    column: str
    op: str
    value: Any

    def render(self) -> tuple[str, list[Any]]:
        if self.op in _COMPARISONS:
            return f"{self.column} {self.op} ?", [self.value]
        if self.op == "contains":
            return f"{self.column} LIKE ? ESCAPE '\\'", [f"%{_escape_like(str(self.value))}%"]
        if self.op == "null_or_gte":
            return f"({self.column} IS NULL OR {self.column} >= ?)", [self.value]
        raise ValueError(f"Unsupported operator: {self.op}")


@dataclass
class Filter:
    """Conjunction of predicates over one table."""

    table: str
    predicates: list[Predicate] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {self.table}")

    def require(self, column: str, op: str, value: Any) -> Filter:
        """Add a predicate unconditionally."""
        if column not in TABLE_COLUMNS[self.table]:
            raise ValueError(f"Unknown column {column!r} for table {self.table}")
        if op not in _COMPARISONS and op not in _SPECIAL:
            raise ValueError(f"Unsupported operator: {op}")
        self.predicates.append(Predicate(column, op, value))
        return self

    def where(self, column: str, op: str, value: Any) -> Filter:
        """Add a predicate only when ``value`` is present."""
        if value is None:
            return self
        return self.require(column, op, value)

    def render(self) -> tuple[str, list[Any]]:
        if not self.predicates:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for predicate in self.predicates:
            sql, values = predicate.render()
            clauses.append(sql)
            params.extend(values)
        return "WHERE " + " AND ".join(clauses), params


def count(conn: sqlite3.Connection, flt: Filter) -> int:
    where, params = flt.render()
    row = conn.execute(f"SELECT COUNT(*) FROM {flt.table} {where}", params).fetchone()
    return int(row[0])


def fetch_page(
    conn: sqlite3.Connection,
    flt: Filter,
    order_by: str,
    limit: int | None,
    offset: int = 0,
) -> list[sqlite3.Row]:
    """Select one ordered page. ``limit=None`` returns every matching row."""
    where, params = flt.render()
    columns = ", ".join(TABLE_COLUMNS[flt.table])
    sql = f"SELECT {columns} FROM {flt.table} {where} ORDER BY {order_by} LIMIT ? OFFSET ?"
    return conn.execute(sql, [*params, -1 if limit is None else limit, max(offset, 0)]).fetchall()


def fetch_with_total(
    conn: sqlite3.Connection,
    flt: Filter,
    order_by: str,
    limit: int | None,
    offset: int = 0,
) -> tuple[list[sqlite3.Row], int]:
    return fetch_page(conn, flt, order_by, limit, offset), count(conn, flt)
