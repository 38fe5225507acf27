"""SQLite plumbing: bounded connection pool, schema, timestamp codec."""

from __future__ import annotations

import json
import logging
import queue
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from leara.memory.errors import StoreError, StoreUnavailableError
from leara.memory.models import as_utc, utcnow

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS memory (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'general',
    priority INTEGER NOT NULL DEFAULT 3,
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    expires_at TEXT,
    is_active INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_memory_key ON memory (key);
CREATE INDEX IF NOT EXISTS idx_memory_category ON memory (category);
CREATE INDEX IF NOT EXISTS idx_memory_priority ON memory (priority);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    priority INTEGER NOT NULL DEFAULT 3,
    due_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    context TEXT,
    tags TEXT
);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks (priority);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks (due_date);

CREATE TABLE IF NOT EXISTS session_context (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    context_key TEXT NOT NULL,
    context_value TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (session_id, context_key)
);
CREATE INDEX IF NOT EXISTS idx_session_context_session_id ON session_context (session_id);
CREATE INDEX IF NOT EXISTS idx_session_context_key ON session_context (context_key);
"""


# ── Timestamp / metadata codec ───────────────────────────────
#
# Stored as fixed-width ISO 8601 in UTC so that string comparison in SQL
# matches chronological order.


def encode_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def decode_ts(raw: str | None, column: str = "timestamp") -> datetime:
    """Parse a stored timestamp. Unparsable values fall back to now."""
    try:
        return as_utc(datetime.fromisoformat(raw))
    except (TypeError, ValueError):
        logger.warning("Unparsable %s %r in store, substituting current time", column, raw)
        return utcnow()


def decode_optional_ts(raw: str | None, column: str = "timestamp") -> datetime | None:
    if raw is None or raw == "":
        return None
    return decode_ts(raw, column)


def encode_json(value: dict | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def decode_json(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unparsable metadata %r in store, dropping it", raw[:80])
        return None
    return value if isinstance(value, dict) else {"value": value}


# ── Connection pool ──────────────────────────────────────────


class ConnectionPool:
    """A bounded pool of sqlite3 connections shared across threads.

    Connections are opened lazily up to ``size``. Callers that find the pool
    exhausted wait up to ``timeout`` seconds and then get
    StoreUnavailableError. Connections run in autocommit mode; there are no
    transactions spanning several statements.
    """

    def __init__(self, path: Path | str, size: int = 5, timeout: float = 5.0) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self.size = size
        self.timeout = timeout
        self._lock = threading.Lock()
        self._idle: queue.Queue[sqlite3.Connection] = queue.Queue(maxsize=size)
        self._opened = 0
        self._closed = False

        if str(path) == IN_MEMORY:
            # Shared-cache URI so every pooled connection sees the same database.
            self._target = f"file:leara-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self.path: Path | None = None
        else:
            self.path = Path(path).expanduser()
            self._target = str(self.path)
            self._uri = False

        # Keep one connection open from the start; it also keeps an in-memory
        # database alive for the lifetime of the pool.
        self._idle.put(self._open())
        self._opened = 1

    def _open(self) -> sqlite3.Connection:
        try:
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self._target,
                uri=self._uri,
                check_same_thread=False,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailableError(f"cannot open database {self._target}: {e}") from e
        conn.row_factory = sqlite3.Row
        if self.path is not None:
            try:
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.OperationalError:
                conn.execute("PRAGMA journal_mode = DELETE")
            conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreUnavailableError("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            can_open = self._opened < self.size
            if can_open:
                self._opened += 1
        if can_open:
            try:
                return self._open()
            except StoreUnavailableError:
                with self._lock:
                    self._opened -= 1
                raise
        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise StoreUnavailableError(
                f"no database connection available after {self.timeout}s "
                f"(pool size {self.size})"
            ) from None

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._closed:
            conn.close()
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Check a connection out for the duration of the block."""
        conn = self._acquire()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            self._release(conn)

    @property
    def opened(self) -> int:
        return self._opened

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                break


def initialize_schema(pool: ConnectionPool) -> None:
    """Create tables and indexes. Idempotent."""
    with pool.connection() as conn:
        conn.executescript(SCHEMA)
    logger.info("Database schema ready (%s)", pool.path or IN_MEMORY)

