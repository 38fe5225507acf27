"""Record and query types for memories, tasks and session context."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class MemoryCategory(str, Enum):
    GENERAL = "general"
    CONVERSATION = "conversation"
    TASK = "task"
    REMINDER = "reminder"
    PREFERENCE = "preference"
    CONTEXT = "context"
    SYSTEM = "system"
    PROJECT = "project"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_STATUS_ALIASES = {"inprogress": TaskStatus.IN_PROGRESS, "canceled": TaskStatus.CANCELLED}


def normalize_category(value: str) -> str:
    """Map a category name onto a known category, or keep it as a custom one."""
    name = value.strip().lower()
    try:
        return MemoryCategory(name).value
    except ValueError:
        return name


def normalize_status(value: str) -> str:
    """Map a status name onto a known status, or keep it as a custom one."""
    name = value.strip().lower()
    if name in _STATUS_ALIASES:
        return _STATUS_ALIASES[name].value
    try:
        return TaskStatus(name).value
    except ValueError:
        return name


@dataclass
class Memory:
    """A categorized, prioritized key/value fact."""

    key: str
    value: str
    category: str = MemoryCategory.GENERAL.value
    priority: int = 3
    metadata: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    is_active: bool = True
    id: int | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or utcnow())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "category": self.category,
            "priority": self.priority,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "expires_at": _iso(self.expires_at),
            "is_active": self.is_active,
        }


@dataclass
class Task:
    """A to-do item. ``completed_at`` is only set while status is completed."""

    title: str
    description: str | None = None
    status: str = TaskStatus.PENDING.value
    priority: int = 3
    due_date: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    context: str | None = None
    tags: str | None = None
    id: int | None = None

    def is_overdue(self, now: datetime | None = None) -> bool:
        return self.due_date is not None and self.due_date < (now or utcnow())

    @property
    def tag_list(self) -> list[str]:
        if not self.tags:
            return []
        return [t for t in self.tags.split(",") if t]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "context": self.context,
            "tags": self.tags,
        }


@dataclass
class SessionContext:
    """Per-session key/value state, unique per (session_id, context_key)."""

    session_id: str
    context_key: str
    context_value: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "context_key": self.context_key,
            "context_value": self.context_value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ── Queries ──────────────────────────────────────────────────
#
# Every field left as None means "no constraint". ``limit=None`` means
# "no limit"; the defaults page at DEFAULT_PAGE_LIMIT.


@dataclass
class MemoryQuery:
    key: str | None = None  # substring of the key
    category: str | None = None
    priority: int | None = None
    min_priority: int | None = None
    limit: int | None = DEFAULT_PAGE_LIMIT
    offset: int = 0
    include_expired: bool = False
    include_inactive: bool = False


@dataclass
class TaskQuery:
    status: str | None = None
    priority: int | None = None
    due_before: datetime | None = None
    tag: str | None = None
    limit: int | None = DEFAULT_PAGE_LIMIT
    offset: int = 0
    include_completed: bool = False


@dataclass
class SessionContextQuery:
    session_id: str | None = None
    context_key: str | None = None
    limit: int | None = DEFAULT_PAGE_LIMIT
    offset: int = 0


@dataclass
class Page(Generic[T]):
    """One page of results plus the total number of matching rows."""

    items: list[T]
    total: int

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)
