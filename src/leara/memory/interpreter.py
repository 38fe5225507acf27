"""Heuristic interpretation of free text: category, priority, dates, tags.

Everything here is a pure function over the input text. The keyword tables
are ordered and the first matching rule wins, so reordering them changes
results.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from leara.memory.models import MemoryCategory, as_utc, utcnow

CATEGORY_RULES: tuple[tuple[MemoryCategory, tuple[str, ...]], ...] = (
    (MemoryCategory.TASK, ("remind", "todo", "task", "due", "deadline", "schedule")),
    (MemoryCategory.REMINDER, ("reminder", "remember", "don't forget", "make sure")),
    (
        MemoryCategory.PROJECT,
        ("project", "repository", "code", "development", "file", "system.rs"),
    ),
    (MemoryCategory.CONVERSATION, ("conversation", "chat", "discussion", "talk")),
    (MemoryCategory.SYSTEM, ("system", "computer", "terminal", "command")),
    (MemoryCategory.PREFERENCE, ("preference", "setting", "config", "option")),
)

URGENT_WORDS = ("urgent", "important", "critical", "asap", "emergency")

PRIORITY_RULES: tuple[tuple[int, tuple[str, ...]], ...] = (
    (5, URGENT_WORDS),
    (4, ("soon", "today", "this week", "deadline")),
    (3, ("later", "next week", "when you can")),
    (2, ("sometime", "eventually", "no rush")),
)

DEFAULT_PRIORITY = 3

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "can", "this", "that", "these", "those", "i", "you", "he",
        "she", "it", "we", "they", "me", "him", "her", "us", "them", "my", "your",
        "his", "its", "our", "their", "mine", "yours", "hers", "ours", "theirs",
    }
)

TAG_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("rust", ("rust", "cargo")),
    ("system", ("system.rs", "system")),
    ("leara", ("leara",)),
    ("project", ("project",)),
)

TIME_MARKERS = ("this week", "next week", "today", "tomorrow")

DUE_HOUR = 18

# Plain substrings, matched the way determine_priority and extract_due_date match.
_TITLE_STRIP = re.compile(
    "|".join(re.escape(w) for w in sorted(URGENT_WORDS + TIME_MARKERS, key=len, reverse=True)),
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParsedTask:
    title: str
    description: str | None
    priority: int
    due_date: datetime | None


def _contains_any(text: str, words: tuple[str, ...]) -> bool:
    return any(w in text for w in words)


def categorize(text: str, context: str | None = None) -> str:
    """Pick a memory category for ``text``. ``context`` is currently not consulted."""
    lowered = text.lower()
    for category, words in CATEGORY_RULES:
        if _contains_any(lowered, words):
            return category.value
    return MemoryCategory.GENERAL.value


def determine_priority(text: str, context: str | None = None) -> int:
    """Infer a 1-5 priority from urgency wording; 3 when nothing matches."""
    lowered = text.lower()
    for level, words in PRIORITY_RULES:
        if _contains_any(lowered, words):
            return level
    return DEFAULT_PRIORITY


def extract_keywords(text: str) -> list[str]:
    """Lower-cased tokens longer than two characters, minus stop words."""
    seen: dict[str, None] = {}
    for word in text.lower().split():
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def extract_due_date(text: str, now: datetime | None = None) -> datetime | None:
    """Resolve a handful of relative time phrases into a UTC timestamp."""
    now = as_utc(now) if now else utcnow()
    lowered = text.lower()
    end_of_day = now.replace(hour=DUE_HOUR, minute=0, second=0, microsecond=0)
    if "today" in lowered:
        return end_of_day
    if "tomorrow" in lowered:
        return end_of_day + timedelta(days=1)
    if "this week" in lowered:
        return now + timedelta(days=7)
    if "next week" in lowered:
        return now + timedelta(days=14)
    return None


def extract_tags(text: str) -> str | None:
    """Comma-joined tags from the fixed keyword table, or None."""
    lowered = text.lower()
    tags = [tag for tag, words in TAG_RULES if _contains_any(lowered, words)]
    return ",".join(tags) if tags else None


def parse_task_input(text: str, now: datetime | None = None) -> ParsedTask:
    """Turn a natural-language request into task fields.

    The title is the input with every urgency word and time marker removed
    wherever it occurs, including inside longer words.
    ``description`` is always None for now.
    """
    title = " ".join(_TITLE_STRIP.sub("", text).split())
    return ParsedTask(
        title=title or text.strip(),
        description=None,
        priority=determine_priority(text),
        due_date=extract_due_date(text, now),
    )
