"""Keyword/category/priority/recency relevance scoring for memories."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from leara.memory.interpreter import categorize, extract_keywords
from leara.memory.models import Memory, as_utc, utcnow

VALUE_MATCH_WEIGHT = 10.0
KEY_MATCH_WEIGHT = 15.0
CATEGORY_MATCH_WEIGHT = 5.0
RECENCY_WINDOW_DAYS = 30
RECENCY_WEIGHT = 0.1


def score(memory: Memory, query: str, now: datetime | None = None) -> float:
    """Relevance of ``memory`` to ``query``; higher is better."""
    now = as_utc(now) if now else utcnow()
    query_keywords = extract_keywords(query)
    value_keywords = set(extract_keywords(memory.value))
    key_keywords = set(extract_keywords(memory.key))

    total = 0.0
    for keyword in query_keywords:
        if keyword in value_keywords:
            total += VALUE_MATCH_WEIGHT
        if keyword in key_keywords:
            total += KEY_MATCH_WEIGHT

    if categorize(query) == memory.category:
        total += CATEGORY_MATCH_WEIGHT

    total += memory.priority

    age_days = (now - as_utc(memory.updated_at)).days
    total += max(0, RECENCY_WINDOW_DAYS - age_days) * RECENCY_WEIGHT
    return total


def rank(
    memories: Iterable[Memory], query: str, now: datetime | None = None
) -> list[tuple[float, Memory]]:
    """Score and sort descending. Equal scores keep their input order."""
    now = as_utc(now) if now else utcnow()
    scored = [(score(m, query, now), m) for m in memories]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored
