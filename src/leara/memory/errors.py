"""Error taxonomy for the knowledge engine.

Lookups that find nothing are not errors; they return ``None`` or an empty
collection. Everything here is scoped to a single operation.
"""

from __future__ import annotations


class LearaError(Exception):
    """Base class for all knowledge-engine errors."""


class ValidationError(LearaError):
    """Caller input was rejected before the store was touched."""


class StoreError(LearaError):
    """A statement against the backing database failed."""


class StoreUnavailableError(StoreError):
    """No connection could be obtained. Safe to retry later."""
