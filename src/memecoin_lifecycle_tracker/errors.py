"""Exception taxonomy for the lifecycle engine.

Duplicate observations and unmatched exits are outcomes, not errors; they are
reported through ``ObserveStatus`` instead.
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base exception for lifecycle engine errors."""


class TransientUpstreamError(LifecycleError):
    """Raised when a price or trade source is unavailable.

    The affected entity is left untouched and retried on the next cycle.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")


class PersistenceError(LifecycleError):
    """Raised when persisting a single entity or observation fails."""

    def __init__(self, entity_key: str, cause: Exception) -> None:
        self.entity_key = entity_key
        self.cause = cause
        super().__init__(f"Persistence failed for {entity_key}: {cause}")


class InvalidTransitionError(LifecycleError):
    """Raised on an attempt to move an entity out of a terminal status."""

    def __init__(self, entity_id: int, from_status: str, to_status: str) -> None:
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Entity {entity_id}: cannot transition {from_status} -> {to_status}")
