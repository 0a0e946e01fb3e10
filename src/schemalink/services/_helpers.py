"""Shared service-layer helper functions."""

from __future__ import annotations

from datetime import UTC, datetime


def now_iso() -> str:
    """Current UTC time as standard ISO 8601 (for audit columns and the event WAL)."""
    return datetime.now(UTC).isoformat()


def sorted_ids(ids: set[int] | list[int]) -> list[int]:
    """Deduplicated, ascending ids for deterministic payloads.

    Examples:
        >>> sorted_ids({3, 1, 2})
        [1, 2, 3]
        >>> sorted_ids([5, 5, 4])
        [4, 5]
    """
    return sorted(set(ids))
