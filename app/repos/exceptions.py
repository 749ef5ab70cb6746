"""Storage-level failures that services translate into domain errors."""

from __future__ import annotations


class DuplicateKeyError(ValueError):
    """A uniqueness constraint rejected the write."""


class CapacityExceededError(Exception):
    """A guarded counter (course seats, group members) is already at its limit."""
