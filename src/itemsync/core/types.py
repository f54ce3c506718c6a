"""Shared types for itemsync.

This module defines enums used by the sync engine and the API layer.
"""

from __future__ import annotations

from enum import Enum


class ApiVersion(str, Enum):
    """Request/response shape selected by the client's ``api`` parameter."""

    FALLBACK = "20161215"
    V20190520 = "20190520"

    @classmethod
    def parse(cls, value: str | None) -> ApiVersion:
        """Map a raw ``api`` value to a version, falling back for unknown tags."""
        if value == cls.V20190520.value:
            return cls.V20190520
        return cls.FALLBACK


class ItemOutcome(str, Enum):
    """Result of reconciling one submitted item."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UUID_CONFLICT = "uuid_conflict"
    INVALID = "invalid_item"

    @property
    def accepted(self) -> bool:
        """True if the item was persisted."""
        return self in (ItemOutcome.CREATED, ItemOutcome.UPDATED, ItemOutcome.DELETED)


class BackupFrequency(str, Enum):
    """How often a backup extension wants the account's items copied."""

    REALTIME = "realtime"
    DAILY = "daily"
