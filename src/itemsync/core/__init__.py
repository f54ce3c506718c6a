"""Core module - Shared configuration, types and sync tokens."""

from itemsync.core.config import DEFAULT_SYNC_LIMIT, MAX_SYNC_LIMIT, ServerSettings
from itemsync.core.tokens import (
    MalformedTokenError,
    Position,
    decode_cursor_token,
    decode_sync_token,
    encode_cursor_token,
    encode_sync_token,
)
from itemsync.core.types import ApiVersion, BackupFrequency, ItemOutcome

__all__ = [
    # Config
    "DEFAULT_SYNC_LIMIT",
    "MAX_SYNC_LIMIT",
    "ServerSettings",
    # Tokens
    "MalformedTokenError",
    "Position",
    "decode_cursor_token",
    "decode_sync_token",
    "encode_cursor_token",
    "encode_sync_token",
    # Types
    "ApiVersion",
    "BackupFrequency",
    "ItemOutcome",
]
