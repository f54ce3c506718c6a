"""Sync orchestration.

A sync is one serialized step per account:

1. Decode the sync and cursor tokens (malformed tokens mean "from scratch").
2. Resolve every submitted item (saved or rejected, never aborting).
3. Scan the account's items after the cursor, or else after the sync
   token, leaving out what was just saved.
4. Emit a cursor if more pages remain, otherwise advance the sync token.

The orchestrator knows nothing about API versions; the API layer maps
each wire shape onto ``SyncParams``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from itemsync.core.tokens import (
    EPOCH,
    MalformedTokenError,
    Position,
    decode_cursor_token,
    decode_sync_token,
    encode_cursor_token,
    encode_sync_token,
)
from itemsync.server.resolver import ConflictResolver, ItemResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from itemsync.core.config import ServerSettings
    from itemsync.server.backup import BackupDispatcher
    from itemsync.server.database import Database
    from itemsync.server.models import Item

logger = logging.getLogger(__name__)


@dataclass
class SyncParams:
    """Version-independent sync input.

    Attributes:
        sync_token: Last sync token the client stored, if any.
        cursor_token: Continuation token from a previous page, if any.
        limit: Requested page size (None or <= 0 applies the default).
        content_type: Only retrieve items of this content type.
        items: Submitted records, exactly as received.
    """

    sync_token: str | None = None
    cursor_token: str | None = None
    limit: int | None = None
    content_type: str | None = None
    items: list[Any] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome of a sync, before wire shaping."""

    retrieved: list[Item]
    saved: list[ItemResult]
    conflicts: list[ItemResult]
    sync_token: str
    cursor_token: str | None

    @property
    def saved_items(self) -> list[Item]:
        """Persisted items, in submission order."""
        return [r.item for r in self.saved if r.item is not None]


class SyncOrchestrator:
    """Runs the sync operation against the item store."""

    def __init__(
        self,
        db: Database,
        settings: ServerSettings,
        backups: BackupDispatcher | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            db: Database instance.
            settings: Server settings (page size limits).
            backups: Optional dispatcher for realtime backups.
        """
        self._db = db
        self._settings = settings
        self._backups = backups
        self._resolver = ConflictResolver(db)

    @staticmethod
    def _decode(
        decoder: Callable[[str | None], Position | None],
        token: str | None,
        kind: str,
        account_uuid: str,
    ) -> Position | None:
        try:
            return decoder(token)
        except MalformedTokenError as e:
            logger.warning(
                "Malformed %s token from account %s, syncing from scratch: %s",
                kind,
                account_uuid,
                e,
            )
            return None

    def sync(self, account_uuid: str, params: SyncParams) -> SyncResult:
        """Save submitted items and collect what the client is missing.

        Args:
            account_uuid: Authenticated account.
            params: Sync input.

        Returns:
            SyncResult with retrieved, saved and rejected items and the
            new tokens.
        """
        with self._db.account_lock(account_uuid):
            sync_position = self._decode(
                decode_sync_token, params.sync_token, "sync", account_uuid
            )
            cursor_position = self._decode(
                decode_cursor_token, params.cursor_token, "cursor", account_uuid
            )

            results = self._resolver.resolve_batch(account_uuid, params.items)
            saved = [r for r in results if r.accepted]
            conflicts = [r for r in results if not r.accepted]
            saved_uuids = {r.item.uuid for r in saved if r.item is not None}

            limit = self._settings.clamp_limit(params.limit)
            retrieved, has_more = self._db.range_since(
                account_uuid,
                cursor_position or sync_position,
                exclude_uuids=saved_uuids,
                limit=limit,
                content_type=params.content_type,
                # A device starting from scratch has nothing to delete
                include_deleted=sync_position is not None,
            )

            if has_more:
                last = retrieved[-1]
                cursor_token: str | None = encode_cursor_token(
                    Position(timestamp=last.updated_at, uuid=last.uuid)
                )
                # Revisions are strictly ordered per account, so this
                # boundary is lossless for clients that ignore the cursor
                sync_token = encode_sync_token(last.updated_at)
            else:
                cursor_token = None
                # The account's newest revision, not the wall clock: the next
                # write is guaranteed to land strictly after it
                latest = self._db.latest_revision(account_uuid)
                sync_token = encode_sync_token(latest or EPOCH)

        result = SyncResult(
            retrieved=retrieved,
            saved=saved,
            conflicts=conflicts,
            sync_token=sync_token,
            cursor_token=cursor_token,
        )
        logger.info(
            "Sync for account %s: %d saved, %d rejected, %d retrieved, more=%s",
            account_uuid,
            len(saved),
            len(conflicts),
            len(retrieved),
            has_more,
        )

        if self._backups is not None and saved_uuids:
            if self._backups.realtime_enabled(account_uuid):
                self._backups.submit_many(account_uuid, [i.uuid for i in result.saved_items])

        return result

