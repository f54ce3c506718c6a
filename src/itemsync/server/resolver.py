"""Per-item reconciliation for submitted sync batches.

Each submitted record is classified and resolved on its own:

- unparseable record          -> INVALID (reported, nothing written)
- unknown uuid                -> CREATED
- known uuid, same owner      -> UPDATED, or DELETED when ``deleted`` is set
- known uuid, other owner     -> UUID_CONFLICT (reported, nothing written)

A rejected item never stops the rest of the batch. Storage failures other
than ownership are not item-level problems and propagate to the caller.
"""

from __future__ import annotations

import logging
import uuid as uuid_lib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from itemsync.core.types import ItemOutcome
from itemsync.server.database import NotOwnedError
from itemsync.server.schemas import ItemPayload

if TYPE_CHECKING:
    from collections.abc import Iterable

    from itemsync.server.database import Database
    from itemsync.server.models import Item

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    """Outcome of resolving one submitted record.

    Attributes:
        outcome: How the record was resolved.
        submitted: The record exactly as received.
        item: Persisted item for accepted outcomes, None otherwise.
    """

    outcome: ItemOutcome
    submitted: Any
    item: Item | None = None

    @property
    def accepted(self) -> bool:
        """True if the record was persisted."""
        return self.outcome.accepted


def parse_payload(raw: Any) -> ItemPayload | None:
    """Parse a submitted record, returning None for unusable shapes."""
    if not isinstance(raw, dict):
        return None
    try:
        payload = ItemPayload.model_validate(raw)
    except ValidationError:
        return None
    if not payload.uuid:
        return None
    try:
        uuid_lib.UUID(payload.uuid)
    except ValueError:
        return None
    return payload


class ConflictResolver:
    """Applies submitted records to the item store one at a time."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def resolve(self, account_uuid: str, raw: Any) -> ItemResult:
        """Resolve a single submitted record for an account."""
        payload = parse_payload(raw)
        if payload is None:
            logger.warning("Rejected unrecognized item for account %s", account_uuid)
            return ItemResult(outcome=ItemOutcome.INVALID, submitted=raw)

        try:
            item, created = self._db.upsert_item(
                account_uuid,
                str(payload.uuid),
                content=payload.content,
                content_type=payload.content_type,
                enc_item_key=payload.enc_item_key,
                auth_hash=payload.auth_hash,
                deleted=bool(payload.deleted),
            )
        except NotOwnedError:
            logger.warning(
                "uuid conflict: item %s submitted by account %s is owned elsewhere",
                payload.uuid,
                account_uuid,
            )
            return ItemResult(outcome=ItemOutcome.UUID_CONFLICT, submitted=raw)

        if created:
            outcome = ItemOutcome.CREATED
        elif item.deleted:
            outcome = ItemOutcome.DELETED
        else:
            outcome = ItemOutcome.UPDATED
        return ItemResult(outcome=outcome, submitted=raw, item=item)

    def resolve_batch(self, account_uuid: str, raws: Iterable[Any]) -> list[ItemResult]:
        """Resolve every record of a batch, in submission order."""
        return [self.resolve(account_uuid, raw) for raw in raws]
