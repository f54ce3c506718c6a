"""Tests for per-item conflict resolution."""

from __future__ import annotations

import uuid
from collections.abc import Generator
from pathlib import Path

import pytest

from itemsync.core.types import ItemOutcome
from itemsync.server.database import Database
from itemsync.server.models import Account
from itemsync.server.resolver import ConflictResolver, parse_payload


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def account(db: Database) -> Account:
    """Create a test account."""
    return db.create_account("alice@example.com", "hash")


@pytest.fixture
def resolver(db: Database) -> ConflictResolver:
    """Create a resolver on the test database."""
    return ConflictResolver(db)


def note(**fields: object) -> dict[str, object]:
    record: dict[str, object] = {
        "uuid": str(uuid.uuid4()),
        "content": "002encrypted",
        "content_type": "Note",
        "enc_item_key": "key",
        "auth_hash": "hash",
    }
    record.update(fields)
    return record


class TestParsePayload:
    """Tests for parse_payload."""

    @pytest.mark.parametrize(
        "raw",
        [None, 42, "string", ["list"], {}, {"uuid": ""}, {"uuid": "not-a-uuid"}, {"uuid": 5}],
    )
    def test_rejects_unusable_shapes(self, raw: object) -> None:
        """Non-objects and records without a valid uuid are rejected."""
        assert parse_payload(raw) is None

    def test_ignores_server_assigned_fields(self) -> None:
        """user_uuid and timestamps in the record are dropped."""
        payload = parse_payload(
            note(user_uuid="someone", created_at="2000-01-01", updated_at="2000-01-01")
        )
        assert payload is not None
        assert not hasattr(payload, "user_uuid")

    def test_null_deleted_is_accepted(self) -> None:
        """An explicit null deleted flag parses."""
        payload = parse_payload(note(deleted=None))
        assert payload is not None
        assert not payload.deleted


class TestConflictResolver:
    """Tests for ConflictResolver."""

    def test_created_then_updated(self, resolver: ConflictResolver, account: Account) -> None:
        """First submission creates, second updates."""
        record = note()
        first = resolver.resolve(account.uuid, record)
        second = resolver.resolve(account.uuid, {**record, "content": "002other"})
        assert first.outcome is ItemOutcome.CREATED
        assert second.outcome is ItemOutcome.UPDATED
        assert second.item is not None
        assert second.item.content == "002other"
        assert second.submitted["content"] == "002other"

    def test_deleted(self, resolver: ConflictResolver, account: Account) -> None:
        """A deleted flag on a known item yields DELETED."""
        record = note()
        resolver.resolve(account.uuid, record)
        result = resolver.resolve(account.uuid, {**record, "deleted": True})
        assert result.outcome is ItemOutcome.DELETED
        assert result.accepted
        assert result.item is not None
        assert result.item.content is None

    def test_invalid(self, resolver: ConflictResolver, account: Account) -> None:
        """Unrecognized records are reported as INVALID, untouched."""
        result = resolver.resolve(account.uuid, "garbage")
        assert result.outcome is ItemOutcome.INVALID
        assert result.submitted == "garbage"
        assert result.item is None
        assert not result.accepted

    def test_uuid_conflict(self, db: Database, resolver: ConflictResolver, account: Account) -> None:
        """A uuid owned by another account yields UUID_CONFLICT."""
        other = db.create_account("bob@example.com", "hash")
        record = note()
        resolver.resolve(other.uuid, record)
        result = resolver.resolve(account.uuid, record)
        assert result.outcome is ItemOutcome.UUID_CONFLICT
        assert result.item is None
        assert db.count_items(account.uuid) == 0

    def test_batch_continues_after_rejection(
        self, resolver: ConflictResolver, account: Account
    ) -> None:
        """A bad record in the middle does not stop the rest."""
        results = resolver.resolve_batch(account.uuid, [note(), {"uuid": "bad"}, note()])
        assert [r.outcome for r in results] == [
            ItemOutcome.CREATED,
            ItemOutcome.INVALID,
            ItemOutcome.CREATED,
        ]
