"""Server database using SQLAlchemy with SQLite.

This module provides:
- Account management
- Token-based authentication
- The item store: upsert, lookup, ordered range scans, hard delete
- Per-account serialization of writes
"""

from __future__ import annotations

import hashlib
import secrets
import threading
import uuid as uuid_lib
import weakref
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, create_engine, delete, event, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from itemsync.server.models import Account, Base, Item, Token, utcnow

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from itemsync.core.tokens import Position


def hash_token(token: str) -> str:
    """Hash a token using SHA-256.

    Args:
        token: Raw token string.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class NotFoundError(Exception):
    """Raised when an item does not exist for the requesting account."""


class NotOwnedError(Exception):
    """Raised when an item uuid belongs to a different account."""


def next_revision(previous: datetime | None, now: datetime) -> datetime:
    """Return the ``updated_at`` for the next write to an account.

    Revisions are strictly increasing across all of an account's items,
    even if the clock has not moved past the latest stored value, so
    ``updated_at`` alone totally orders the account's history.
    """
    if previous is None:
        return now
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    """Apply per-connection SQLite settings."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """SQLAlchemy database for accounts, tokens and items.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Writes to one account's items are serialized with a per-account lock;
    different accounts never contend on it.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
        event.listen(self._engine, "connect", _set_sqlite_pragmas)

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

        self._locks_guard = threading.Lock()
        # Entries vanish once no caller holds the lock
        self._account_locks: weakref.WeakValueDictionary[str, Any] = (
            weakref.WeakValueDictionary()
        )

    @property
    def path(self) -> Path:
        """Path of the SQLite database file."""
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    @contextmanager
    def account_lock(self, account_uuid: str) -> Iterator[None]:
        """Serialize writes for one account.

        The lock is re-entrant, so a caller holding it (the sync
        orchestrator) can still use the item operations below.
        """
        with self._locks_guard:
            lock = self._account_locks.get(account_uuid)
            if lock is None:
                lock = threading.RLock()
                self._account_locks[account_uuid] = lock
        with lock:
            yield

    # === Account operations ===

    def create_account(self, email: str, password_hash: str) -> Account:
        """Create a new account.

        Args:
            email: Unique email address.
            password_hash: Hashed password.

        Returns:
            Created Account object.

        Raises:
            IntegrityError: If the email is already registered.
        """
        with self._session() as session:
            account = Account(
                uuid=str(uuid_lib.uuid4()),
                email=email.strip().lower(),
                password_hash=password_hash,
            )
            session.add(account)
            session.commit()
            session.refresh(account)
            session.expunge(account)
            return account

    def get_account(self, account_uuid: str) -> Account | None:
        """Get an account by uuid."""
        with self._session() as session:
            account = session.get(Account, account_uuid)
            if account:
                session.expunge(account)
            return account

    def get_account_by_email(self, email: str) -> Account | None:
        """Get an account by email.

        Args:
            email: Email address (case-insensitive).

        Returns:
            Account if found, None otherwise.
        """
        with self._session() as session:
            stmt = select(Account).where(Account.email == email.strip().lower())
            account = session.execute(stmt).scalar_one_or_none()
            if account:
                session.expunge(account)
            return account

    # === Token operations ===

    def create_token(
        self,
        account_uuid: str,
        expires_in: timedelta | None = None,
    ) -> tuple[str, Token]:
        """Create a new authentication token.

        Args:
            account_uuid: Account to associate with the token.
            expires_in: Optional expiration duration.

        Returns:
            Tuple of (raw_token, Token object).
        """
        raw_token = "is_" + secrets.token_urlsafe(32)
        now = utcnow()
        expires_at = (now + expires_in) if expires_in is not None else None

        with self._session() as session:
            token = Token(
                account_uuid=account_uuid,
                token_hash=hash_token(raw_token),
                created_at=now,
                expires_at=expires_at,
            )
            session.add(token)
            session.commit()
            session.refresh(token)
            session.expunge(token)
            return raw_token, token

    def validate_token(self, raw_token: str) -> Token | None:
        """Validate a token and return it if valid.

        Args:
            raw_token: Raw token string.

        Returns:
            Token if valid, None otherwise.
        """
        with self._session() as session:
            stmt = select(Token).where(
                Token.token_hash == hash_token(raw_token),
                Token.revoked == False,  # noqa: E712
            )
            token = session.execute(stmt).scalar_one_or_none()
            if token is None:
                return None
            if token.expires_at is not None and token.expires_at <= utcnow():
                return None
            session.expunge(token)
            return token

    def revoke_token(self, token_id: int) -> None:
        """Revoke a token.

        Args:
            token_id: Token ID to revoke.
        """
        with self._session() as session:
            token = session.get(Token, token_id)
            if token:
                token.revoked = True
                session.commit()

    def cleanup_expired_tokens(self) -> int:
        """Delete expired and revoked tokens.

        Returns:
            Number of tokens deleted.
        """
        with self._session() as session:
            stmt = delete(Token).where(
                or_(Token.revoked == True, Token.expires_at <= utcnow())  # noqa: E712
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0

    # === Item operations ===

    @staticmethod
    def _latest_revision(session: Session, account_uuid: str) -> datetime | None:
        stmt = select(func.max(Item.updated_at)).where(Item.user_uuid == account_uuid)
        return session.execute(stmt).scalar()

    def latest_revision(self, account_uuid: str) -> datetime | None:
        """Newest ``updated_at`` across an account's items, deleted included."""
        with self._session() as session:
            return self._latest_revision(session, account_uuid)

    def upsert_item(
        self,
        account_uuid: str,
        item_uuid: str,
        *,
        content: str | None = None,
        content_type: str | None = None,
        enc_item_key: str | None = None,
        auth_hash: str | None = None,
        deleted: bool = False,
    ) -> tuple[Item, bool]:
        """Insert an item or overwrite its mutable fields.

        Server timestamps always win: ``created_at`` is set once and
        ``updated_at`` moves forward on every call. A deleted item has its
        content and key material cleared.

        Args:
            account_uuid: Owner performing the write.
            item_uuid: Client-assigned item identifier.
            content: Opaque payload.
            content_type: Payload type tag.
            enc_item_key: Opaque encrypted item key.
            auth_hash: Opaque authentication hash.
            deleted: Soft-delete flag.

        Returns:
            Tuple of (persisted Item, True if newly created).

        Raises:
            NotOwnedError: If the uuid belongs to another account.
        """
        with self.account_lock(account_uuid), self._session() as session:
            latest = self._latest_revision(session, account_uuid)
            now = next_revision(latest, utcnow())
            item = session.get(Item, item_uuid)
            created = item is None

            if item is None:
                item = Item(
                    uuid=item_uuid,
                    user_uuid=account_uuid,
                    created_at=now,
                    updated_at=now,
                )
                session.add(item)
            elif item.user_uuid != account_uuid:
                raise NotOwnedError(f"Item {item_uuid} belongs to another account")
            else:
                item.updated_at = now

            item.content_type = content_type
            item.deleted = deleted
            if deleted:
                item.content = None
                item.enc_item_key = None
                item.auth_hash = None
            else:
                item.content = content
                item.enc_item_key = enc_item_key
                item.auth_hash = auth_hash

            try:
                session.commit()
            except IntegrityError as e:
                # Another account inserted the same new uuid first
                session.rollback()
                raise NotOwnedError(f"Item {item_uuid} belongs to another account") from e

            session.refresh(item)
            session.expunge(item)
            return item, created

    def get_item(self, account_uuid: str, item_uuid: str) -> Item:
        """Get an item owned by an account.

        Raises:
            NotFoundError: If the item does not exist or is owned by
                another account.
        """
        with self._session() as session:
            stmt = select(Item).where(Item.uuid == item_uuid, Item.user_uuid == account_uuid)
            item = session.execute(stmt).scalar_one_or_none()
            if item is None:
                raise NotFoundError(f"Item not found: {item_uuid}")
            session.expunge(item)
            return item

    def range_since(
        self,
        account_uuid: str,
        position: Position | None,
        *,
        exclude_uuids: Collection[str] = (),
        limit: int,
        content_type: str | None = None,
        include_deleted: bool = True,
    ) -> tuple[list[Item], bool]:
        """Scan an account's items after a position.

        Items are ordered by ``updated_at`` then ``uuid``. With
        ``position.uuid`` set, rows sharing ``position.timestamp`` are
        continued after that uuid; otherwise the boundary is strict.

        Args:
            account_uuid: Owner whose items are scanned.
            position: Start point, or None for the beginning of history.
            exclude_uuids: Uuids to leave out (e.g. just saved).
            limit: Maximum number of items returned.
            content_type: Optional content type filter.
            include_deleted: Whether soft-deleted items are returned.

        Returns:
            Tuple of (items, True if more items remain after them).
        """
        stmt = select(Item).where(Item.user_uuid == account_uuid)
        if position is not None:
            if position.uuid is None:
                stmt = stmt.where(Item.updated_at > position.timestamp)
            else:
                stmt = stmt.where(
                    or_(
                        Item.updated_at > position.timestamp,
                        and_(
                            Item.updated_at == position.timestamp,
                            Item.uuid > position.uuid,
                        ),
                    )
                )
        if exclude_uuids:
            stmt = stmt.where(Item.uuid.not_in(list(exclude_uuids)))
        if content_type is not None:
            stmt = stmt.where(Item.content_type == content_type)
        if not include_deleted:
            stmt = stmt.where(Item.deleted == False)  # noqa: E712
        stmt = stmt.order_by(Item.updated_at, Item.uuid).limit(limit + 1)

        with self._session() as session:
            items = list(session.execute(stmt).scalars().all())
            for item in items:
                session.expunge(item)

        has_more = len(items) > limit
        return items[:limit], has_more

    def list_items(
        self,
        account_uuid: str | None = None,
        content_type: str | None = None,
        include_deleted: bool = False,
    ) -> list[Item]:
        """List items, optionally filtered by owner and content type.

        Returns:
            Items in ``(updated_at, uuid)`` order.
        """
        with self._session() as session:
            stmt = select(Item)
            if account_uuid is not None:
                stmt = stmt.where(Item.user_uuid == account_uuid)
            if content_type is not None:
                stmt = stmt.where(Item.content_type == content_type)
            if not include_deleted:
                stmt = stmt.where(Item.deleted == False)  # noqa: E712
            stmt = stmt.order_by(Item.updated_at, Item.uuid)
            items = list(session.execute(stmt).scalars().all())
            for item in items:
                session.expunge(item)
            return items

    def count_items(self, account_uuid: str) -> int:
        """Count all rows (deleted included) owned by an account."""
        with self._session() as session:
            stmt = select(func.count()).select_from(Item).where(Item.user_uuid == account_uuid)
            return session.execute(stmt).scalar_one()

    def delete_item(self, account_uuid: str, item_uuid: str) -> None:
        """Physically remove an item.

        Raises:
            NotFoundError: If the item does not exist.
            NotOwnedError: If the item belongs to another account.
        """
        with self.account_lock(account_uuid), self._session() as session:
            item = session.get(Item, item_uuid)
            if item is None:
                raise NotFoundError(f"Item not found: {item_uuid}")
            if item.user_uuid != account_uuid:
                raise NotOwnedError(f"Item {item_uuid} belongs to another account")
            session.delete(item)
            session.commit()
