"""SQLAlchemy models for the itemsync server.

This module defines the database schema using SQLAlchemy ORM.

All timestamps are naive UTC: SQLite drops tzinfo on the way in, and the
sync engine compares ``updated_at`` values directly.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Get current UTC time as naive datetime (for SQLite compatibility)."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class Account(Base):
    """Represents a user account owning items."""

    __tablename__ = "accounts"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    tokens: Mapped[list[Token]] = relationship(
        "Token", back_populates="account", cascade="all, delete-orphan"
    )


class Token(Base):
    """Represents a bearer token issued at sign in."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_uuid: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.uuid", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    account: Mapped[Account] = relationship("Account", back_populates="tokens")

    # Indexes
    __table_args__ = (Index("idx_tokens_hash", "token_hash"),)


class Item(Base):
    """A single opaque record synced across an account's devices.

    ``content``, ``enc_item_key`` and ``auth_hash`` are never interpreted,
    except that they are cleared when the item is soft-deleted.
    """

    __tablename__ = "items"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_uuid: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.uuid", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enc_item_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    auth_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Sync queries scan by owner in (updated_at, uuid) order
    __table_args__ = (
        Index("idx_items_user_updated", "user_uuid", "updated_at", "uuid"),
        Index("idx_items_user_type", "user_uuid", "content_type"),
    )
