"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from itemsync.server.models import Account, Item


def format_timestamp(value: datetime) -> str:
    """Format a naive UTC datetime as ISO 8601 with a ``Z`` suffix."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# === Item schemas ===


class ItemPayload(BaseModel):
    """Mutable item fields as submitted by a client.

    ``user_uuid`` and the timestamps may be present in the record but are
    never trusted: the server assigns them.
    """

    model_config = ConfigDict(extra="ignore")

    uuid: str | None = None
    content: str | None = None
    content_type: str | None = None
    enc_item_key: str | None = None
    auth_hash: str | None = None
    deleted: bool | None = False


class ItemResponse(BaseModel):
    """Item data in responses."""

    uuid: str
    user_uuid: str
    content: str | None
    content_type: str | None
    enc_item_key: str | None
    auth_hash: str | None
    deleted: bool
    created_at: str
    updated_at: str


class CreateItemRequest(BaseModel):
    """Request body for direct item creation."""

    item: ItemPayload


class CreateItemResponse(BaseModel):
    """Response for direct item creation."""

    item: ItemResponse


class BackupRequest(BaseModel):
    """Request body for an item backup."""

    uuid: str


# === Sync schemas ===


class SyncRequest(BaseModel):
    """Request body for a sync, covering every supported API version.

    ``items`` is left untyped so that unrecognized records reach the
    resolver and are reported instead of failing the whole request.
    """

    model_config = ConfigDict(extra="ignore")

    api: str | None = None
    sync_token: str | None = None
    cursor_token: str | None = None
    limit: int | None = None
    content_type: str | None = None
    items: Any = None


class ErrorTag(BaseModel):
    """Reason an item was not saved."""

    tag: str
    message: str | None = None


class UnsavedEntry(BaseModel):
    """Rejected item, as reported in ``unsaved``."""

    item: Any
    error: ErrorTag


class ConflictEntry(BaseModel):
    """Rejected item, as reported in ``conflicts`` (API 20190520)."""

    type: str
    unsaved_item: Any


class SyncResponse(BaseModel):
    """Sync envelope. ``conflicts`` is only set for API 20190520."""

    retrieved_items: list[ItemResponse]
    saved_items: list[ItemResponse]
    unsaved: list[UnsavedEntry]
    sync_token: str
    cursor_token: str | None
    conflicts: list[ConflictEntry] | None = None


# === Auth schemas ===


class CredentialsRequest(BaseModel):
    """Request body for registration and sign in."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class AccountResponse(BaseModel):
    """Account data in responses."""

    uuid: str
    email: str
    created_at: str


class AuthResponse(BaseModel):
    """Response for registration and sign in."""

    token: str
    user: AccountResponse


# === Error and health schemas ===


class ErrorDetail(BaseModel):
    """Error description."""

    message: str
    tag: str


class ErrorResponse(BaseModel):
    """Uniform error body."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def item_to_response(item: Item) -> ItemResponse:
    """Convert Item to response model."""
    return ItemResponse(
        uuid=item.uuid,
        user_uuid=item.user_uuid,
        content=None if item.deleted else item.content,
        content_type=item.content_type,
        enc_item_key=item.enc_item_key,
        auth_hash=item.auth_hash,
        deleted=item.deleted,
        created_at=format_timestamp(item.created_at),
        updated_at=format_timestamp(item.updated_at),
    )


def account_to_response(account: Account) -> AccountResponse:
    """Convert Account to response model."""
    return AccountResponse(
        uuid=account.uuid,
        email=account.email,
        created_at=format_timestamp(account.created_at),
    )
