"""Opaque sync and cursor tokens.

Both token kinds are base64-wrapped, colon-separated, versioned strings:

- Sync token:   ``base64("2:<unix_epoch_float>")``
  "Everything updated at or before this instant is already known."
- Cursor token: ``base64("2:<unix_epoch_float>:<uuid>")``
  "Continue after this row", in ``(updated_at, uuid)`` order. The uuid
  breaks ties between items that share an ``updated_at``.

Timestamps are naive UTC datetimes. The epoch float always carries six
decimals and is parsed with ``Decimal``, so positions survive a round
trip to the microsecond.
"""

from __future__ import annotations

import base64
import binascii
import uuid as uuid_lib
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

TOKEN_VERSION = "2"

EPOCH = datetime(1970, 1, 1)


class MalformedTokenError(ValueError):
    """Raised when a sync or cursor token cannot be decoded."""


@dataclass(frozen=True)
class Position:
    """A point in an account's ``(updated_at, uuid)`` ordering.

    Attributes:
        timestamp: Naive UTC boundary.
        uuid: Last uuid seen at ``timestamp``. None means "strictly after
            ``timestamp``".
    """

    timestamp: datetime
    uuid: str | None = None


def _format_epoch(timestamp: datetime) -> str:
    micros = (timestamp - EPOCH) // timedelta(microseconds=1)
    if micros < 0:
        raise ValueError(f"Timestamp before epoch: {timestamp!r}")
    seconds, fraction = divmod(micros, 1_000_000)
    return f"{seconds}.{fraction:06d}"


def _parse_epoch(text: str) -> datetime:
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise MalformedTokenError(f"Invalid timestamp: {text!r}") from e
    if not value.is_finite() or value < 0:
        raise MalformedTokenError(f"Invalid timestamp: {text!r}")
    # Covers decimal.Overflow from the scaling as well as timedelta's OverflowError
    try:
        micros = int((value * 1_000_000).to_integral_value())
        return EPOCH + timedelta(microseconds=micros)
    except ArithmeticError as e:
        raise MalformedTokenError(f"Timestamp out of range: {text!r}") from e


def _wrap(payload: str) -> str:
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def _unwrap(token: str) -> list[str]:
    compact = "".join(token.split())
    try:
        payload = base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise MalformedTokenError("Token is not valid base64") from e

    parts = payload.split(":")
    if parts[0] != TOKEN_VERSION:
        raise MalformedTokenError(f"Unsupported token version: {parts[0]!r}")
    return parts[1:]


def encode_sync_token(timestamp: datetime) -> str:
    """Encode a sync boundary."""
    return _wrap(f"{TOKEN_VERSION}:{_format_epoch(timestamp)}")


def decode_sync_token(token: str | None) -> Position | None:
    """Decode a sync token.

    Args:
        token: Raw token; empty or None means "from the beginning".

    Returns:
        Position with ``uuid=None``, or None for an empty token.

    Raises:
        MalformedTokenError: If the token cannot be parsed.
    """
    if not token or not token.strip():
        return None
    fields = _unwrap(token)
    if len(fields) != 1:
        raise MalformedTokenError("Sync token must hold exactly one timestamp")
    return Position(timestamp=_parse_epoch(fields[0]))


def encode_cursor_token(position: Position) -> str:
    """Encode a continuation point within a paginated sync."""
    payload = f"{TOKEN_VERSION}:{_format_epoch(position.timestamp)}"
    if position.uuid is not None:
        payload += f":{position.uuid}"
    return _wrap(payload)


def decode_cursor_token(token: str | None) -> Position | None:
    """Decode a cursor token.

    A cursor without a uuid part is accepted and behaves like a sync
    token at the same instant.

    Raises:
        MalformedTokenError: If the token cannot be parsed.
    """
    if not token or not token.strip():
        return None
    fields = _unwrap(token)
    if len(fields) not in (1, 2):
        raise MalformedTokenError("Cursor token must hold a timestamp and an optional uuid")

    timestamp = _parse_epoch(fields[0])
    if len(fields) == 1:
        return Position(timestamp=timestamp)

    try:
        uuid_lib.UUID(fields[1])
    except ValueError as e:
        raise MalformedTokenError(f"Invalid cursor uuid: {fields[1]!r}") from e
    return Position(timestamp=timestamp, uuid=fields[1])
