"""Account registration and session API routes."""

from __future__ import annotations

import logging
from datetime import timedelta

import argon2
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import IntegrityError

from itemsync.core.config import ServerSettings
from itemsync.server.api.deps import get_current_token, get_db, get_settings
from itemsync.server.api.errors import ApiError, InvalidAuthError
from itemsync.server.database import Database
from itemsync.server.models import Account, Token
from itemsync.server.schemas import AuthResponse, CredentialsRequest, account_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

ph = argon2.PasswordHasher()

# Verified against when the email is unknown, so both paths cost one argon2 check
_DUMMY_HASH = ph.hash("itemsync-unknown-account")


def _issue_token(db: Database, settings: ServerSettings, account: Account) -> AuthResponse:
    raw_token, _ = db.create_token(
        account.uuid, expires_in=timedelta(days=settings.token_ttl_days)
    )
    return AuthResponse(token=raw_token, user=account_to_response(account))


@router.post("", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: CredentialsRequest,
    db: Database = Depends(get_db),
    settings: ServerSettings = Depends(get_settings),
) -> AuthResponse:
    """Create an account and sign it in."""
    try:
        account = db.create_account(request.email, ph.hash(request.password))
    except IntegrityError as e:
        raise ApiError(
            status.HTTP_409_CONFLICT,
            "This email is already registered.",
            "email-taken",
        ) from e
    logger.info("Registered account %s", account.uuid)
    return _issue_token(db, settings, account)


@router.post("/sign_in", response_model=AuthResponse)
def sign_in(
    request: CredentialsRequest,
    db: Database = Depends(get_db),
    settings: ServerSettings = Depends(get_settings),
) -> AuthResponse:
    """Exchange email and password for a bearer token."""
    account = db.get_account_by_email(request.email)
    password_hash = account.password_hash if account is not None else _DUMMY_HASH
    try:
        ph.verify(password_hash, request.password)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError) as e:
        raise InvalidAuthError() from e
    if account is None:
        raise InvalidAuthError()
    return _issue_token(db, settings, account)


@router.post("/sign_out", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    db: Database = Depends(get_db),
    auth: Token = Depends(get_current_token),
) -> Response:
    """Revoke the token used for this request."""
    db.revoke_token(auth.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
