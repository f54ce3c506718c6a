"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from itemsync.core.config import ServerSettings
from itemsync.server.api.errors import ApiError, InvalidAuthError
from itemsync.server.backup import BackupDispatcher
from itemsync.server.database import Database
from itemsync.server.models import Token
from itemsync.server.sync import SyncOrchestrator

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_settings(request: Request) -> ServerSettings:
    """Get server settings from app state."""
    settings: ServerSettings = request.app.state.settings
    return settings


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the sync orchestrator from app state."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_backups(request: Request) -> BackupDispatcher:
    """Get the backup dispatcher from app state."""
    backups: BackupDispatcher | None = request.app.state.backups
    if backups is None:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Backup storage not configured.",
            "backup-unavailable",
        )
    return backups


def get_current_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Token:
    """Validate bearer token and return Token object.

    Runs before any handler work, so an unauthenticated request never
    touches items.
    """
    if credentials is None:
        raise InvalidAuthError()
    token = get_db(request).validate_token(credentials.credentials)
    if token is None:
        raise InvalidAuthError()
    return token
