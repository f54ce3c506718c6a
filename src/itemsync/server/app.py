"""FastAPI application for the itemsync server.

This module creates and configures the FastAPI application with:
- REST API for item sync, direct item operations and backups
- Account registration and bearer-token sessions
- A background scheduler for daily backups and token cleanup

Usage:
    uvicorn itemsync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from itemsync.core.config import ServerSettings
from itemsync.server.api.errors import ApiError, api_error_handler
from itemsync.server.api.router import router as api_router
from itemsync.server.backup import BackupDispatcher, BackupStorage, create_backup_storage
from itemsync.server.database import Database
from itemsync.server.scheduler import MaintenanceScheduler
from itemsync.server.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for itemsync
    root_logger = logging.getLogger("itemsync")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    backup_storage: BackupStorage | None = None,
    settings: ServerSettings | None = None,
    start_scheduler: bool = False,
) -> FastAPI:
    """Create FastAPI application with custom database and backup storage.

    Tests call this directly with isolated databases.

    Args:
        db: Database instance.
        backup_storage: Optional backup storage; without it backups are
            disabled and the backup route answers 503.
        settings: Server settings (defaults when omitted).
        start_scheduler: Run the maintenance scheduler during the lifespan.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or ServerSettings(db_path=db.path)
    backups = (
        BackupDispatcher(db, backup_storage, max_workers=settings.backup_workers)
        if backup_storage is not None
        else None
    )
    orchestrator = SyncOrchestrator(db, settings, backups)
    scheduler = MaintenanceScheduler(db, backups, hour=settings.backup_hour)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        logger.info("=" * 60)
        logger.info("itemsync Server Starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        if backup_storage:
            logger.info("  Backups:  %s", backup_storage.location)
        else:
            logger.info("  Backups:  None (backups disabled)")
        logger.info("  Logs:     %s", settings.log_path.absolute())
        logger.info("=" * 60)
        if start_scheduler:
            scheduler.start()

        yield

        # Shutdown
        logger.info("itemsync Server shutting down")
        scheduler.stop()
        if backups is not None:
            backups.shutdown(wait=True)

    application = FastAPI(
        title="itemsync Server",
        description="Multi-device item sync server",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.settings = settings
    application.state.backups = backups
    application.state.orchestrator = orchestrator
    application.state.scheduler = scheduler

    application.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    settings = ServerSettings.from_env()
    setup_logging(settings.log_path)
    return create_app(
        db=Database(settings.db_path),
        backup_storage=create_backup_storage(settings.storage_config()),
        settings=settings,
        start_scheduler=True,
    )
