"""Scheduler for automatic maintenance tasks.

This module provides:
- Daily backups for accounts with a ``daily`` backup extension
- Daily cleanup of expired and revoked tokens, 30 minutes later
- Manual run functions for CLI usage
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from itemsync.core.types import BackupFrequency
from itemsync.server.backup import EXTENSION_CONTENT_TYPE, extension_frequency

if TYPE_CHECKING:
    from itemsync.server.backup import BackupDispatcher
    from itemsync.server.database import Database

logger = logging.getLogger(__name__)


def daily_backup_accounts(db: Database) -> list[str]:
    """List accounts that have a daily backup extension, in stable order."""
    accounts = {
        item.user_uuid
        for item in db.list_items(content_type=EXTENSION_CONTENT_TYPE)
        if extension_frequency(item) is BackupFrequency.DAILY
    }
    return sorted(accounts)


def run_daily_backups(db: Database, dispatcher: BackupDispatcher) -> tuple[int, int]:
    """Back up every live item of each account with a daily extension.

    A failing account is logged and skipped; the others still run.

    Returns:
        Tuple of (accounts_backed_up, items_written).
    """
    accounts = 0
    items = 0
    for account_uuid in daily_backup_accounts(db):
        try:
            items += dispatcher.backup_account(account_uuid)
        except Exception:
            logger.exception("Daily backup failed for account %s", account_uuid)
            continue
        accounts += 1

    if accounts > 0:
        logger.info("Daily backup completed: %d accounts, %d items", accounts, items)
    else:
        logger.debug("Daily backup: no accounts with a daily backup extension")
    return accounts, items


class MaintenanceScheduler:
    """Scheduler for automatic maintenance tasks.

    Runs daily:
    - Extension backups at ``hour:minute``
    - Token cleanup 30 minutes later
    """

    def __init__(
        self,
        db: Database,
        dispatcher: BackupDispatcher | None,
        hour: int = 3,
        minute: int = 0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            db: Database instance.
            dispatcher: Backup dispatcher (None disables the backup job).
            hour: Hour to run the backup job (0-23).
            minute: Minute to run the backup job (0-59).
        """
        self._db = db
        self._dispatcher = dispatcher
        self._hour = hour
        self._minute = minute
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        """True once started and until stopped."""
        return self._scheduler is not None

    def _cleanup_time(self) -> tuple[int, int]:
        """Hour and minute 30 minutes after the backup job."""
        total = (self._hour * 60 + self._minute + 30) % (24 * 60)
        return divmod(total, 60)

    def _backup_job(self) -> None:
        """Job function for scheduled backups."""
        if self._dispatcher is None:
            return
        logger.info("Starting scheduled daily backup")
        try:
            run_daily_backups(self._db, self._dispatcher)
        except Exception:
            logger.exception("Error during scheduled daily backup")

    def _cleanup_tokens_job(self) -> None:
        """Job function for scheduled token cleanup."""
        logger.info("Starting scheduled token cleanup")
        try:
            deleted = self._db.cleanup_expired_tokens()
            if deleted > 0:
                logger.info("Token cleanup: %d expired or revoked tokens deleted", deleted)
            else:
                logger.debug("Token cleanup: nothing to delete")
        except Exception:
            logger.exception("Error during scheduled token cleanup")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()

        if self._dispatcher is not None:
            self._scheduler.add_job(
                self._backup_job,
                trigger=CronTrigger(hour=self._hour, minute=self._minute),
                id="daily_backup",
                name="Daily extension backup",
                replace_existing=True,
            )

        cleanup_hour, cleanup_minute = self._cleanup_time()
        self._scheduler.add_job(
            self._cleanup_tokens_job,
            trigger=CronTrigger(hour=cleanup_hour, minute=cleanup_minute),
            id="token_cleanup",
            name="Daily token cleanup",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Maintenance scheduler started (backups daily at %02d:%02d)",
            self._hour,
            self._minute,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Maintenance scheduler stopped")

    def run_backups_now(self) -> tuple[int, int]:
        """Run the daily backup immediately (manual trigger).

        Returns:
            Tuple of (accounts_backed_up, items_written).
        """
        if self._dispatcher is None:
            return 0, 0
        return run_daily_backups(self._db, self._dispatcher)

    def cleanup_tokens_now(self) -> int:
        """Run the token cleanup immediately (manual trigger).

        Returns:
            Number of tokens deleted.
        """
        return self._db.cleanup_expired_tokens()
