"""Tests for the maintenance scheduler."""

from __future__ import annotations

import base64
import json
import uuid
from collections.abc import Generator
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from itemsync.server.backup import BackupDispatcher, LocalFSBackupStorage, backup_key
from itemsync.server.database import Database
from itemsync.server.models import Account
from itemsync.server.scheduler import (
    MaintenanceScheduler,
    daily_backup_accounts,
    run_daily_backups,
)


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def storage(tmp_path: Path) -> LocalFSBackupStorage:
    """Create a test backup storage."""
    return LocalFSBackupStorage(tmp_path / "backups")


@pytest.fixture
def dispatcher(
    db: Database, storage: LocalFSBackupStorage
) -> Generator[BackupDispatcher, None, None]:
    """Create a backup dispatcher."""
    backups = BackupDispatcher(db, storage, max_workers=1)
    yield backups
    backups.shutdown()


def add_extension(db: Database, account: Account, frequency: str) -> None:
    body = base64.b64encode(json.dumps({"frequency": frequency}).encode()).decode()
    db.upsert_item(
        account.uuid, str(uuid.uuid4()), content="000" + body, content_type="SF|Extension"
    )


class TestRunDailyBackups:
    """Tests for run_daily_backups."""

    def test_backs_up_daily_accounts_only(
        self, db: Database, tmp_path: Path, dispatcher: BackupDispatcher
    ) -> None:
        """Only accounts with a daily extension are backed up."""
        daily = db.create_account("daily@example.com", "hash")
        realtime = db.create_account("realtime@example.com", "hash")
        add_extension(db, daily, "daily")
        add_extension(db, realtime, "realtime")
        note, _ = db.upsert_item(daily.uuid, str(uuid.uuid4()), content="c")
        other, _ = db.upsert_item(realtime.uuid, str(uuid.uuid4()), content="c")

        assert daily_backup_accounts(db) == [daily.uuid]

        accounts, items = run_daily_backups(db, dispatcher)

        assert accounts == 1
        assert items == 2  # the note and the extension itself
        assert (tmp_path / "backups" / backup_key(daily.uuid, note.uuid)).exists()
        assert not (tmp_path / "backups" / backup_key(realtime.uuid, other.uuid)).exists()

    def test_nothing_to_do(self, db: Database, dispatcher: BackupDispatcher) -> None:
        """No daily extensions means no backups."""
        assert run_daily_backups(db, dispatcher) == (0, 0)

    def test_failing_account_is_skipped(self, db: Database) -> None:
        """One failing account does not stop the others."""
        first = db.create_account("a@example.com", "hash")
        second = db.create_account("b@example.com", "hash")
        add_extension(db, first, "daily")
        add_extension(db, second, "daily")

        dispatcher = MagicMock()
        dispatcher.backup_account.side_effect = [RuntimeError("boom"), 3]

        accounts, items = run_daily_backups(db, dispatcher)
        assert (accounts, items) == (1, 3)
        assert dispatcher.backup_account.call_count == 2


class TestMaintenanceScheduler:
    """Tests for MaintenanceScheduler."""

    def test_start_and_stop(self, db: Database, dispatcher: BackupDispatcher) -> None:
        """start() schedules both jobs; stop() tears the scheduler down."""
        scheduler = MaintenanceScheduler(db, dispatcher, hour=2, minute=45)
        scheduler.start()
        try:
            assert scheduler.running
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}  # type: ignore[union-attr]
            assert job_ids == {"daily_backup", "token_cleanup"}
        finally:
            scheduler.stop()
        assert not scheduler.running

    def test_start_idempotent(self, db: Database, dispatcher: BackupDispatcher) -> None:
        """Starting twice keeps the same scheduler."""
        scheduler = MaintenanceScheduler(db, dispatcher)
        scheduler.start()
        try:
            first = scheduler._scheduler
            scheduler.start()
            assert scheduler._scheduler is first
        finally:
            scheduler.stop()

    def test_no_backup_job_without_dispatcher(self, db: Database) -> None:
        """Without backups only token cleanup is scheduled."""
        scheduler = MaintenanceScheduler(db, None)
        scheduler.start()
        try:
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}  # type: ignore[union-attr]
            assert job_ids == {"token_cleanup"}
        finally:
            scheduler.stop()
        assert scheduler.run_backups_now() == (0, 0)

    @pytest.mark.parametrize(
        "hour,minute,expected",
        [(3, 0, (3, 30)), (2, 45, (3, 15)), (23, 40, (0, 10))],
    )
    def test_cleanup_runs_thirty_minutes_later(
        self, db: Database, hour: int, minute: int, expected: tuple[int, int]
    ) -> None:
        """Token cleanup time wraps past the hour and midnight."""
        scheduler = MaintenanceScheduler(db, None, hour=hour, minute=minute)
        assert scheduler._cleanup_time() == expected

    def test_cleanup_tokens_now(self, db: Database) -> None:
        """Manual token cleanup deletes expired tokens."""
        account = db.create_account("alice@example.com", "hash")
        db.create_token(account.uuid, expires_in=timedelta(seconds=-1))
        scheduler = MaintenanceScheduler(db, None)
        assert scheduler.cleanup_tokens_now() == 1

    def test_run_backups_now(
        self, db: Database, storage: LocalFSBackupStorage, dispatcher: BackupDispatcher
    ) -> None:
        """Manual backups run the daily job immediately."""
        account = db.create_account("alice@example.com", "hash")
        add_extension(db, account, "daily")
        scheduler = MaintenanceScheduler(db, dispatcher)
        assert scheduler.run_backups_now() == (1, 1)

    @patch("itemsync.server.scheduler.run_daily_backups")
    def test_backup_job_handles_exception(
        self, mock_run: MagicMock, db: Database, dispatcher: BackupDispatcher
    ) -> None:
        """Job errors are logged, not raised."""
        mock_run.side_effect = Exception("Test error")
        scheduler = MaintenanceScheduler(db, dispatcher)
        scheduler._backup_job()
        mock_run.assert_called_once()

    def test_cleanup_job_handles_exception(self, db: Database) -> None:
        """Token cleanup errors are logged, not raised."""
        broken = MagicMock()
        broken.cleanup_expired_tokens.side_effect = Exception("Test error")
        scheduler = MaintenanceScheduler(broken, None)
        scheduler._cleanup_tokens_job()
        broken.cleanup_expired_tokens.assert_called_once()
