"""Tests for backup storage and the backup dispatcher."""

from __future__ import annotations

import base64
import json
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from itemsync.core.types import BackupFrequency
from itemsync.server.backup import (
    BackupDispatcher,
    LocalFSBackupStorage,
    S3BackupStorage,
    backup_key,
    create_backup_storage,
    extension_frequency,
)
from itemsync.server.database import Database
from itemsync.server.models import Account


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
def storage(tmp_path: Path) -> LocalFSBackupStorage:
    """Create a local backup storage."""
    return LocalFSBackupStorage(tmp_path / "backups")


@pytest.fixture
def dispatcher(
    db: Database, storage: LocalFSBackupStorage
) -> Generator[BackupDispatcher, None, None]:
    """Create a dispatcher writing to local storage."""
    backups = BackupDispatcher(db, storage, max_workers=1)
    yield backups
    backups.shutdown()


def extension_content(payload: object) -> str:
    return "000" + base64.b64encode(json.dumps(payload).encode()).decode()


class TestLocalFSBackupStorage:
    """Tests for LocalFSBackupStorage."""

    def test_put(self, storage: LocalFSBackupStorage, tmp_path: Path) -> None:
        """put() writes the bytes under the account directory."""
        storage.put("acct/item.json", b"{}")
        assert (tmp_path / "backups" / "acct" / "item.json").read_bytes() == b"{}"

    def test_put_overwrites(self, storage: LocalFSBackupStorage, tmp_path: Path) -> None:
        """A later backup of the same item replaces the earlier one."""
        storage.put("acct/item.json", b"old")
        storage.put("acct/item.json", b"new")
        assert (tmp_path / "backups" / "acct" / "item.json").read_bytes() == b"new"

    def test_rejects_escaping_keys(self, storage: LocalFSBackupStorage) -> None:
        """Keys cannot point outside the base directory."""
        with pytest.raises(ValueError, match="Invalid backup key"):
            storage.put("../outside.json", b"{}")

    def test_location(self, storage: LocalFSBackupStorage) -> None:
        """location describes the directory."""
        assert storage.location.startswith("Local filesystem: ")


class TestS3BackupStorage:
    """Tests for S3BackupStorage using moto mock."""

    @pytest.fixture
    def s3_client(self) -> Generator[Any, None, None]:
        """Set up moto mock for S3."""
        pytest.importorskip("moto")
        import boto3
        from moto import mock_aws

        with mock_aws():
            client = boto3.client("s3", region_name="us-east-1")
            client.create_bucket(Bucket="test-bucket")
            yield client

    @pytest.fixture
    def s3(self, s3_client: Any) -> S3BackupStorage:
        """Create an S3BackupStorage instance for testing."""
        return S3BackupStorage(bucket="test-bucket", region="us-east-1")

    def test_put(self, s3: S3BackupStorage, s3_client: Any) -> None:
        """Objects are stored as JSON under the backups/ prefix."""
        s3.put("acct/item.json", b'{"a": 1}')
        response = s3_client.get_object(Bucket="test-bucket", Key="backups/acct/item.json")
        assert response["Body"].read() == b'{"a": 1}'
        assert response["ContentType"] == "application/json"

    def test_location(self, s3: S3BackupStorage) -> None:
        """location names the bucket."""
        assert s3.location == "S3: s3://test-bucket"


class TestCreateBackupStorage:
    """Tests for create_backup_storage."""

    def test_local(self, tmp_path: Path) -> None:
        """type=local builds LocalFSBackupStorage."""
        storage = create_backup_storage({"type": "local", "local_path": str(tmp_path / "b")})
        assert isinstance(storage, LocalFSBackupStorage)

    def test_s3_requires_bucket(self) -> None:
        """type=s3 without a bucket is rejected."""
        with pytest.raises(ValueError, match="bucket"):
            create_backup_storage({"type": "s3"})

    def test_unknown_type(self) -> None:
        """Unknown storage types are rejected."""
        with pytest.raises(ValueError, match="Unknown storage type"):
            create_backup_storage({"type": "ftp"})


class TestExtensionFrequency:
    """Tests for extension_frequency."""

    def make(self, db: Database, account: Account, content: str | None, **kw: object):
        item, _ = db.upsert_item(
            account.uuid,
            str(uuid.uuid4()),
            content=content,
            content_type=kw.pop("content_type", "SF|Extension"),  # type: ignore[arg-type]
            deleted=bool(kw.pop("deleted", False)),
        )
        return item

    @pytest.mark.parametrize("frequency", ["realtime", "daily"])
    def test_reads_frequency(self, db: Database, account: Account, frequency: str) -> None:
        """Unencrypted extensions expose their frequency."""
        item = self.make(db, account, extension_content({"frequency": frequency}))
        assert extension_frequency(item) is BackupFrequency(frequency)

    def test_encrypted_content(self, db: Database, account: Account) -> None:
        """Encrypted extensions cannot be read."""
        assert extension_frequency(self.make(db, account, "002ciphertext")) is None

    def test_not_an_extension(self, db: Database, account: Account) -> None:
        """Other content types are ignored."""
        item = self.make(
            db, account, extension_content({"frequency": "daily"}), content_type="Note"
        )
        assert extension_frequency(item) is None

    @pytest.mark.parametrize(
        "content",
        ["000!!!", extension_content(["daily"]), extension_content({"frequency": "hourly"})],
    )
    def test_unreadable(self, db: Database, account: Account, content: str) -> None:
        """Bad base64, non-object JSON and unknown frequencies give None."""
        assert extension_frequency(self.make(db, account, content)) is None

    def test_deleted(self, db: Database, account: Account) -> None:
        """Deleted extensions are ignored."""
        item = self.make(db, account, extension_content({"frequency": "daily"}), deleted=True)
        assert extension_frequency(item) is None


class TestBackupDispatcher:
    """Tests for BackupDispatcher."""

    def test_backup_item_writes_json(
        self,
        db: Database,
        account: Account,
        tmp_path: Path,
        dispatcher: BackupDispatcher,
    ) -> None:
        """backup_item stores the item as served in responses."""
        item, _ = db.upsert_item(account.uuid, str(uuid.uuid4()), content="c", content_type="Note")
        assert dispatcher.backup_item(account.uuid, item.uuid) is True

        path = tmp_path / "backups" / backup_key(account.uuid, item.uuid)
        data = json.loads(path.read_bytes())
        assert data["uuid"] == item.uuid
        assert data["user_uuid"] == account.uuid
        assert data["content"] == "c"

    def test_backup_missing_item(
        self, account: Account, dispatcher: BackupDispatcher
    ) -> None:
        """A vanished item is skipped."""
        assert dispatcher.backup_item(account.uuid, str(uuid.uuid4())) is False

    def test_submit_is_asynchronous(
        self,
        db: Database,
        account: Account,
        tmp_path: Path,
        dispatcher: BackupDispatcher,
    ) -> None:
        """submit returns a future that completes the backup."""
        item, _ = db.upsert_item(account.uuid, str(uuid.uuid4()), content="c")
        future = dispatcher.submit(account.uuid, item.uuid)
        assert future.result(timeout=10) is True
        assert (tmp_path / "backups" / backup_key(account.uuid, item.uuid)).exists()

    def test_submit_logs_failures(self, db: Database, account: Account) -> None:
        """Storage errors are logged, never raised to the caller."""
        broken = MagicMock()
        broken.put.side_effect = OSError("disk full")
        backups = BackupDispatcher(db, broken, max_workers=1)
        try:
            item, _ = db.upsert_item(account.uuid, str(uuid.uuid4()))
            assert backups.submit(account.uuid, item.uuid).result(timeout=10) is False
        finally:
            backups.shutdown()

    def test_backup_account(
        self,
        db: Database,
        account: Account,
        tmp_path: Path,
        dispatcher: BackupDispatcher,
    ) -> None:
        """backup_account copies every live item of the account."""
        live = [db.upsert_item(account.uuid, str(uuid.uuid4()))[0] for _ in range(3)]
        db.upsert_item(account.uuid, str(uuid.uuid4()), deleted=True)

        assert dispatcher.backup_account(account.uuid) == 3
        for item in live:
            assert (tmp_path / "backups" / backup_key(account.uuid, item.uuid)).exists()

    def test_realtime_enabled(
        self, db: Database, account: Account, dispatcher: BackupDispatcher
    ) -> None:
        """Only a realtime extension enables realtime backups."""
        db.upsert_item(
            account.uuid,
            str(uuid.uuid4()),
            content=extension_content({"frequency": "daily"}),
            content_type="SF|Extension",
        )
        assert dispatcher.realtime_enabled(account.uuid) is False

        db.upsert_item(
            account.uuid,
            str(uuid.uuid4()),
            content=extension_content({"frequency": "realtime"}),
            content_type="SF|Extension",
        )
        assert dispatcher.realtime_enabled(account.uuid) is True
