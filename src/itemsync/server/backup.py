"""Asynchronous item backups.

This module provides:
- Abstract interface for backup storage
- LocalFSBackupStorage for development/testing
- S3BackupStorage for production (OVH, AWS, MinIO)
- BackupDispatcher: fire-and-forget backups on a thread pool
- Detection of backup extensions stored as ``SF|Extension`` items
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from itemsync.core.types import BackupFrequency
from itemsync.server.database import NotFoundError
from itemsync.server.schemas import item_to_response

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from itemsync.server.database import Database
    from itemsync.server.models import Item

logger = logging.getLogger(__name__)

EXTENSION_CONTENT_TYPE = "SF|Extension"

# Items whose content starts with this prefix carry base64 JSON, not ciphertext
UNENCRYPTED_PREFIX = "000"


class BackupStorage(ABC):
    """Abstract interface for backup storage."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where backups are stored."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store a backup object.

        Args:
            key: Object key, ``<account_uuid>/<item_uuid>.json``.
            data: Serialized item.
        """


def backup_key(account_uuid: str, item_uuid: str) -> str:
    """Build the storage key for an item backup."""
    return f"{account_uuid}/{item_uuid}.json"


class LocalFSBackupStorage(BackupStorage):
    """Local filesystem storage for development and testing.

    Backups are stored in one subdirectory per account.
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for backups.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _object_path(self, key: str) -> Path:
        """Get the file path for a key, refusing keys that escape the base."""
        path = (self._base_path / key).resolve()
        if not path.is_relative_to(self._base_path):
            raise ValueError(f"Invalid backup key: {key}")
        return path

    def put(self, key: str, data: bytes) -> None:
        """Store a backup object."""
        path = self._object_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class S3BackupStorage(BackupStorage):
    """S3-compatible storage for production (OVH, AWS, MinIO, etc.)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name.
            endpoint_url: Custom endpoint URL (for OVH, MinIO, etc.).
            access_key: AWS access key ID.
            secret_key: AWS secret access key.
            region: AWS region (default: us-east-1).
        """
        import boto3

        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    def _key(self, key: str) -> str:
        """Get the S3 key for a backup object."""
        return f"backups/{key}"

    def put(self, key: str, data: bytes) -> None:
        """Store a backup object."""
        self._client.put_object(
            Bucket=self._bucket,
            Key=self._key(key),
            Body=data,
            ContentType="application/json",
        )


def create_backup_storage(config: dict[str, str | None]) -> BackupStorage:
    """Factory function to create backup storage from configuration.

    Args:
        config: Storage configuration dict with keys:
            - type: "local" or "s3"
            - For local: local_path
            - For S3: bucket, endpoint_url, access_key, secret_key, region

    Returns:
        Configured BackupStorage instance.

    Raises:
        ValueError: If storage type is unknown.
    """
    storage_type = config.get("type", "local")

    if storage_type == "local":
        return LocalFSBackupStorage(config.get("local_path") or "./backups")

    if storage_type == "s3":
        bucket = config.get("bucket")
        if not bucket:
            raise ValueError("S3 storage requires 'bucket' configuration")
        return S3BackupStorage(
            bucket=bucket,
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            region=config.get("region") or "us-east-1",
        )

    raise ValueError(f"Unknown storage type: {storage_type}")


def extension_frequency(item: Item) -> BackupFrequency | None:
    """Read the backup frequency of an unencrypted extension item.

    Returns:
        The frequency, or None if the item is not a readable backup
        extension.
    """
    if item.deleted or item.content_type != EXTENSION_CONTENT_TYPE or not item.content:
        return None
    if not item.content.startswith(UNENCRYPTED_PREFIX):
        return None
    try:
        data = json.loads(base64.b64decode(item.content[len(UNENCRYPTED_PREFIX):]))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        return BackupFrequency(data.get("frequency"))
    except ValueError:
        return None


class BackupDispatcher:
    """Copies items to backup storage off the request path.

    Usage:
        dispatcher = BackupDispatcher(db, storage)
        future = dispatcher.submit(account_uuid, item_uuid)
        ...
        dispatcher.shutdown()
    """

    def __init__(self, db: Database, storage: BackupStorage, max_workers: int = 2) -> None:
        """Initialize the dispatcher.

        Args:
            db: Database instance.
            storage: Backup storage instance.
            max_workers: Number of backup threads.
        """
        self._db = db
        self._storage = storage
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="itemsync-backup"
        )

    def backup_item(self, account_uuid: str, item_uuid: str) -> bool:
        """Copy one item to storage, synchronously.

        Returns:
            True if a copy was written, False if the item is gone.
        """
        try:
            item = self._db.get_item(account_uuid, item_uuid)
        except NotFoundError:
            logger.warning("Backup skipped: item %s no longer exists", item_uuid)
            return False
        data = item_to_response(item).model_dump_json().encode("utf-8")
        self._storage.put(backup_key(account_uuid, item_uuid), data)
        logger.debug("Backed up item %s for account %s", item_uuid, account_uuid)
        return True

    def backup_account(self, account_uuid: str) -> int:
        """Copy every live item of an account, synchronously.

        Returns:
            Number of items written.
        """
        count = 0
        for item in self._db.list_items(account_uuid=account_uuid):
            data = item_to_response(item).model_dump_json().encode("utf-8")
            self._storage.put(backup_key(account_uuid, item.uuid), data)
            count += 1
        logger.info("Backed up %d items for account %s", count, account_uuid)
        return count

    def _run(self, account_uuid: str, item_uuid: str) -> bool:
        """Worker entry point; failures are logged, never raised."""
        try:
            return self.backup_item(account_uuid, item_uuid)
        except Exception:
            logger.exception("Backup of item %s failed", item_uuid)
            return False

    def submit(self, account_uuid: str, item_uuid: str) -> Future[bool]:
        """Schedule a backup of one item and return immediately."""
        return self._executor.submit(self._run, account_uuid, item_uuid)

    def submit_many(self, account_uuid: str, item_uuids: Iterable[str]) -> list[Future[bool]]:
        """Schedule backups of several items."""
        return [self.submit(account_uuid, item_uuid) for item_uuid in item_uuids]

    def realtime_enabled(self, account_uuid: str) -> bool:
        """Check whether an account has a realtime backup extension."""
        extensions = self._db.list_items(
            account_uuid=account_uuid, content_type=EXTENSION_CONTENT_TYPE
        )
        return any(extension_frequency(e) is BackupFrequency.REALTIME for e in extensions)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for pending backups."""
        self._executor.shutdown(wait=wait)
