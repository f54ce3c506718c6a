"""Server configuration for itemsync.

Settings are read from ``ITEMSYNC_*`` environment variables with
sensible defaults, so the same values drive the FastAPI app, the
maintenance scheduler and the CLI.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SYNC_LIMIT = 150
MAX_SYNC_LIMIT = 1000


@dataclass
class ServerSettings:
    """Configuration for an itemsync server process.

    Attributes:
        db_path: Path to the SQLite database file.
        log_path: Path to the server log file.
        backup_path: Local directory for item backups (when S3 is not set).
        s3_bucket: S3 bucket for item backups. Enables S3 when set.
        s3_endpoint: Custom S3 endpoint URL (MinIO, OVH, ...).
        s3_access_key: S3 access key ID.
        s3_secret_key: S3 secret access key.
        s3_region: S3 region.
        sync_default_limit: Page size applied when a sync sends no limit.
        sync_max_limit: Upper bound for a client-requested page size.
        token_ttl_days: Lifetime of bearer tokens issued at sign in.
        backup_workers: Threads used for asynchronous backups.
        backup_hour: Hour of day (0-23) for the daily backup job.
    """

    db_path: Path = Path("itemsync.db")
    log_path: Path = Path("itemsync-server.log")
    backup_path: Path = Path("backups")
    s3_bucket: str | None = None
    s3_endpoint: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "us-east-1"
    sync_default_limit: int = DEFAULT_SYNC_LIMIT
    sync_max_limit: int = MAX_SYNC_LIMIT
    token_ttl_days: int = 30
    backup_workers: int = 2
    backup_hour: int = 3

    def __post_init__(self) -> None:
        """Normalize paths and validate limits."""
        self.db_path = Path(self.db_path)
        self.log_path = Path(self.log_path)
        self.backup_path = Path(self.backup_path)
        if self.sync_default_limit < 1:
            raise ValueError("sync_default_limit must be positive")
        if self.sync_max_limit < self.sync_default_limit:
            raise ValueError("sync_max_limit must be >= sync_default_limit")
        if not 0 <= self.backup_hour <= 23:
            raise ValueError("backup_hour must be between 0 and 23")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerSettings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            ServerSettings populated from the environment.
        """
        env = os.environ if environ is None else environ
        return cls(
            db_path=Path(env.get("ITEMSYNC_DB_PATH", "itemsync.db")),
            log_path=Path(env.get("ITEMSYNC_LOG_PATH", "itemsync-server.log")),
            backup_path=Path(env.get("ITEMSYNC_BACKUP_PATH", "backups")),
            s3_bucket=env.get("ITEMSYNC_S3_BUCKET") or None,
            s3_endpoint=env.get("ITEMSYNC_S3_ENDPOINT") or None,
            s3_access_key=env.get("ITEMSYNC_S3_ACCESS_KEY") or None,
            s3_secret_key=env.get("ITEMSYNC_S3_SECRET_KEY") or None,
            s3_region=env.get("ITEMSYNC_S3_REGION", "us-east-1"),
            sync_default_limit=int(
                env.get("ITEMSYNC_SYNC_DEFAULT_LIMIT", str(DEFAULT_SYNC_LIMIT))
            ),
            sync_max_limit=int(env.get("ITEMSYNC_SYNC_MAX_LIMIT", str(MAX_SYNC_LIMIT))),
            token_ttl_days=int(env.get("ITEMSYNC_TOKEN_TTL_DAYS", "30")),
            backup_workers=int(env.get("ITEMSYNC_BACKUP_WORKERS", "2")),
            backup_hour=int(env.get("ITEMSYNC_BACKUP_HOUR", "3")),
        )

    def storage_config(self) -> dict[str, str | None]:
        """Build the backup storage configuration dict.

        Returns:
            Config understood by ``create_backup_storage``.
        """
        # S3 storage if bucket is configured
        if self.s3_bucket:
            return {
                "type": "s3",
                "bucket": self.s3_bucket,
                "endpoint_url": self.s3_endpoint,
                "access_key": self.s3_access_key,
                "secret_key": self.s3_secret_key,
                "region": self.s3_region,
            }
        return {
            "type": "local",
            "local_path": str(self.backup_path),
        }

    def clamp_limit(self, limit: int | None) -> int:
        """Apply the default and the upper bound to a requested page size."""
        if limit is None or limit <= 0:
            return self.sync_default_limit
        return min(limit, self.sync_max_limit)
