"""Command-line interface for the itemsync server.

Commands:
- serve: Run the HTTP server
- create-account: Create an account from the command line
- run-backups: Run the daily extension backups now
- cleanup-tokens: Delete expired and revoked tokens now
"""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path

import click

from itemsync.core.config import ServerSettings


def _load_settings(db_path: str | None, backup_path: str | None = None) -> ServerSettings:
    """Read settings from the environment, then apply command-line overrides."""
    settings = ServerSettings.from_env()
    overrides: dict[str, Path] = {}
    if db_path:
        overrides["db_path"] = Path(db_path)
    if backup_path:
        overrides["backup_path"] = Path(backup_path)
    return dataclasses.replace(settings, **overrides) if overrides else settings


def _require_db(settings: ServerSettings) -> None:
    if not settings.db_path.exists():
        click.echo(f"Error: Database not found: {settings.db_path}", err=True)
        click.echo("Make sure the server has been run at least once.", err=True)
        sys.exit(1)


db_path_option = click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: ITEMSYNC_DB_PATH or ./itemsync.db).",
)


@click.group()
@click.version_option(package_name="itemsync")
def cli() -> None:
    """itemsync - multi-device item synchronization server."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
@db_path_option
def serve(host: str, port: int, db_path: str | None) -> None:
    """Run the itemsync HTTP server.

    Settings come from ITEMSYNC_* environment variables; --db-path
    overrides ITEMSYNC_DB_PATH.
    """
    import os

    import uvicorn

    if db_path:
        os.environ["ITEMSYNC_DB_PATH"] = db_path

    click.echo(f"Starting itemsync server on {host}:{port}")
    uvicorn.run("itemsync.server.app:app_factory", factory=True, host=host, port=port)


@cli.command("create-account")
@click.argument("email")
@click.password_option(help="Account password (prompted if omitted).")
@db_path_option
def create_account(email: str, password: str, db_path: str | None) -> None:
    """Create an account with EMAIL."""
    from sqlalchemy.exc import IntegrityError

    from itemsync.server.api.auth import ph
    from itemsync.server.database import Database

    settings = _load_settings(db_path)
    db = Database(settings.db_path)
    try:
        account = db.create_account(email, ph.hash(password))
    except IntegrityError:
        click.echo(f"Error: An account already exists for {email}", err=True)
        sys.exit(1)
    finally:
        db.close()
    click.echo(f"Created account {account.uuid} ({account.email})")


@cli.command("run-backups")
@db_path_option
@click.option(
    "--backup-path",
    type=click.Path(),
    default=None,
    help="Local backup directory (default: ITEMSYNC_BACKUP_PATH or ./backups).",
)
def run_backups(db_path: str | None, backup_path: str | None) -> None:
    """Back up every account that has a daily backup extension.

    This command can be run manually or via cron instead of the
    built-in scheduler.
    """
    from itemsync.server.backup import BackupDispatcher, create_backup_storage
    from itemsync.server.database import Database
    from itemsync.server.scheduler import run_daily_backups

    settings = _load_settings(db_path, backup_path)
    _require_db(settings)

    storage = create_backup_storage(settings.storage_config())
    click.echo(f"Database: {settings.db_path}")
    click.echo(f"Backups: {storage.location}")

    db = Database(settings.db_path)
    dispatcher = BackupDispatcher(db, storage, max_workers=1)
    try:
        accounts, items = run_daily_backups(db, dispatcher)
        if accounts > 0:
            click.echo(f"Backed up {items} items for {accounts} accounts.")
        else:
            click.echo("No accounts with a daily backup extension.")
    finally:
        dispatcher.shutdown()
        db.close()


@cli.command("cleanup-tokens")
@db_path_option
def cleanup_tokens(db_path: str | None) -> None:
    """Delete expired and revoked tokens."""
    from itemsync.server.database import Database

    settings = _load_settings(db_path)
    _require_db(settings)

    db = Database(settings.db_path)
    try:
        deleted = db.cleanup_expired_tokens()
    finally:
        db.close()
    click.echo(f"Deleted {deleted} tokens.")


if __name__ == "__main__":
    cli()
