"""
CLI entry point for typecore.
"""

# Standard library imports
import logging
from pathlib import Path
from typing import Optional

# Third-party imports
import typer
from rich.console import Console
from rich.table import Table

# Local application imports
from typecore.config import get_settings
from typecore.db.database import TypingDatabase
from typecore.db.db_utils import backup_database
from typecore.exceptions import SerializationError, StorageError
from typecore.legacy_import import load_legacy_payload


console = Console()

app = typer.Typer(
    name="typecore",
    help="Typecore: storage and legacy migration for the typing tutor.",
    add_completion=False,
    rich_markup_mode="markdown",
)


_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to TYPECORE_DB_PATH or the platform data directory.",
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log at DEBUG level."
    ),
):
    """Configure logging for every command."""
    level = "DEBUG" if verbose else get_settings().log_level
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Resolve db path from the CLI flag, falling back to settings."""
    if db is not None:
        return db
    return get_settings().db_path


def _fail(message: str) -> None:
    console.print(f"[bold red]Error: {message}[/bold red]")
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Status / schema
# ---------------------------------------------------------------------------


@app.command()
def status(db: Optional[Path] = _db_option):
    """Show schema version, whether a legacy import is needed, and row counts."""
    db_path = _resolve_db_path(db)
    try:
        with TypingDatabase(db_path) as database:
            version = database.current_schema_version()
            latest = database.latest_schema_version
            needed = database.is_migration_needed()
            counts = database.row_counts()
    except StorageError as e:
        _fail(str(e))

    console.print(f"Database: [cyan]{db_path}[/cyan]")
    console.print(f"Schema version: [bold]{version}[/bold] (latest {latest})")
    console.print(
        f"Legacy import needed: [bold]{'yes' if needed else 'no'}[/bold]"
    )
    table = Table(title="Rows per table")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command()
def migrate(db: Optional[Path] = _db_option):
    """Apply pending schema migrations."""
    db_path = _resolve_db_path(db)
    try:
        database = TypingDatabase(db_path)
        try:
            version = database.ensure_schema()
        finally:
            database.close_connection()
    except StorageError as e:
        _fail(str(e))
    console.print(f"[green]Schema is at version {version}.[/green]")


@app.command()
def users(db: Optional[Path] = _db_option):
    """List all users."""
    db_path = _resolve_db_path(db)
    try:
        with TypingDatabase(db_path) as database:
            all_users = database.get_all_users()
    except StorageError as e:
        _fail(str(e))

    if not all_users:
        console.print("[yellow]No users found.[/yellow]")
        return
    table = Table(title="Users")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Avatar")
    table.add_column("Created")
    table.add_column("Last active")
    for user in all_users:
        table.add_row(
            str(user.id),
            user.name,
            user.avatar,
            user.created_at,
            user.last_active_at or "-",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Legacy import
# ---------------------------------------------------------------------------


@app.command("import-legacy")
def import_legacy(
    payload_file: Path = typer.Argument(  # noqa: B008
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSON export of the legacy data set.",
    ),
    db: Optional[Path] = _db_option,
    force: bool = typer.Option(
        False,
        "--force",
        help="Import even when the store already has users.",
    ),
    no_backup: bool = typer.Option(
        False, "--no-backup", help="Skip the pre-import backup."
    ),
):
    """
    Import a legacy payload into the store.

    Refuses to run when the store already holds users unless `--force` is
    given; re-running is safe either way since every write is insert-if-absent.
    """
    db_path = _resolve_db_path(db)
    try:
        payload = load_legacy_payload(payload_file)
    except SerializationError as e:
        _fail(str(e))

    if not no_backup and get_settings().backup_before_import:
        backup_path = backup_database(db_path)
        if backup_path != db_path:
            console.print(f"Backup written to [cyan]{backup_path}[/cyan]")

    try:
        with TypingDatabase(db_path) as database:
            if not force and not database.is_migration_needed():
                console.print(
                    "[yellow]Store already contains users; nothing imported. "
                    "Use --force to import anyway.[/yellow]"
                )
                return
            report = database.migrate_from_legacy_payload(payload)
    except StorageError as e:
        _fail(f"Legacy import failed: {e}")

    table = Table(title="Legacy import")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in report.as_dict().items():
        table.add_row(name, str(count))
    console.print(table)
    console.print("[green]Legacy import complete.[/green]")


@app.command()
def backup(db: Optional[Path] = _db_option):
    """Copy the store file into its backups directory."""
    db_path = _resolve_db_path(db)
    backup_path = backup_database(db_path)
    if backup_path == db_path:
        _fail(f"No database file at {db_path}")
    console.print(f"[green]Backup written to {backup_path}[/green]")


if __name__ == "__main__":
    app()
