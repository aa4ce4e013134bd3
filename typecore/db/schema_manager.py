import duckdb
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .connection import ConnectionHandler
from . import schema
from ..exceptions import SchemaMigrationError

logger = logging.getLogger(__name__)


class SchemaManager:
    """Tracks the applied schema version and applies pending migrations."""

    def __init__(
        self,
        handler: ConnectionHandler,
        migrations: Optional[List[Tuple[int, schema.MigrationStep]]] = None,
    ):
        """
        Initializes the SchemaManager with a connection handler.

        Args:
            handler: The ConnectionHandler instance for the database.
            migrations: Ordered (version, step) pairs; defaults to schema.MIGRATIONS.
        """
        self._handler = handler
        self._migrations = list(
            schema.MIGRATIONS if migrations is None else migrations
        )
        versions = [version for version, _ in self._migrations]
        if versions != sorted(set(versions)) or any(v < 1 for v in versions):
            raise ValueError(
                f"Schema migrations must have unique, ascending, positive versions: {versions}"
            )

    @property
    def latest_version(self) -> int:
        return self._migrations[-1][0] if self._migrations else 0

    def current_version(self) -> int:
        """
        Return the highest applied schema version, or 0 if none is recorded.

        Raises:
            SchemaMigrationError: If the version ledger cannot be read.
        """
        try:
            with self._handler.locked() as conn:
                return self._read_version(conn)
        except duckdb.Error as e:
            logger.error(f"Error reading schema version: {e}")
            raise SchemaMigrationError(
                f"Failed to read schema version: {e}", original_exception=e
            ) from e

    def _read_version(self, conn: duckdb.DuckDBPyConnection) -> int:
        exists = conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = 'schema_version';"
        ).fetchone()
        if not exists or exists[0] == 0:
            return 0
        row = conn.execute(
            "SELECT COALESCE(MAX(version), 0) FROM schema_version;"
        ).fetchone()
        return int(row[0]) if row else 0

    def ensure_up_to_date(self) -> int:
        """
        Apply every migration newer than the recorded version, in ascending
        order, each inside its own transaction together with its ledger row.
        Safe to call on every start. Skipped for read-only file stores.

        Returns:
            int: The schema version after the call.

        Raises:
            SchemaMigrationError: If any step fails. Earlier steps stay
                applied; the failing step is rolled back entirely.
        """
        if self._handler.read_only and not self._handler.is_memory:
            logger.warning(
                "Attempting to migrate schema in read-only mode. Skipping."
            )
            return self.current_version()

        with self._handler.locked() as conn:
            try:
                conn.execute(schema.SCHEMA_VERSION_TABLE_SQL)
                current = self._read_version(conn)
            except duckdb.Error as e:
                logger.error(f"Error preparing schema version ledger: {e}")
                raise SchemaMigrationError(
                    f"Failed to prepare schema version ledger: {e}",
                    original_exception=e,
                ) from e

            for version, step in self._migrations:
                if version <= current:
                    continue
                self._apply(version, step)
                current = version

        logger.info(
            f"Database schema at {self._handler.db_path_resolved} is at version {current}."
        )
        return current

    def _apply(self, version: int, step: schema.MigrationStep) -> None:
        try:
            with self._handler.transaction() as conn:
                step(conn)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?);",
                    (version, datetime.now(timezone.utc).isoformat()),
                )
        except duckdb.Error as e:
            logger.error(f"Error applying schema migration v{version}: {e}")
            raise SchemaMigrationError(
                f"Failed to apply schema migration v{version}: {e}",
                original_exception=e,
            ) from e
        logger.info(f"Applied schema migration v{version}.")

    def applied_versions(self) -> List[tuple]:
        """Return (version, applied_at) rows from the ledger, oldest first."""
        try:
            with self._handler.locked() as conn:
                if self._read_version(conn) == 0:
                    return []
                return conn.execute(
                    "SELECT version, applied_at FROM schema_version ORDER BY version;"
                ).fetchall()
        except duckdb.Error as e:
            raise SchemaMigrationError(
                f"Failed to read schema version ledger: {e}",
                original_exception=e,
            ) from e
