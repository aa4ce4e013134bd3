import duckdb
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """Owns the single DuckDB connection and the lock that serialises it."""

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Initialize the ConnectionHandler with a database path and optional read-only mode.

        Parameters:
            db_path (Union[str, Path]): Path to the DuckDB database file or the string ":memory:" (case-insensitive) to use an in-memory database. File paths are resolved to an absolute Path.
            read_only (bool): Whether the connection should be opened in read-only mode.

        Attributes set:
            db_path_resolved (Path): Resolved Path or Path(":memory:") for in-memory usage.
            read_only (bool): Same value as the `read_only` parameter.
        """
        if isinstance(db_path, str) and db_path.lower() == ":memory:":
            self.db_path_resolved = Path(":memory:")
            logger.info("Using in-memory DuckDB database.")
        else:
            self.db_path_resolved = Path(db_path).resolve()
            logger.info(
                f"ConnectionHandler initialized for DB at: {self.db_path_resolved}"
            )

        self.read_only: bool = read_only
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path_resolved) == ":memory:"

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Provide an active DuckDB connection, creating and opening one if none exists.

        Raises:
            DatabaseConnectionError: If DuckDB fails to establish the connection.
        """
        with self._lock:
            if self._connection is None:
                try:
                    if not self.is_memory:
                        self.db_path_resolved.parent.mkdir(
                            parents=True, exist_ok=True
                        )

                    self._connection = duckdb.connect(
                        database=str(self.db_path_resolved),
                        read_only=self.read_only,
                    )
                    logger.info("Successfully connected to the database.")
                except (duckdb.Error, OSError) as e:
                    raise DatabaseConnectionError(
                        f"Failed to connect to database: {e}",
                        original_exception=e,
                    ) from e
            return self._connection

    def close_connection(self) -> None:
        """Closes the connection if it exists and sets it to None, allowing
        for reconnection."""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                    logger.info(
                        f"Database connection to {self.db_path_resolved} closed."
                    )
                except duckdb.Error as e:
                    logger.error(f"Error closing the database connection: {e}")
                finally:
                    self._connection = None

    @contextmanager
    def locked(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Hold the store lock for the duration of the block."""
        with self._lock:
            yield self.get_connection()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Run the block as one atomic unit of work under the store lock.

        Commits when the block finishes; on any exception the transaction is
        rolled back and the exception propagates unchanged.
        """
        with self._lock:
            conn = self.get_connection()
            conn.begin()
            try:
                yield conn
                conn.commit()
            except BaseException:
                self.rollback(conn)
                raise

    def rollback(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Roll back, logging (never raising) a failed rollback."""
        try:
            conn.rollback()
            logger.info("Transaction rolled back.")
        except duckdb.Error as rb_err:
            logger.error(f"Failed to rollback transaction: {rb_err}")