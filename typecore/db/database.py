"""
DuckDB persistence for typecore.
Implements the TypingDatabase facade over the connection, schema manager,
entity repositories and legacy importer.
"""

import duckdb
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from . import db_utils
from .connection import ConnectionHandler
from .repositories import (
    ActivityRepository,
    CourseProgressRepository,
    DailyResultRepository,
    LessonProgressRepository,
    SettingsRepository,
    SnippetRepository,
    UserRepository,
    UserStatsRepository,
)
from .schema_manager import SchemaManager
from ..constants import ALL_TABLES
from ..legacy_import import LegacyImporter, LegacyImportReport
from ..models import (
    CourseProgress,
    CustomSnippet,
    DailyActivity,
    DailyTestResult,
    LessonProgress,
    MigrationPayload,
    UserProfile,
    UserStats,
)

logger = logging.getLogger(__name__)


class TypingDatabase:
    """
    Acts as a Facade for the storage subsystem and is the one storage handle
    an application creates. Every repository shares its ConnectionHandler,
    so all operations are serialised by the same lock.

    Intended for use as a context manager: entering opens the store and
    brings the schema up to date.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Args:
            db_path (str | Path): Path to the database file. Use ':memory:' for an in-memory database.
            read_only (bool): If True, open the database in read-only mode.
        """
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)

        self.users = UserRepository(self._handler)
        self.settings = SettingsRepository(self._handler)
        self.stats = UserStatsRepository(self._handler)
        self.lesson_progress = LessonProgressRepository(self._handler)
        self.course_progress = CourseProgressRepository(self._handler)
        self.snippets = SnippetRepository(self._handler)
        self.daily_results = DailyResultRepository(self._handler)
        self.activity = ActivityRepository(self._handler)
        self._importer = LegacyImporter(
            self._handler,
            users=self.users,
            settings=self.settings,
            stats=self.stats,
            lesson_progress=self.lesson_progress,
            course_progress=self.course_progress,
            snippets=self.snippets,
            activity=self.activity,
            daily_results=self.daily_results,
        )
        logger.info(
            f"TypingDatabase initialized for DB at: {self._handler.db_path_resolved}"
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "TypingDatabase":
        self.get_connection()
        self.ensure_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Ensures the connection is closed on exiting the context."""
        self.close_connection()

    # --- Schema ---

    def ensure_schema(self) -> int:
        """Apply pending migrations; returns the resulting schema version."""
        return self._schema_manager.ensure_up_to_date()

    def current_schema_version(self) -> int:
        return self._schema_manager.current_version()

    @property
    def latest_schema_version(self) -> int:
        """Highest version this build knows how to migrate to."""
        return self._schema_manager.latest_version

    def row_counts(self) -> Dict[str, int]:
        """Row count per table, in ALL_TABLES order."""
        counts: Dict[str, int] = {}
        try:
            with self._handler.locked() as conn:
                for table in ALL_TABLES:
                    row = conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()
                    counts[table] = row[0] if row else 0
        except duckdb.Error as e:
            logger.error(f"Error counting rows: {e}")
            raise db_utils.to_storage_error("Failed to count rows", e) from e
        return counts

    # --- Users ---

    def get_all_users(self) -> List[UserProfile]:
        return self.users.get_all()

    def get_user(self, user_id: int) -> Optional[UserProfile]:
        return self.users.get(user_id)

    def create_user(
        self, id: int, name: str, avatar: str, created_at: str
    ) -> UserProfile:
        user = UserProfile(id=id, name=name, avatar=avatar, created_at=created_at)
        self.users.create(user)
        return user

    def update_user(
        self,
        user_id: int,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        last_active_at: Optional[str] = None,
    ) -> None:
        self.users.update(
            user_id, name=name, avatar=avatar, last_active_at=last_active_at
        )

    def delete_user(self, user_id: int) -> None:
        self.users.delete(user_id)

    # --- Settings ---

    def get_settings(self, user_id: int) -> Optional[str]:
        return self.settings.get(user_id)

    def save_settings(self, user_id: int, settings_json: str) -> None:
        self.settings.save(user_id, settings_json)

    # --- User stats ---

    def get_user_stats(self, user_id: int) -> Optional[UserStats]:
        return self.stats.get(user_id)

    def save_user_stats(self, user_id: int, stats: UserStats) -> None:
        self.stats.save(user_id, stats)

    # --- Lesson progress ---

    def get_all_lesson_progress(self, user_id: int) -> List[LessonProgress]:
        return self.lesson_progress.get_all(user_id)

    def save_lesson_progress(
        self, user_id: int, items: Sequence[LessonProgress]
    ) -> None:
        self.lesson_progress.save_all(user_id, items)

    # --- Course progress ---

    def get_all_course_progress(self, user_id: int) -> List[CourseProgress]:
        return self.course_progress.get_all(user_id)

    def save_course_progress(
        self, user_id: int, items: Sequence[CourseProgress]
    ) -> None:
        self.course_progress.save_all(user_id, items)

    def delete_course_progress(self, user_id: int, course_id: str) -> None:
        self.course_progress.delete(user_id, course_id)

    def delete_all_course_progress(self, user_id: int) -> None:
        self.course_progress.delete_all(user_id)

    # --- Custom snippets ---

    def get_snippets(self, user_id: int) -> List[CustomSnippet]:
        return self.snippets.get_all(user_id)

    def save_snippets(self, user_id: int, items: Sequence[CustomSnippet]) -> None:
        self.snippets.save_all(user_id, items)

    # --- Daily test results ---

    def get_daily_results(self) -> List[DailyTestResult]:
        return self.daily_results.get_all()

    def save_daily_results(self, items: Sequence[DailyTestResult]) -> None:
        self.daily_results.save_all(items)

    # --- Daily activity ---

    def get_activity(self, user_id: int) -> List[DailyActivity]:
        return self.activity.get_all(user_id)

    def save_activity(self, user_id: int, items: Sequence[DailyActivity]) -> None:
        self.activity.save_all(user_id, items)

    def delete_activity(self, user_id: int) -> None:
        self.activity.delete_all(user_id)

    # --- Legacy migration ---

    def is_migration_needed(self) -> bool:
        return self._importer.is_migration_needed()

    def migrate_from_legacy_payload(
        self, payload: MigrationPayload
    ) -> LegacyImportReport:
        return self._importer.migrate(payload)
