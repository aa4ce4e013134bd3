"""
One repository per entity kind. All of them share the ConnectionHandler
(and therefore its lock) of the owning TypingDatabase.

Multi-row sets owned by a user are saved with full-replace semantics: the
caller always passes the complete current set, and the repository deletes
the old rows and inserts the new ones in one transaction.
"""

import duckdb
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from . import db_utils
from .connection import ConnectionHandler
from ..constants import USER_OWNED_TABLES
from ..models import (
    CourseProgress,
    CustomSnippet,
    DailyActivity,
    DailyTestResult,
    LessonProgress,
    UserProfile,
    UserStats,
)

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def _fetch(
        self, sql: str, params: Sequence[Any], error_message: str
    ) -> List[Dict[str, Any]]:
        try:
            with self._handler.locked() as conn:
                return db_utils.rows_to_dicts(conn.execute(sql, params))
        except duckdb.Error as e:
            logger.error(f"{error_message}: {e}")
            raise db_utils.to_storage_error(error_message, e) from e

    def _write(self, sql: str, params: Sequence[Any], error_message: str) -> None:
        """Run one statement; a single statement is atomic on its own."""
        try:
            with self._handler.locked() as conn:
                conn.execute(sql, params)
        except duckdb.Error as e:
            logger.error(f"{error_message}: {e}")
            raise db_utils.to_storage_error(error_message, e) from e

    def _replace(
        self,
        delete_sql: str,
        delete_params: Sequence[Any],
        insert_sql: str,
        params_list: List[Tuple],
        error_message: str,
    ) -> None:
        """Delete-then-insert inside one transaction."""
        try:
            with self._handler.transaction() as conn:
                conn.execute(delete_sql, delete_params)
                if params_list:
                    conn.executemany(insert_sql, params_list)
        except duckdb.Error as e:
            logger.error(f"{error_message}: {e}")
            raise db_utils.to_storage_error(error_message, e) from e


class UserRepository(_Repository):
    _SELECT_SQL = """
        SELECT id, name, avatar, created_at, last_active_at
        FROM users
    """
    _INSERT_SQL = """
        INSERT INTO users (id, name, avatar, created_at, last_active_at)
        VALUES (?, ?, ?, ?, ?)
    """
    _INSERT_IF_ABSENT_SQL = _INSERT_SQL + " ON CONFLICT DO NOTHING"

    def get_all(self) -> List[UserProfile]:
        rows = self._fetch(
            self._SELECT_SQL + " ORDER BY created_at, id;", [], "Failed to fetch users"
        )
        return [db_utils.db_row_to_model(UserProfile, row) for row in rows]

    def get(self, user_id: int) -> Optional[UserProfile]:
        rows = self._fetch(
            self._SELECT_SQL + " WHERE id = ?;",
            (user_id,),
            f"Failed to fetch user {user_id}",
        )
        if not rows:
            return None
        return db_utils.db_row_to_model(UserProfile, rows[0])

    def count(self) -> int:
        rows = self._fetch(
            "SELECT COUNT(*) AS n FROM users;", [], "Failed to count users"
        )
        return rows[0]["n"] if rows else 0

    def create(self, user: UserProfile) -> None:
        """
        Insert a new user.

        Raises:
            ConstraintViolation: If a user with the same id already exists.
        """
        self._write(
            self._INSERT_SQL,
            db_utils.user_to_db_params(user),
            f"Failed to create user {user.id}",
        )
        logger.info(f"Created user {user.id}.")

    def insert_if_absent(
        self, conn: duckdb.DuckDBPyConnection, user: UserProfile
    ) -> None:
        """Insert within the caller's transaction; an existing id is left untouched."""
        conn.execute(self._INSERT_IF_ABSENT_SQL, db_utils.user_to_db_params(user))

    def update(
        self,
        user_id: int,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        last_active_at: Optional[str] = None,
    ) -> None:
        """
        Partially update a user. Only the fields given a value are written;
        omitted fields keep their stored value.
        """
        assignments = []
        params: List[Any] = []
        for column, value in (
            ("name", name),
            ("avatar", avatar),
            ("last_active_at", last_active_at),
        ):
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        if not assignments:
            logger.debug(f"No fields to update for user {user_id}.")
            return
        params.append(user_id)
        self._write(
            f"UPDATE users SET {', '.join(assignments)} WHERE id = ?;",
            params,
            f"Failed to update user {user_id}",
        )

    def delete(self, user_id: int) -> None:
        """
        Delete a user and every row it owns.

        DuckDB has no ON DELETE CASCADE, so the owned rows are removed first in
        one transaction, then the user row itself.
        """
        error_message = f"Failed to delete user {user_id}"
        try:
            with self._handler.transaction() as conn:
                for table in USER_OWNED_TABLES:
                    conn.execute(f"DELETE FROM {table} WHERE user_id = ?;", (user_id,))
            with self._handler.locked() as conn:
                conn.execute("DELETE FROM users WHERE id = ?;", (user_id,))
        except duckdb.Error as e:
            logger.error(f"{error_message}: {e}")
            raise db_utils.to_storage_error(error_message, e) from e
        logger.info(f"Deleted user {user_id} and all owned data.")


class SettingsRepository(_Repository):
    _UPSERT_SQL = """
        INSERT INTO settings (user_id, settings_json) VALUES (?, ?)
        ON CONFLICT (user_id) DO UPDATE SET settings_json = EXCLUDED.settings_json;
    """
    _INSERT_IF_ABSENT_SQL = """
        INSERT INTO settings (user_id, settings_json) VALUES (?, ?)
        ON CONFLICT DO NOTHING;
    """

    def get(self, user_id: int) -> Optional[str]:
        """Return the stored settings blob, or None if the user has none."""
        rows = self._fetch(
            "SELECT settings_json FROM settings WHERE user_id = ?;",
            (user_id,),
            f"Failed to fetch settings for user {user_id}",
        )
        return rows[0]["settings_json"] if rows else None

    def save(self, user_id: int, settings_json: str) -> None:
        self._write(
            self._UPSERT_SQL,
            (user_id, settings_json),
            f"Failed to save settings for user {user_id}",
        )

    def insert_if_absent(
        self, conn: duckdb.DuckDBPyConnection, user_id: int, settings_json: str
    ) -> None:
        conn.execute(self._INSERT_IF_ABSENT_SQL, (user_id, settings_json))


class UserStatsRepository(_Repository):
    """UserStats plus the problem keys it owns."""

    # fmt: off
    _COLUMNS = """
        user_id, total_practice_time, total_words_typed, average_wpm,
        average_accuracy, average_true_accuracy, total_keystrokes,
        total_backspaces, total_correct_keystrokes, lessons_completed,
        current_streak, longest_streak, last_practice_date
    """
    _INSERT_SQL = f"""
        INSERT INTO user_stats ({_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """
    _UPSERT_SQL = _INSERT_SQL + """
        ON CONFLICT (user_id) DO UPDATE SET
            total_practice_time = EXCLUDED.total_practice_time,
            total_words_typed = EXCLUDED.total_words_typed,
            average_wpm = EXCLUDED.average_wpm,
            average_accuracy = EXCLUDED.average_accuracy,
            average_true_accuracy = EXCLUDED.average_true_accuracy,
            total_keystrokes = EXCLUDED.total_keystrokes,
            total_backspaces = EXCLUDED.total_backspaces,
            total_correct_keystrokes = EXCLUDED.total_correct_keystrokes,
            lessons_completed = EXCLUDED.lessons_completed,
            current_streak = EXCLUDED.current_streak,
            longest_streak = EXCLUDED.longest_streak,
            last_practice_date = EXCLUDED.last_practice_date;
    """
    # fmt: on
    _INSERT_IF_ABSENT_SQL = _INSERT_SQL + " ON CONFLICT DO NOTHING;"
    _INSERT_KEY_SQL = (
        "INSERT INTO problem_keys (user_id, key_char, error_count) VALUES (?, ?, ?)"
    )
    _INSERT_KEY_IF_ABSENT_SQL = _INSERT_KEY_SQL + " ON CONFLICT DO NOTHING;"

    def get(self, user_id: int) -> Optional[UserStats]:
        error_message = f"Failed to fetch stats for user {user_id}"
        rows = self._fetch(
            f"SELECT {self._COLUMNS} FROM user_stats WHERE user_id = ?;",
            (user_id,),
            error_message,
        )
        if not rows:
            return None
        key_rows = self._fetch(
            """
            SELECT key_char, error_count FROM problem_keys
            WHERE user_id = ?
            ORDER BY error_count DESC, key_char;
            """,
            (user_id,),
            error_message,
        )
        problem_keys = [(r["key_char"], r["error_count"]) for r in key_rows]
        return db_utils.db_row_to_stats(rows[0], problem_keys)

    def save(self, user_id: int, stats: UserStats) -> None:
        """Upsert the stats row and fully replace the user's problem keys."""
        error_message = f"Failed to save stats for user {user_id}"
        try:
            with self._handler.transaction() as conn:
                conn.execute(
                    self._UPSERT_SQL, db_utils.stats_to_db_params(user_id, stats)
                )
                conn.execute("DELETE FROM problem_keys WHERE user_id = ?;", (user_id,))
                key_params = db_utils.problem_keys_to_db_params_list(
                    user_id, stats.problem_keys
                )
                if key_params:
                    conn.executemany(self._INSERT_KEY_SQL, key_params)
        except duckdb.Error as e:
            logger.error(f"{error_message}: {e}")
            raise db_utils.to_storage_error(error_message, e) from e

    def insert_if_absent(
        self, conn: duckdb.DuckDBPyConnection, user_id: int, stats: UserStats
    ) -> None:
        conn.execute(
            self._INSERT_IF_ABSENT_SQL, db_utils.stats_to_db_params(user_id, stats)
        )
        for params in db_utils.problem_keys_to_db_params_list(
            user_id, stats.problem_keys
        ):
            conn.execute(self._INSERT_KEY_IF_ABSENT_SQL, params)


class _OwnedSetRepository(_Repository):
    """
    Base for row sets owned by one user and saved by full replace.

    Subclasses provide the table, the model, the selected columns (excluding
    user_id unless the model carries it), the insert statement and the
    marshalling function.
    """

    _table: str
    _entity: str
    _model: Type[BaseModel]
    _select_columns: str
    _order_by: str
    _insert_sql: str

    def _to_params(self, user_id: int, item: Any) -> Tuple:
        raise NotImplementedError

    def get_all(self, user_id: int) -> List[Any]:
        rows = self._fetch(
            f"SELECT {self._select_columns} FROM {self._table} "
            f"WHERE user_id = ? ORDER BY {self._order_by};",
            (user_id,),
            f"Failed to fetch {self._entity} for user {user_id}",
        )
        return [db_utils.db_row_to_model(self._model, row) for row in rows]

    def save_all(self, user_id: int, items: Sequence[Any]) -> None:
        """Replace every row the user owns in this table with `items`."""
        self._replace(
            f"DELETE FROM {self._table} WHERE user_id = ?;",
            (user_id,),
            self._insert_sql,
            [self._to_params(user_id, item) for item in items],
            f"Failed to save {self._entity} for user {user_id}",
        )
        logger.debug(f"Saved {len(items)} {self._entity} rows for user {user_id}.")

    def delete_all(self, user_id: int) -> None:
        self._write(
            f"DELETE FROM {self._table} WHERE user_id = ?;",
            (user_id,),
            f"Failed to delete {self._entity} for user {user_id}",
        )

    def insert_if_absent(
        self, conn: duckdb.DuckDBPyConnection, user_id: int, item: Any
    ) -> None:
        conn.execute(
            self._insert_sql + " ON CONFLICT DO NOTHING",
            self._to_params(user_id, item),
        )


class LessonProgressRepository(_OwnedSetRepository):
    _table = "lesson_progress"
    _entity = "lesson progress"
    _model = LessonProgress
    _select_columns = (
        "lesson_id, completed_tasks, total_tasks, best_wpm, average_accuracy, "
        "last_task_index, task_results_json"
    )
    _order_by = "lesson_id"
    _insert_sql = """
        INSERT INTO lesson_progress (user_id, lesson_id, completed_tasks, total_tasks,
                                     best_wpm, average_accuracy, last_task_index,
                                     task_results_json)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """

    def _to_params(self, user_id: int, item: LessonProgress) -> Tuple:
        return db_utils.lesson_progress_to_db_params(user_id, item)


class CourseProgressRepository(_OwnedSetRepository):
    _table = "course_progress"
    _entity = "course progress"
    _model = CourseProgress
    _select_columns = (
        "course_id, current_stage_id, completed_stages_json, skipped_stages_json, "
        "enrolled_at, completed_at"
    )
    _order_by = "enrolled_at, course_id"
    _insert_sql = """
        INSERT INTO course_progress (user_id, course_id, current_stage_id,
                                     completed_stages_json, skipped_stages_json,
                                     enrolled_at, completed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """

    def _to_params(self, user_id: int, item: CourseProgress) -> Tuple:
        return db_utils.course_progress_to_db_params(user_id, item)

    def delete(self, user_id: int, course_id: str) -> None:
        """Remove a single course enrolment; a missing row is not an error."""
        self._write(
            "DELETE FROM course_progress WHERE user_id = ? AND course_id = ?;",
            (user_id, course_id),
            f"Failed to delete course progress {course_id!r} for user {user_id}",
        )


class SnippetRepository(_OwnedSetRepository):
    _table = "custom_snippets"
    _entity = "snippets"
    _model = CustomSnippet
    _select_columns = (
        "id, user_id, name, content, language, mode, created_at, "
        "practice_count, best_wpm, best_accuracy"
    )
    _order_by = "created_at, id"
    _insert_sql = """
        INSERT INTO custom_snippets (id, user_id, name, content, language, mode,
                                     created_at, practice_count, best_wpm, best_accuracy)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    def _to_params(self, user_id: int, item: CustomSnippet) -> Tuple:
        if item.user_id != user_id:
            logger.warning(
                f"Snippet {item.id!r} claims user {item.user_id}; storing it under {user_id}."
            )
        return db_utils.snippet_to_db_params(user_id, item)


class ActivityRepository(_OwnedSetRepository):
    _table = "daily_activity"
    _entity = "activity"
    _model = DailyActivity
    _select_columns = "date, practice_time, characters, sessions"
    _order_by = "date"
    _insert_sql = """
        INSERT INTO daily_activity (user_id, date, practice_time, characters, sessions)
        VALUES (?, ?, ?, ?, ?)
    """

    def _to_params(self, user_id: int, item: DailyActivity) -> Tuple:
        return db_utils.activity_to_db_params(user_id, item)


class DailyResultRepository(_Repository):
    """Daily test results. Unlike the other sets, saves replace the whole table."""

    _INSERT_SQL = """
        INSERT INTO daily_test_results (user_id, date, wpm, accuracy, true_accuracy,
                                        duration, completed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """

    def get_all(self) -> List[DailyTestResult]:
        rows = self._fetch(
            """
            SELECT user_id, date, wpm, accuracy, true_accuracy, duration, completed_at
            FROM daily_test_results
            ORDER BY date, user_id;
            """,
            [],
            "Failed to fetch daily test results",
        )
        return [db_utils.db_row_to_model(DailyTestResult, row) for row in rows]

    def save_all(self, items: Sequence[DailyTestResult]) -> None:
        self._replace(
            "DELETE FROM daily_test_results;",
            [],
            self._INSERT_SQL,
            [db_utils.daily_result_to_db_params(item) for item in items],
            "Failed to save daily test results",
        )

    def insert_if_absent(
        self, conn: duckdb.DuckDBPyConnection, item: DailyTestResult
    ) -> None:
        conn.execute(
            self._INSERT_SQL + " ON CONFLICT DO NOTHING",
            db_utils.daily_result_to_db_params(item),
        )
