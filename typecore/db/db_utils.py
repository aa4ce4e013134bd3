"""
Utility functions for data marshalling between Pydantic models and database formats.
This module helps decouple the repositories from the specifics of data conversion.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import duckdb
from pydantic import BaseModel, ValidationError

from ..exceptions import ConstraintViolation, MarshallingError, StorageError
from ..models import (
    CourseProgress,
    CustomSnippet,
    DailyActivity,
    DailyTestResult,
    LessonProgress,
    UserProfile,
    UserStats,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


def to_storage_error(message: str, error: duckdb.Error) -> StorageError:
    """
    Wrap a DuckDB error in the matching typed storage error.

    Constraint failures (duplicate keys, missing parent rows) become
    ConstraintViolation; everything else becomes StorageError.
    """
    if isinstance(error, duckdb.ConstraintException):
        return ConstraintViolation(f"{message}: {error}", original_exception=error)
    return StorageError(f"{message}: {error}", original_exception=error)


def db_row_to_model(model: Type[ModelT], row_dict: Dict[str, Any]) -> ModelT:
    """
    Validate a database row dictionary into `model`.

    Raises:
        MarshallingError: If the row cannot be validated (wraps the original ValidationError).
    """
    try:
        return model.model_validate(row_dict)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse {model.__name__} from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def user_to_db_params(user: UserProfile) -> Tuple:
    """(id, name, avatar, created_at, last_active_at)"""
    return (
        user.id,
        user.name,
        user.avatar,
        user.created_at,
        user.last_active_at,
    )


def stats_to_db_params(user_id: int, stats: UserStats) -> Tuple:
    """
    Serialize UserStats for the user_stats table. Problem keys are written
    separately by problem_keys_to_db_params_list.
    """
    return (
        user_id,
        stats.total_practice_time,
        stats.total_words_typed,
        stats.average_wpm,
        stats.average_accuracy,
        stats.average_true_accuracy,
        stats.total_keystrokes,
        stats.total_backspaces,
        stats.total_correct_keystrokes,
        stats.lessons_completed,
        stats.current_streak,
        stats.longest_streak,
        stats.last_practice_date,
    )


def problem_keys_to_db_params_list(
    user_id: int, problem_keys: List[Tuple[str, int]]
) -> List[Tuple]:
    return [(user_id, key_char, count) for key_char, count in problem_keys]


def db_row_to_stats(
    row_dict: Dict[str, Any], problem_keys: List[Tuple[str, int]]
) -> UserStats:
    data = row_dict.copy()
    data.pop("user_id", None)
    data["problem_keys"] = problem_keys
    return db_row_to_model(UserStats, data)


def lesson_progress_to_db_params(user_id: int, item: LessonProgress) -> Tuple:
    return (
        user_id,
        item.lesson_id,
        item.completed_tasks,
        item.total_tasks,
        item.best_wpm,
        item.average_accuracy,
        item.last_task_index,
        item.task_results_json,
    )


def course_progress_to_db_params(user_id: int, item: CourseProgress) -> Tuple:
    return (
        user_id,
        item.course_id,
        item.current_stage_id,
        item.completed_stages_json,
        item.skipped_stages_json,
        item.enrolled_at,
        item.completed_at,
    )


def snippet_to_db_params(user_id: int, item: CustomSnippet) -> Tuple:
    """The owner passed in wins over item.user_id."""
    return (
        item.id,
        user_id,
        item.name,
        item.content,
        item.language,
        item.mode,
        item.created_at,
        item.practice_count,
        item.best_wpm,
        item.best_accuracy,
    )


def daily_result_to_db_params(item: DailyTestResult) -> Tuple:
    return (
        item.user_id,
        item.date,
        item.wpm,
        item.accuracy,
        item.true_accuracy,
        item.duration,
        item.completed_at,
    )


def activity_to_db_params(user_id: int, item: DailyActivity) -> Tuple:
    return (
        user_id,
        item.date,
        item.practice_time,
        item.characters,
        item.sessions,
    )


def find_latest_backup(db_path: Path) -> Optional[Path]:
    """
    Locate the most recent backup file for the given database path.

    Parameters:
        db_path (Path): Path to the main database file; the function
            looks for backups in a "backups" subdirectory of
            db_path.parent.

    Returns:
        Path or None: Path to the latest backup file, or `None` if no
            backups are found.
    """
    backup_dir = db_path.parent / "backups"
    if not backup_dir.exists():
        return None

    backup_files = list(backup_dir.glob(f"{db_path.stem}-backup-*{db_path.suffix}"))
    if not backup_files:
        return None

    # Names embed the timestamp, so the lexical maximum is the newest.
    return max(backup_files, key=lambda p: p.name)


def backup_database(db_path: Path) -> Path:
    """
    Creates a timestamped backup of the database file.

    Args:
        db_path: The path to the database file.

    Returns:
        The path to the created backup file, or `db_path` itself when there
        is no file to back up yet.
    """
    if not db_path.exists():
        return db_path

    backup_dir = db_path.parent / "backups"
    backup_dir.mkdir(exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    backup_filename = f"{db_path.stem}-backup-{timestamp}{db_path.suffix}"
    backup_path = backup_dir / backup_filename

    shutil.copy2(db_path, backup_path)
    return backup_path
