"""
One-time import of the legacy key/value data set into the normalized schema.

The legacy store kept one opaque JSON blob per user and category, keyed by
the user id as a string. The importer walks every blob, maps what it can
into rows and writes them with insert-if-absent semantics inside a single
transaction, so a re-run never duplicates data and a storage failure leaves
nothing behind. Problems with individual records are logged and skipped.
"""

import duckdb
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from .db import db_utils
from .db.connection import ConnectionHandler
from .db.repositories import (
    ActivityRepository,
    CourseProgressRepository,
    DailyResultRepository,
    LessonProgressRepository,
    SettingsRepository,
    SnippetRepository,
    UserRepository,
    UserStatsRepository,
)
from .exceptions import SerializationError
from .legacy_values import (
    BIGINT_MAX,
    BIGINT_MIN,
    JsonValue,
    get_float,
    get_int,
    get_json_array_text,
    get_optional_float,
    get_optional_int,
    get_optional_str,
    get_str,
    key_count_pairs,
    ordered_entries,
    parse_json,
    parse_user_id,
)
from .models import (
    CourseProgress,
    CustomSnippet,
    DailyActivity,
    LessonProgress,
    MigrationPayload,
    UserStats,
)

logger = logging.getLogger(__name__)


@dataclass
class LegacyImportReport:
    """Rows handed to the store per category, and entries skipped."""

    users: int = 0
    settings: int = 0
    stats: int = 0
    problem_keys: int = 0
    lesson_progress: int = 0
    course_progress: int = 0
    snippets: int = 0
    activity: int = 0
    daily_results: int = 0
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# --- Legacy record parsers ---


def stats_from_legacy(value: JsonValue) -> UserStats:
    """Map a legacy stats object; every field defaults independently."""
    return UserStats(
        total_practice_time=get_int(value, "totalPracticeTime"),
        total_words_typed=get_int(value, "totalWordsTyped"),
        average_wpm=get_float(value, "averageWpm"),
        average_accuracy=get_float(value, "averageAccuracy"),
        average_true_accuracy=get_float(value, "averageTrueAccuracy"),
        total_keystrokes=get_int(value, "totalKeystrokes"),
        total_backspaces=get_int(value, "totalBackspaces"),
        total_correct_keystrokes=get_int(value, "totalCorrectKeystrokes"),
        lessons_completed=get_int(value, "lessonsCompleted"),
        current_streak=get_int(value, "currentStreak"),
        longest_streak=get_int(value, "longestStreak"),
        last_practice_date=get_optional_str(value, "lastPracticeDate"),
        problem_keys=key_count_pairs(
            value.get("problemKeys") if isinstance(value, dict) else None
        ),
    )


def lesson_progress_from_legacy(lesson_id: str, value: JsonValue) -> LessonProgress:
    return LessonProgress(
        lesson_id=lesson_id,
        completed_tasks=get_int(value, "completedTasks"),
        total_tasks=get_int(value, "totalTasks"),
        best_wpm=get_float(value, "bestWpm"),
        average_accuracy=get_float(value, "averageAccuracy"),
        last_task_index=get_optional_int(value, "lastTaskIndex"),
        task_results_json=get_json_array_text(value, "taskResults"),
    )


def course_progress_from_legacy(course_id: str, value: JsonValue) -> CourseProgress:
    return CourseProgress(
        course_id=course_id,
        current_stage_id=get_optional_str(value, "currentStageId"),
        completed_stages_json=get_json_array_text(value, "completedStages"),
        skipped_stages_json=get_json_array_text(value, "skippedStages"),
        enrolled_at=get_str(value, "enrolledAt"),
        completed_at=get_optional_str(value, "completedAt"),
    )


def course_entries(value: JsonValue) -> List[Tuple[str, Any]]:
    """
    Course blobs come either as a map of course id to progress, or in the
    older single-course shape: one progress object carrying its courseId.
    """
    if isinstance(value, dict) and isinstance(value.get("courseId"), str):
        return [(value["courseId"], value)]
    return ordered_entries(value)


def snippet_from_legacy(user_id: int, value: JsonValue) -> Optional[CustomSnippet]:
    """Map one legacy snippet; returns None when it has no usable id."""
    snippet_id = get_optional_str(value, "id")
    if not snippet_id:
        return None
    return CustomSnippet(
        id=snippet_id,
        user_id=user_id,
        name=get_str(value, "name"),
        content=get_str(value, "content"),
        language=get_optional_str(value, "language"),
        mode=get_str(value, "mode", "text"),
        created_at=get_str(value, "createdAt"),
        practice_count=get_int(value, "practiceCount"),
        best_wpm=get_optional_float(value, "bestWpm"),
        best_accuracy=get_optional_float(value, "bestAccuracy"),
    )


def activity_from_legacy(date: str, value: JsonValue) -> DailyActivity:
    return DailyActivity(
        date=date,
        practice_time=get_int(value, "practiceTime"),
        characters=get_int(value, "characters"),
        sessions=get_int(value, "sessions"),
    )


def load_legacy_payload(path: Union[str, Path]) -> MigrationPayload:
    """
    Read a legacy export file (camelCase JSON) into a MigrationPayload.

    Raises:
        SerializationError: If the file cannot be read as UTF-8, is not valid
            JSON, or is not payload-shaped.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
        return MigrationPayload.model_validate_json(text)
    except (OSError, UnicodeDecodeError, ValidationError) as e:
        raise SerializationError(
            f"Invalid legacy payload in {path}: {e}", original_exception=e
        ) from e


# --- Pipeline ---


class LegacyImporter:
    """Feeds a MigrationPayload through the repositories in one transaction."""

    def __init__(
        self,
        handler: ConnectionHandler,
        users: UserRepository,
        settings: SettingsRepository,
        stats: UserStatsRepository,
        lesson_progress: LessonProgressRepository,
        course_progress: CourseProgressRepository,
        snippets: SnippetRepository,
        activity: ActivityRepository,
        daily_results: DailyResultRepository,
    ):
        self._handler = handler
        self._users = users
        self._settings = settings
        self._stats = stats
        self._lesson_progress = lesson_progress
        self._course_progress = course_progress
        self._snippets = snippets
        self._activity = activity
        self._daily_results = daily_results

    def is_migration_needed(self) -> bool:
        """True exactly when no user exists yet."""
        return self._users.count() == 0

    def migrate(self, payload: MigrationPayload) -> LegacyImportReport:
        """
        Import the whole payload atomically.

        Raises:
            StorageError: On any store failure; nothing from this run is kept.
        """
        report = LegacyImportReport()
        try:
            with self._handler.transaction() as conn:
                for user in payload.users:
                    if not BIGINT_MIN <= user.id <= BIGINT_MAX:
                        logger.warning(f"Skipping user with out-of-range id {user.id}.")
                        report.skipped += 1
                        continue
                    self._users.insert_if_absent(conn, user)
                    report.users += 1
                known_ids: Set[int] = {
                    row[0] for row in conn.execute("SELECT id FROM users;").fetchall()
                }

                categories: List[Tuple[str, Dict[str, Optional[str]], Callable]] = [
                    ("settings", payload.settings, self._import_settings),
                    ("stats", payload.stats, self._import_stats),
                    ("lesson progress", payload.progress, self._import_lesson_progress),
                    ("course progress", payload.courses, self._import_course_progress),
                    ("snippets", payload.snippets, self._import_snippets),
                    ("activity", payload.activity, self._import_activity),
                ]
                for category, blobs, importer in categories:
                    for user_id, value, raw in self._iter_blobs(
                        category, blobs, known_ids, report
                    ):
                        importer(conn, user_id, value, raw, report)

                for result in payload.daily_results:
                    if not all(
                        BIGINT_MIN <= n <= BIGINT_MAX
                        for n in (result.duration, result.completed_at)
                    ):
                        logger.warning(
                            f"Skipping daily result {result.date} for user {result.user_id}: value out of range."
                        )
                        report.skipped += 1
                        continue
                    if result.user_id not in known_ids:
                        logger.warning(
                            f"Skipping daily result {result.date} for unknown user {result.user_id}."
                        )
                        report.skipped += 1
                        continue
                    self._daily_results.insert_if_absent(conn, result)
                    report.daily_results += 1
        except duckdb.Error as e:
            logger.error(f"Legacy import failed and was rolled back: {e}")
            raise db_utils.to_storage_error("Legacy import failed", e) from e

        logger.info(f"Legacy import finished: {report.as_dict()}")
        return report

    def _iter_blobs(
        self,
        category: str,
        blobs: Dict[str, Optional[str]],
        known_ids: Set[int],
        report: LegacyImportReport,
    ) -> Iterator[Tuple[int, JsonValue, str]]:
        for key, raw in blobs.items():
            user_id = parse_user_id(key)
            if user_id is None:
                logger.warning(f"Skipping {category} under non-numeric user key {key!r}.")
                report.skipped += 1
                continue
            if raw is None:
                continue
            if user_id not in known_ids:
                logger.warning(f"Skipping {category} for unknown user {user_id}.")
                report.skipped += 1
                continue
            try:
                value = parse_json(raw)
            except SerializationError as e:
                logger.warning(f"Skipping malformed {category} for user {user_id}: {e}")
                report.skipped += 1
                continue
            yield user_id, value, raw

    def _import_settings(self, conn, user_id: int, value: JsonValue, raw: str, report) -> None:
        self._settings.insert_if_absent(conn, user_id, raw)
        report.settings += 1

    def _import_stats(self, conn, user_id: int, value: JsonValue, raw: str, report) -> None:
        if not isinstance(value, dict):
            logger.warning(f"Skipping stats for user {user_id}: not a JSON object.")
            report.skipped += 1
            return
        stats = stats_from_legacy(value)
        self._stats.insert_if_absent(conn, user_id, stats)
        report.stats += 1
        report.problem_keys += len(stats.problem_keys)

    def _import_entries(
        self,
        conn,
        user_id: int,
        entries: List[Tuple[str, Any]],
        parse: Callable[[str, JsonValue], Any],
        repository,
        category: str,
        report: LegacyImportReport,
    ) -> int:
        written = 0
        for sub_key, entry in entries:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping {category} {sub_key!r} for user {user_id}: not an object.")
                report.skipped += 1
                continue
            try:
                item = parse(sub_key, entry)
            except ValidationError as e:
                logger.warning(f"Skipping {category} {sub_key!r} for user {user_id}: {e}")
                report.skipped += 1
                continue
            repository.insert_if_absent(conn, user_id, item)
            written += 1
        return written

    def _import_lesson_progress(self, conn, user_id, value, raw, report) -> None:
        report.lesson_progress += self._import_entries(
            conn, user_id, ordered_entries(value), lesson_progress_from_legacy,
            self._lesson_progress, "lesson progress", report,
        )

    def _import_course_progress(self, conn, user_id, value, raw, report) -> None:
        report.course_progress += self._import_entries(
            conn, user_id, course_entries(value), course_progress_from_legacy,
            self._course_progress, "course progress", report,
        )

    def _import_activity(self, conn, user_id, value, raw, report) -> None:
        report.activity += self._import_entries(
            conn, user_id, ordered_entries(value), activity_from_legacy,
            self._activity, "activity", report,
        )

    def _import_snippets(self, conn, user_id, value, raw, report) -> None:
        if not isinstance(value, list):
            logger.warning(f"Skipping snippets for user {user_id}: not a JSON array.")
            report.skipped += 1
            return
        for element in value:
            try:
                snippet = snippet_from_legacy(user_id, element)
            except ValidationError as e:
                logger.warning(f"Skipping snippet for user {user_id}: {e}")
                snippet = None
            if snippet is None:
                report.skipped += 1
                continue
            self._snippets.insert_if_absent(conn, user_id, snippet)
            report.snippets += 1
