"""
Tests for the one-time legacy import: mapping, tolerance of malformed
records, idempotence and atomicity.
"""

import json
import pytest
from unittest.mock import patch

import duckdb

from typecore.db import TypingDatabase
from typecore.db.repositories import DailyResultRepository
from typecore.exceptions import SerializationError, StorageError
from typecore.legacy_import import (
    LegacyImportReport,
    course_entries,
    load_legacy_payload,
    snippet_from_legacy,
    stats_from_legacy,
)
from typecore.models import MigrationPayload


def _user(user_id: int, name: str = "A") -> dict:
    return {"id": user_id, "name": name, "avatar": "cat", "createdAt": "2024-01-01T00:00:00Z"}


def _payload(**fields) -> MigrationPayload:
    data = {"users": [_user(1)]}
    data.update(fields)
    return MigrationPayload.model_validate(data)


class TestFullImport:
    def test_report_counts(self, memory_db: TypingDatabase, legacy_payload):
        report = memory_db.migrate_from_legacy_payload(legacy_payload)
        assert report == LegacyImportReport(
            users=2,
            settings=1,
            stats=2,
            problem_keys=2,
            lesson_progress=2,
            course_progress=1,
            snippets=1,
            activity=2,
            daily_results=2,
            skipped=0,
        )

    def test_rows_are_mapped(self, memory_db: TypingDatabase, legacy_payload):
        db = memory_db
        db.migrate_from_legacy_payload(legacy_payload)

        assert [u.name for u in db.get_all_users()] == ["Ada", "Grace"]
        assert db.get_user(2).last_active_at == "2024-03-02T08:00:00Z"
        assert db.get_settings(1) == json.dumps({"fontSize": 24, "locale": "en"})
        assert db.get_settings(2) is None

        stats = db.get_user_stats(1)
        assert stats.average_wpm == 55.5
        assert stats.total_keystrokes == 7000
        assert stats.last_practice_date == "2024-03-01"
        assert stats.problem_key_map() == {"e": 12, "r": 4}

        lessons = {lp.lesson_id: lp for lp in db.get_all_lesson_progress(1)}
        assert lessons["home-row"].completed_tasks == 3
        assert lessons["home-row"].last_task_index == 2
        assert json.loads(lessons["home-row"].task_results_json) == [{"taskId": "t1", "wpm": 40}]
        assert lessons["top-row"].last_task_index is None
        assert lessons["top-row"].task_results_json == "[]"

        [course] = db.get_all_course_progress(1)
        assert course.course_id == "python-basics"
        assert course.current_stage_id == "stage-2"
        assert json.loads(course.completed_stages_json) == ["stage-1"]
        assert course.skipped_stages_json == "[]"

        [snippet] = db.get_snippets(1)
        assert (snippet.id, snippet.mode, snippet.practice_count) == ("snip-1", "code", 2)
        assert snippet.best_accuracy is None

        assert [(a.date, a.sessions) for a in db.get_activity(1)] == [
            ("2024-03-01", 2),
            ("2024-03-02", 1),
        ]
        assert len(db.get_daily_results()) == 2

    def test_partial_stats_default_missing_fields(self, memory_db: TypingDatabase, legacy_payload):
        memory_db.migrate_from_legacy_payload(legacy_payload)
        stats = memory_db.get_user_stats(2)
        assert stats.average_wpm == 30.0
        assert stats.total_keystrokes == 0
        assert stats.last_practice_date is None
        assert stats.problem_keys == []

    def test_gate_closes_after_import(self, memory_db: TypingDatabase, legacy_payload):
        assert memory_db.is_migration_needed() is True
        memory_db.migrate_from_legacy_payload(legacy_payload)
        assert memory_db.is_migration_needed() is False

    def test_single_user_scenario(self, memory_db: TypingDatabase):
        payload = _payload(stats={"1": '{"averageWpm":42}'})
        memory_db.migrate_from_legacy_payload(payload)

        [user] = memory_db.get_all_users()
        assert (user.id, user.name) == (1, "A")
        stats = memory_db.get_user_stats(1)
        assert stats.average_wpm == 42.0
        assert stats.total_keystrokes == 0


class TestIdempotence:
    def test_rerun_adds_no_rows(self, db_manager: TypingDatabase, legacy_payload):
        db = db_manager
        db.ensure_schema()
        db.migrate_from_legacy_payload(legacy_payload)
        first = db.row_counts()
        db.migrate_from_legacy_payload(legacy_payload)
        assert db.row_counts() == first

    def test_rerun_keeps_existing_rows(self, memory_db: TypingDatabase, legacy_payload):
        db = memory_db
        db.migrate_from_legacy_payload(legacy_payload)
        db.update_user(1, name="Renamed")
        db.save_settings(1, '{"fontSize": 12}')

        db.migrate_from_legacy_payload(legacy_payload)

        assert db.get_user(1).name == "Renamed"
        assert db.get_settings(1) == '{"fontSize": 12}'


class TestTolerance:
    def test_malformed_stats_skip_only_that_record(self, memory_db: TypingDatabase):
        payload = MigrationPayload.model_validate(
            {
                "users": [_user(1), _user(2, "B")],
                "stats": {"1": '{"averageWpm": 50}', "2": "{not json"},
                "settings": {"2": "{}"},
            }
        )
        report = memory_db.migrate_from_legacy_payload(payload)

        assert report.skipped == 1
        assert report.stats == 1
        assert memory_db.get_user_stats(1).average_wpm == 50.0
        assert memory_db.get_user_stats(2) is None
        assert memory_db.get_user(2) is not None
        assert memory_db.get_settings(2) == "{}"

    def test_wrongly_typed_fields_fall_back_to_defaults(self, memory_db: TypingDatabase):
        payload = _payload(
            stats={"1": json.dumps({"averageWpm": "fast", "totalKeystrokes": 12.9, "currentStreak": True})}
        )
        memory_db.migrate_from_legacy_payload(payload)
        stats = memory_db.get_user_stats(1)
        assert stats.average_wpm == 0.0
        assert stats.total_keystrokes == 12
        assert stats.current_streak == 0

    def test_stats_that_are_not_an_object_are_skipped(self, memory_db: TypingDatabase):
        report = memory_db.migrate_from_legacy_payload(_payload(stats={"1": "[1, 2]"}))
        assert report.skipped == 1
        assert memory_db.get_user_stats(1) is None

    def test_object_shaped_maps(self, memory_db: TypingDatabase):
        payload = _payload(
            stats={"1": json.dumps({"problemKeys": {"e": 3, "x": "bad"}})},
            progress={"1": json.dumps({"home-row": {"completedTasks": 2, "totalTasks": 4}})},
            activity={"1": json.dumps({"2024-03-01": {"practiceTime": 1000, "sessions": 1}})},
        )
        report = memory_db.migrate_from_legacy_payload(payload)

        assert report.problem_keys == 1
        assert memory_db.get_user_stats(1).problem_keys == [("e", 3)]
        [lesson] = memory_db.get_all_lesson_progress(1)
        assert (lesson.lesson_id, lesson.completed_tasks) == ("home-row", 2)
        [activity] = memory_db.get_activity(1)
        assert (activity.date, activity.characters) == ("2024-03-01", 0)

    def test_single_course_shape(self, memory_db: TypingDatabase):
        payload = _payload(
            courses={"1": json.dumps({"courseId": "rust-intro", "currentStageId": "s1"})}
        )
        memory_db.migrate_from_legacy_payload(payload)
        [course] = memory_db.get_all_course_progress(1)
        assert (course.course_id, course.current_stage_id) == ("rust-intro", "s1")

    def test_non_object_entries_are_skipped(self, memory_db: TypingDatabase):
        payload = _payload(
            progress={"1": json.dumps([["home-row", 7], ["top-row", {"totalTasks": 3}]])}
        )
        report = memory_db.migrate_from_legacy_payload(payload)
        assert report.skipped == 1
        assert [lp.lesson_id for lp in memory_db.get_all_lesson_progress(1)] == ["top-row"]

    def test_unknown_and_non_numeric_user_keys_are_skipped(self, memory_db: TypingDatabase):
        payload = _payload(
            settings={"1": "{}", "99": "{}", "abc": "{}"},
            dailyResults=[
                {"userId": 99, "date": "2024-03-01", "wpm": 1, "accuracy": 1,
                 "trueAccuracy": 1, "duration": 1, "completedAt": 1},
            ],
        )
        report = memory_db.migrate_from_legacy_payload(payload)

        assert report.settings == 1
        assert report.daily_results == 0
        assert report.skipped == 3
        assert memory_db.row_counts()["settings"] == 1
        assert memory_db.get_daily_results() == []

    def test_snippet_without_id_is_skipped(self, memory_db: TypingDatabase):
        snippets = [{"name": "no id"}, {"id": "", "name": "empty id"}, {"id": "ok", "content": "x"}]
        report = memory_db.migrate_from_legacy_payload(_payload(snippets={"1": json.dumps(snippets)}))

        assert report.snippets == 1
        assert report.skipped == 2
        [snippet] = memory_db.get_snippets(1)
        assert (snippet.id, snippet.user_id, snippet.mode) == ("ok", 1, "text")

    def test_null_blobs_are_ignored_silently(self, memory_db: TypingDatabase):
        report = memory_db.migrate_from_legacy_payload(
            _payload(settings={"1": None}, stats={"1": None})
        )
        assert report.skipped == 0
        assert memory_db.get_settings(1) is None

    @pytest.mark.parametrize(
        "stats_blob",
        ['{"totalKeystrokes": 1e30}', '{"averageWpm": ' + "9" * 400 + "}"],
        ids=["float-beyond-bigint", "integer-beyond-float"],
    )
    def test_out_of_range_numbers_default_without_aborting(self, memory_db: TypingDatabase, stats_blob):
        payload = MigrationPayload.model_validate(
            {
                "users": [_user(1), _user(2, "B")],
                "stats": {"1": stats_blob, "2": '{"averageWpm": 20}'},
                "progress": {"1": json.dumps({"home-row": {"completedTasks": 1e30, "bestWpm": 30}})},
            }
        )
        report = memory_db.migrate_from_legacy_payload(payload)

        assert report.stats == 2
        stats = memory_db.get_user_stats(1)
        assert stats.total_keystrokes == 0
        assert stats.average_wpm == 0.0
        assert memory_db.get_user_stats(2).average_wpm == 20.0
        [lesson] = memory_db.get_all_lesson_progress(1)
        assert (lesson.completed_tasks, lesson.best_wpm) == (0, 30.0)

    def test_out_of_range_records_are_skipped(self, memory_db: TypingDatabase):
        payload = MigrationPayload.model_validate(
            {
                "users": [_user(1), _user(2**64, "Huge")],
                "dailyResults": [
                    {"userId": 1, "date": "2024-03-01", "duration": 2**70, "completedAt": 1},
                    {"userId": 1, "date": "2024-03-02", "duration": 60000, "completedAt": 1},
                ],
            }
        )
        report = memory_db.migrate_from_legacy_payload(payload)

        assert report.users == 1
        assert report.skipped == 2
        assert [u.id for u in memory_db.get_all_users()] == [1]
        assert [r.date for r in memory_db.get_daily_results()] == ["2024-03-02"]


class TestAtomicity:
    def test_storage_fault_rolls_back_everything(self, memory_db: TypingDatabase, legacy_payload):
        with patch.object(
            DailyResultRepository,
            "insert_if_absent",
            side_effect=duckdb.IOException("disk full"),
        ):
            with pytest.raises(StorageError, match="Legacy import failed"):
                memory_db.migrate_from_legacy_payload(legacy_payload)

        assert all(count == 0 for count in memory_db.row_counts().values())
        assert memory_db.is_migration_needed() is True

    def test_import_succeeds_after_a_failed_run(self, memory_db: TypingDatabase, legacy_payload):
        with patch.object(
            DailyResultRepository,
            "insert_if_absent",
            side_effect=duckdb.IOException("disk full"),
        ):
            with pytest.raises(StorageError):
                memory_db.migrate_from_legacy_payload(legacy_payload)

        report = memory_db.migrate_from_legacy_payload(legacy_payload)
        assert report.users == 2
        assert len(memory_db.get_all_users()) == 2


class TestParsers:
    def test_stats_from_non_object_is_all_defaults(self):
        stats = stats_from_legacy(None)
        assert stats.average_wpm == 0.0
        assert stats.problem_keys == []

    def test_course_entries_accepts_map_and_pairs(self):
        assert course_entries({"a": {}, "b": {}}) == [("a", {}), ("b", {})]
        assert course_entries([["a", {}]]) == [("a", {})]
        assert course_entries("nope") == []

    def test_snippet_from_legacy_uses_owner_argument(self):
        snippet = snippet_from_legacy(5, {"id": "s", "userId": 9, "bestWpm": 40})
        assert snippet.user_id == 5
        assert snippet.best_wpm == 40.0


class TestLoadLegacyPayload:
    def test_loads_camel_case_export(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(
            json.dumps({"users": [_user(1)], "stats": {"1": "{}"}, "unknownKey": 1}),
            encoding="utf-8",
        )
        payload = load_legacy_payload(path)
        assert [u.id for u in payload.users] == [1]
        assert payload.stats == {"1": "{}"}
        assert payload.daily_results == []

    @pytest.mark.parametrize(
        "content",
        ["{not json", json.dumps({"users": [{"id": "x"}]})],
        ids=["bad-json", "bad-shape"],
    )
    def test_invalid_file_raises_serialization_error(self, tmp_path, content):
        path = tmp_path / "export.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(SerializationError, match="Invalid legacy payload"):
            load_legacy_payload(path)

    def test_undecodable_file_raises_serialization_error(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_bytes(b'{"users": [], "x": "\xff"}')
        with pytest.raises(SerializationError, match="Invalid legacy payload") as exc_info:
            load_legacy_payload(path)
        assert isinstance(exc_info.value.original_exception, UnicodeDecodeError)

    def test_missing_file_raises_serialization_error(self, tmp_path):
        with pytest.raises(SerializationError, match="Invalid legacy payload"):
            load_legacy_payload(tmp_path / "absent.json")
