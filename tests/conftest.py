import json
import logging
import pytest
from pathlib import Path
from typing import Generator

from typecore.db import TypingDatabase
from typecore.models import MigrationPayload


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(request):
    """
    Temporarily change the process working directory to the test's tmpdir, so
    no stray .env file or relative path leaks into a test.
    """
    tmpdir = request.getfixturevalue("tmpdir")
    with tmpdir.as_cwd():
        yield


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "typing" / "data.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[TypingDatabase, None, None]:
    """
    Provide a TypingDatabase, either in-memory or file-backed, and ensure
    the connection is closed and any temporary file removed on teardown.
    """
    if request.param == "memory":
        db_man = TypingDatabase(db_path_memory)
    else:
        db_man = TypingDatabase(db_path_file)
    try:
        yield db_man
    finally:
        db_man.close_connection()
        if request.param == "file" and db_path_file.exists():
            try:
                db_path_file.unlink()
            except OSError as e:
                logging.warning(
                    f"Error removing temporary DB file in test fixture teardown: {e}"
                )


@pytest.fixture
def initialized_db_manager(db_manager: TypingDatabase) -> TypingDatabase:
    db_manager.ensure_schema()
    return db_manager


@pytest.fixture
def memory_db() -> Generator[TypingDatabase, None, None]:
    """A single in-memory store with the schema applied."""
    with TypingDatabase(":memory:") as db:
        yield db


@pytest.fixture
def db_with_users(initialized_db_manager: TypingDatabase) -> TypingDatabase:
    """Store holding users 1 ("Ada") and 2 ("Grace")."""
    initialized_db_manager.create_user(1, "Ada", "cat", "2024-01-01T10:00:00Z")
    initialized_db_manager.create_user(2, "Grace", "owl", "2024-01-02T10:00:00Z")
    return initialized_db_manager


@pytest.fixture
def legacy_payload() -> MigrationPayload:
    """
    A legacy data set for two users, using the shapes the old front-end wrote:
    maps serialised as [key, value] pair arrays, problem keys as pairs.
    """
    stats = {
        "totalPracticeTime": 600000,
        "totalWordsTyped": 1200,
        "averageWpm": 55.5,
        "averageAccuracy": 97.2,
        "averageTrueAccuracy": 94.0,
        "totalKeystrokes": 7000,
        "totalBackspaces": 120,
        "totalCorrectKeystrokes": 6800,
        "lessonsCompleted": 4,
        "currentStreak": 3,
        "longestStreak": 9,
        "lastPracticeDate": "2024-03-01",
        "problemKeys": [["e", 12], ["r", 4]],
    }
    progress = [
        [
            "home-row",
            {
                "lessonId": "home-row",
                "completedTasks": 3,
                "totalTasks": 5,
                "taskResults": [{"taskId": "t1", "wpm": 40}],
                "bestWpm": 48.0,
                "averageAccuracy": 96.5,
                "lastTaskIndex": 2,
            },
        ],
        ["top-row", {"completedTasks": 1, "totalTasks": 6}],
    ]
    courses = [
        [
            "python-basics",
            {
                "courseId": "python-basics",
                "currentStageId": "stage-2",
                "completedStages": ["stage-1"],
                "skippedStages": [],
                "enrolledAt": "2024-02-01T09:00:00Z",
                "completedAt": None,
            },
        ]
    ]
    snippets = [
        {
            "id": "snip-1",
            "userId": 1,
            "name": "Fizzbuzz",
            "content": "for i in range(100): pass",
            "language": "python",
            "mode": "code",
            "createdAt": "2024-02-03T12:00:00Z",
            "practiceCount": 2,
            "bestWpm": 35.0,
            "bestAccuracy": None,
        }
    ]
    activity = [
        ["2024-03-01", {"date": "2024-03-01", "practiceTime": 60000, "characters": 900, "sessions": 2}],
        ["2024-03-02", {"date": "2024-03-02", "practiceTime": 30000, "characters": 400, "sessions": 1}],
    ]
    return MigrationPayload.model_validate(
        {
            "users": [
                {"id": 1, "name": "Ada", "avatar": "cat", "createdAt": "2024-01-01T10:00:00Z", "lastActiveAt": None},
                {"id": 2, "name": "Grace", "avatar": "owl", "createdAt": "2024-01-02T10:00:00Z", "lastActiveAt": "2024-03-02T08:00:00Z"},
            ],
            "settings": {"1": json.dumps({"fontSize": 24, "locale": "en"}), "2": None},
            "stats": {"1": json.dumps(stats), "2": json.dumps({"averageWpm": 30})},
            "progress": {"1": json.dumps(progress), "2": None},
            "courses": {"1": json.dumps(courses)},
            "snippets": {"1": json.dumps(snippets)},
            "activity": {"1": json.dumps(activity)},
            "dailyResults": [
                {"userId": 1, "date": "2024-03-01", "wpm": 50.0, "accuracy": 98.0, "trueAccuracy": 95.0, "duration": 60000, "completedAt": 1709280000000},
                {"userId": 2, "date": "2024-03-01", "wpm": 31.0, "accuracy": 90.0, "trueAccuracy": 88.0, "duration": 60000, "completedAt": 1709280100000},
            ],
        }
    )
