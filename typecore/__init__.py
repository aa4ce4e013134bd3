"""Typecore - persistence and legacy-data migration for a typing tutor."""

from .db import TypingDatabase
from .exceptions import (
    ConstraintViolation,
    SerializationError,
    StorageError,
)
from .legacy_import import LegacyImportReport, load_legacy_payload
from .models import (
    CourseProgress,
    CustomSnippet,
    DailyActivity,
    DailyTestResult,
    LessonProgress,
    MigrationPayload,
    UserProfile,
    UserStats,
)

__all__ = [
    "TypingDatabase",
    "ConstraintViolation",
    "SerializationError",
    "StorageError",
    "LegacyImportReport",
    "load_legacy_payload",
    "CourseProgress",
    "CustomSnippet",
    "DailyActivity",
    "DailyTestResult",
    "LessonProgress",
    "MigrationPayload",
    "UserProfile",
    "UserStats",
]
