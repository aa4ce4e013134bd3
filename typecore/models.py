"""
Pydantic models for every entity kind persisted by typecore.

Attributes are snake_case; the camelCase aliases are the names used by the
legacy front-end and its exported JSON. Either spelling is accepted on input.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import EMPTY_JSON_ARRAY


class _RowModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="forbid",
    )


class UserProfile(_RowModel):
    """
    A user of the application. Aggregate root for every other entity.
    """

    # Legacy exports may carry keys this model no longer knows about.
    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., description="Caller-assigned user id.")
    name: str = Field(..., description="Display name.")
    avatar: str = Field(..., description="Avatar identifier.")
    created_at: str = Field(..., description="ISO-8601 creation timestamp.")
    last_active_at: Optional[str] = Field(
        default=None, description="ISO-8601 timestamp of last activity."
    )


class UserStats(_RowModel):
    """
    Aggregated practice statistics for one user, including the problem keys
    owned by the stats record.
    """

    total_practice_time: int = Field(default=0, description="Milliseconds.")
    total_words_typed: int = 0
    average_wpm: float = 0.0
    average_accuracy: float = 0.0
    average_true_accuracy: float = 0.0
    total_keystrokes: int = 0
    total_backspaces: int = 0
    total_correct_keystrokes: int = 0
    lessons_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_practice_date: Optional[str] = None
    problem_keys: List[Tuple[str, int]] = Field(
        default_factory=list,
        description="(key character, error count) pairs.",
    )

    def problem_key_map(self) -> Dict[str, int]:
        """Problem keys as a mapping of key character to error count."""
        return dict(self.problem_keys)


class LessonProgress(_RowModel):
    lesson_id: str = Field(..., min_length=1)
    completed_tasks: int = 0
    total_tasks: int = 0
    best_wpm: float = 0.0
    average_accuracy: float = 0.0
    last_task_index: Optional[int] = None
    task_results_json: str = Field(
        default=EMPTY_JSON_ARRAY,
        description="JSON array of task results, stored verbatim.",
    )


class CourseProgress(_RowModel):
    course_id: str = Field(..., min_length=1)
    current_stage_id: Optional[str] = None
    completed_stages_json: str = EMPTY_JSON_ARRAY
    skipped_stages_json: str = EMPTY_JSON_ARRAY
    enrolled_at: str = ""
    completed_at: Optional[str] = None


class CustomSnippet(_RowModel):
    """A user-authored practice text or code snippet."""

    id: str = Field(..., min_length=1)
    user_id: int
    name: str = ""
    content: str = ""
    language: Optional[str] = None
    mode: str = "text"
    created_at: str = ""
    practice_count: int = 0
    best_wpm: Optional[float] = None
    best_accuracy: Optional[float] = None


class DailyTestResult(_RowModel):
    """Result of the once-a-day typing test; unique per (user, date)."""

    model_config = ConfigDict(extra="ignore")

    user_id: int
    date: str = Field(..., description="YYYY-MM-DD")
    wpm: float = 0.0
    accuracy: float = 0.0
    true_accuracy: float = 0.0
    duration: int = 0
    completed_at: int = Field(default=0, description="Epoch milliseconds.")


class DailyActivity(_RowModel):
    date: str = Field(..., description="YYYY-MM-DD")
    practice_time: int = 0
    characters: int = 0
    sessions: int = 0


class MigrationPayload(_RowModel):
    """
    The flat legacy data set imported once into the normalized schema.

    Each per-user mapping is keyed by the user id as a string and holds the
    raw JSON blob the legacy store kept for that user (or None).
    """

    model_config = ConfigDict(extra="ignore")

    users: List[UserProfile] = Field(default_factory=list)
    settings: Dict[str, Optional[str]] = Field(default_factory=dict)
    stats: Dict[str, Optional[str]] = Field(default_factory=dict)
    progress: Dict[str, Optional[str]] = Field(default_factory=dict)
    courses: Dict[str, Optional[str]] = Field(default_factory=dict)
    snippets: Dict[str, Optional[str]] = Field(default_factory=dict)
    activity: Dict[str, Optional[str]] = Field(default_factory=dict)
    daily_results: List[DailyTestResult] = Field(default_factory=list)
