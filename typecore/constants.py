"""
Shared constants for typecore.
"""

# Directory name under the platform data directory.
APP_NAME: str = "exceptional-typing"

# File name of the embedded store inside the application directory.
DB_FILE_NAME: str = "data.db"

# Tables owned by a user, in the order they are cleared when that user is
# deleted. The users table itself is always removed last.
USER_OWNED_TABLES: tuple = (
    "problem_keys",
    "user_stats",
    "settings",
    "lesson_progress",
    "course_progress",
    "custom_snippets",
    "daily_test_results",
    "daily_activity",
)

# Every table reported by TypingDatabase.row_counts().
ALL_TABLES: tuple = ("users",) + USER_OWNED_TABLES

# Default value for JSON-array columns (completed stages, task results...).
EMPTY_JSON_ARRAY: str = "[]"
