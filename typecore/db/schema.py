"""
Versioned schema for typecore, expressed as an ordered list of forward-only
migration steps. Each step is additive (create-if-absent) and is applied by
SchemaManager inside its own transaction.
"""

from typing import Callable, List, Tuple

import duckdb

SCHEMA_VERSION_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at VARCHAR NOT NULL
    );
"""

V1_CORE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        avatar VARCHAR NOT NULL,
        created_at VARCHAR NOT NULL,
        last_active_at VARCHAR
    );

    CREATE TABLE IF NOT EXISTS settings (
        user_id BIGINT PRIMARY KEY,
        settings_json VARCHAR NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS user_stats (
        user_id BIGINT PRIMARY KEY,
        total_practice_time BIGINT NOT NULL DEFAULT 0,
        total_words_typed BIGINT NOT NULL DEFAULT 0,
        average_wpm DOUBLE NOT NULL DEFAULT 0,
        average_accuracy DOUBLE NOT NULL DEFAULT 0,
        average_true_accuracy DOUBLE NOT NULL DEFAULT 0,
        total_keystrokes BIGINT NOT NULL DEFAULT 0,
        total_backspaces BIGINT NOT NULL DEFAULT 0,
        total_correct_keystrokes BIGINT NOT NULL DEFAULT 0,
        lessons_completed BIGINT NOT NULL DEFAULT 0,
        current_streak BIGINT NOT NULL DEFAULT 0,
        longest_streak BIGINT NOT NULL DEFAULT 0,
        last_practice_date VARCHAR,
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS problem_keys (
        user_id BIGINT NOT NULL,
        key_char VARCHAR NOT NULL,
        error_count BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, key_char),
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS lesson_progress (
        user_id BIGINT NOT NULL,
        lesson_id VARCHAR NOT NULL,
        completed_tasks BIGINT NOT NULL DEFAULT 0,
        total_tasks BIGINT NOT NULL DEFAULT 0,
        best_wpm DOUBLE NOT NULL DEFAULT 0,
        average_accuracy DOUBLE NOT NULL DEFAULT 0,
        last_task_index BIGINT,
        task_results_json VARCHAR NOT NULL DEFAULT '[]',
        PRIMARY KEY (user_id, lesson_id),
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS course_progress (
        user_id BIGINT NOT NULL,
        course_id VARCHAR NOT NULL,
        current_stage_id VARCHAR,
        completed_stages_json VARCHAR NOT NULL DEFAULT '[]',
        skipped_stages_json VARCHAR NOT NULL DEFAULT '[]',
        enrolled_at VARCHAR NOT NULL,
        completed_at VARCHAR,
        PRIMARY KEY (user_id, course_id),
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS custom_snippets (
        id VARCHAR PRIMARY KEY,
        user_id BIGINT NOT NULL,
        name VARCHAR NOT NULL,
        content VARCHAR NOT NULL,
        language VARCHAR,
        mode VARCHAR NOT NULL,
        created_at VARCHAR NOT NULL,
        practice_count BIGINT NOT NULL DEFAULT 0,
        best_wpm DOUBLE,
        best_accuracy DOUBLE,
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS daily_test_results (
        user_id BIGINT NOT NULL,
        date VARCHAR NOT NULL,
        wpm DOUBLE NOT NULL,
        accuracy DOUBLE NOT NULL,
        true_accuracy DOUBLE NOT NULL,
        duration BIGINT NOT NULL,
        completed_at BIGINT NOT NULL,
        PRIMARY KEY (user_id, date),
        FOREIGN KEY (user_id) REFERENCES users (id)
    );

    CREATE TABLE IF NOT EXISTS daily_activity (
        user_id BIGINT NOT NULL,
        date VARCHAR NOT NULL,
        practice_time BIGINT NOT NULL DEFAULT 0,
        characters BIGINT NOT NULL DEFAULT 0,
        sessions BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, date),
        FOREIGN KEY (user_id) REFERENCES users (id)
    );
"""

V2_INDEXES_SQL = """
    CREATE INDEX IF NOT EXISTS idx_custom_snippets_user_id ON custom_snippets (user_id);
    CREATE INDEX IF NOT EXISTS idx_daily_test_results_date ON daily_test_results (date);
"""

MigrationStep = Callable[[duckdb.DuckDBPyConnection], None]


def _create_core_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(V1_CORE_TABLES_SQL)


def _create_lookup_indexes(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(V2_INDEXES_SQL)


# Strictly ascending; append new steps, never edit applied ones.
MIGRATIONS: List[Tuple[int, MigrationStep]] = [
    (1, _create_core_tables),
    (2, _create_lookup_indexes),
]

LATEST_VERSION: int = MIGRATIONS[-1][0]
