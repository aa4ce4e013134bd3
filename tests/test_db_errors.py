import pytest
from unittest.mock import patch, MagicMock
import duckdb

from typecore.db import TypingDatabase
from typecore.db import db_utils
from typecore.exceptions import (
    ConstraintViolation,
    DatabaseConnectionError,
    MarshallingError,
    SchemaMigrationError,
    StorageError,
)
from typecore.models import LessonProgress, UserProfile


@patch('duckdb.connect')
def test_get_connection_raises_custom_error_on_duckdb_error(mock_connect):
    """Tests that get_connection raises DatabaseConnectionError on duckdb.Error."""
    mock_connect.side_effect = duckdb.Error("Connection failed")
    db = TypingDatabase(db_path=':memory:')

    with pytest.raises(DatabaseConnectionError, match="Failed to connect to database"):
        db.get_connection()


@patch('typecore.db.connection.duckdb.connect')
def test_current_schema_version_wraps_duckdb_error(mock_duckdb_connect):
    mock_connection = MagicMock()
    mock_connection.execute.side_effect = duckdb.Error("catalog unavailable")
    mock_duckdb_connect.return_value = mock_connection

    db = TypingDatabase(db_path=':memory:')

    with pytest.raises(SchemaMigrationError, match="Failed to read schema version"):
        db.current_schema_version()


@patch('typecore.db.connection.logger.error')
@patch('typecore.db.connection.duckdb.connect')
def test_replace_handles_rollback_error(mock_duckdb_connect, mock_logger_error):
    """
    Tests that a failed full-replace save surfaces a StorageError and logs the
    rollback failure when the rollback itself also fails.
    """
    # 1. Setup mocks to simulate the double-fault scenario
    mock_connection = MagicMock()
    mock_connection.executemany.side_effect = duckdb.IOException("disk full")
    mock_connection.rollback.side_effect = duckdb.Error("Rollback failed!")
    mock_duckdb_connect.return_value = mock_connection

    db = TypingDatabase(db_path=':memory:')

    # 2. Execute the save and assert the generic storage error is raised
    with pytest.raises(StorageError, match="Failed to save lesson progress for user 1") as exc_info:
        db.save_lesson_progress(1, [LessonProgress(lesson_id="home-row")])
    assert not isinstance(exc_info.value, ConstraintViolation)
    assert isinstance(exc_info.value.original_exception, duckdb.IOException)

    # 3. Verify the transaction was opened and the rollback failure was logged
    mock_connection.begin.assert_called_once()
    mock_connection.commit.assert_not_called()
    mock_logger_error.assert_called_once()
    assert "Failed to rollback transaction: Rollback failed!" in str(mock_logger_error.call_args)


@patch('typecore.db.connection.duckdb.connect')
def test_successful_replace_commits(mock_duckdb_connect):
    mock_connection = MagicMock()
    mock_duckdb_connect.return_value = mock_connection

    db = TypingDatabase(db_path=':memory:')
    db.save_lesson_progress(1, [])

    mock_connection.begin.assert_called_once()
    mock_connection.commit.assert_called_once()
    mock_connection.rollback.assert_not_called()
    # An empty set only deletes.
    mock_connection.executemany.assert_not_called()


@patch('typecore.db.connection.duckdb.connect')
def test_fetch_wraps_duckdb_error(mock_duckdb_connect):
    mock_connection = MagicMock()
    mock_connection.execute.side_effect = duckdb.IOException("read failed")
    mock_duckdb_connect.return_value = mock_connection

    db = TypingDatabase(db_path=':memory:')

    with pytest.raises(StorageError, match="Failed to fetch users"):
        db.get_all_users()


def test_to_storage_error_maps_constraint_exception():
    err = db_utils.to_storage_error("Insert failed", duckdb.ConstraintException("dup"))
    assert isinstance(err, ConstraintViolation)
    assert str(err) == "Insert failed: dup"

    err = db_utils.to_storage_error("Insert failed", duckdb.IOException("io"))
    assert type(err) is StorageError


def test_db_row_to_model_raises_marshalling_error():
    with pytest.raises(MarshallingError, match="Failed to parse UserProfile"):
        db_utils.db_row_to_model(UserProfile, {"id": "not-a-number", "name": "x"})
