from pathlib import Path
from unittest.mock import patch

from typecore.db import TypingDatabase
from typecore.db.db_utils import backup_database, find_latest_backup


def _make_store(path: Path) -> None:
    with TypingDatabase(path) as db:
        db.create_user(1, "Ada", "cat", "2024-01-01T00:00:00Z")


def test_backup_of_missing_file_returns_source(tmp_path):
    db_path = tmp_path / "missing.db"
    assert backup_database(db_path) == db_path
    assert not (tmp_path / "backups").exists()


def test_backup_copies_store(db_path_file):
    _make_store(db_path_file)

    backup_path = backup_database(db_path_file)

    assert backup_path.parent == db_path_file.parent / "backups"
    assert backup_path.name.startswith("data-backup-")
    assert backup_path.suffix == ".db"
    with TypingDatabase(backup_path, read_only=True) as copy:
        assert [u.name for u in copy.get_all_users()] == ["Ada"]


def test_find_latest_backup(db_path_file):
    assert find_latest_backup(db_path_file) is None
    _make_store(db_path_file)

    with patch("typecore.db.db_utils.datetime") as mock_datetime:
        mock_datetime.now.return_value.strftime.return_value = "20240101-000000-000000"
        older = backup_database(db_path_file)
        mock_datetime.now.return_value.strftime.return_value = "20240102-000000-000000"
        newer = backup_database(db_path_file)

    assert older != newer
    assert find_latest_backup(db_path_file) == newer


def test_back_to_back_backups_do_not_overwrite(db_path_file):
    _make_store(db_path_file)

    first = backup_database(db_path_file)
    second = backup_database(db_path_file)

    assert first != second
    assert first.exists() and second.exists()
    assert find_latest_backup(db_path_file) == second
