"""
Centralized configuration management for typecore.
"""
import os
import sys
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import APP_NAME, DB_FILE_NAME

# --- Path Configuration ---


def get_data_dir() -> Path:
    """Returns the per-user application data directory for this platform."""
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Roaming"
    elif sys.platform == "darwin":
        root = Path.home() / "Library" / "Application Support"
    else:
        xdg = os.environ.get("XDG_DATA_HOME")
        root = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return root / APP_NAME


def get_default_db_path() -> Path:
    """Returns the default path for the database file.

    The directory is not created here; ConnectionHandler does that when the
    store is first opened.
    """
    return get_data_dir() / DB_FILE_NAME


class Settings(BaseSettings):
    """
    Defines application settings, loaded from environment variables or .env files.
    """

    model_config = SettingsConfigDict(
        env_prefix="TYPECORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Overridden by TYPECORE_DB_PATH.
    db_path: Path = get_default_db_path()

    # Copy the store file aside before a legacy import run from the CLI.
    backup_before_import: bool = True

    log_level: str = "INFO"


def get_settings() -> Settings:
    """Builds a fresh Settings instance from the current environment."""
    return Settings()
