"""File path resolution using platformdirs."""

from pathlib import Path

import platformdirs

APP_NAME = "nlquery"


def get_data_dir() -> Path:
    """Return the per-user directory for persistent data (state DB, key file)."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False, ensure_exists=True))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "nlquery.db"
