"""Helpers for locating application directories."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "TapTrack"
APP_AUTHOR = "TapTrack"


def get_data_dir() -> Path:
    """Return the base directory for persistent data."""
    dirs = PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)
    path = Path(dirs.user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_path() -> Path:
    return get_data_dir() / "cache.sqlite3"


def get_store_path() -> Path:
    return get_data_dir() / "sessions.sqlite3"
