"""Filesystem helpers for enricher data and cache paths."""
from __future__ import annotations

from pathlib import Path

from platformdirs import user_cache_dir


APP_NAME = "FilmingMap"
APP_AUTHOR = "FilmingMap"


def default_cache_dir() -> Path:
    """Return the platform-appropriate default cache directory."""

    return Path(user_cache_dir(APP_NAME, APP_AUTHOR)) / "enricher"


def ensure_directory(path: Path | str) -> Path:
    """Expand and create the directory if it does not exist."""

    resolved = Path(path).expanduser()
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved
