"""Database helpers for the SQLite cache backend."""
from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from .models import CacheEntryRecord  # noqa: F401  (registers the table)


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


def _ensure_sqlite_path(database_url: str) -> None:
    """Create parent directories when using a SQLite URL."""

    if database_url.startswith("sqlite:///"):
        path_part = database_url.removeprefix("sqlite:///").split("?")[0]
        if path_part:
            db_path = Path(path_part)
            db_path.parent.mkdir(parents=True, exist_ok=True)


def create_cache_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create a SQLModel engine and make sure the cache table exists."""

    _ensure_sqlite_path(database_url)
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, echo=echo, connect_args=connect_args)
    SQLModel.metadata.create_all(engine)
    return engine
