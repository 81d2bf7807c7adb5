"""Database models for the SQLite-backed cache."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntryRecord(SQLModel, table=True):
    """One cached result, addressed by namespace and key."""

    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_cache_namespace_key"),)

    id: int | None = Field(default=None, primary_key=True)
    namespace: str = Field(index=True)
    key: str = Field(index=True)
    value: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
