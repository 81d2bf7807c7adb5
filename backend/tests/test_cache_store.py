"""Tests for the namespaced cache backends."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest
from sqlmodel import Session, select

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.enricher.db import sqlite_url  # noqa: E402
from backend.enricher.models import CacheEntryRecord  # noqa: E402
from backend.enricher.schemas import CacheNamespace  # noqa: E402
from backend.enricher.settings import EnricherSettings  # noqa: E402
from backend.enricher.stores.cache_store import (  # noqa: E402
    CacheStore,
    FileCacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    SQLiteCacheStore,
    create_cache_store,
)


@pytest.fixture(params=["memory", "sqlite", "file", "redis"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[CacheStore]:
    """Every backend must satisfy the same get/set contract."""

    if request.param == "memory":
        backend: CacheStore = MemoryCacheStore()
    elif request.param == "sqlite":
        backend = SQLiteCacheStore(sqlite_url(tmp_path / "cache" / "cache.db"))
    elif request.param == "file":
        backend = FileCacheStore(tmp_path / "files")
    else:
        backend = RedisCacheStore("fakeredis://")
        backend.connection.flushall()
    yield backend
    backend.close()


def test_miss_then_hit(store: CacheStore) -> None:
    assert store.get(CacheNamespace.IDENTITY, "tt0111161") is None

    assert store.set(CacheNamespace.IDENTITY, "tt0111161", {"tmdb_id": 278, "content_type": "movie"})

    assert store.get(CacheNamespace.IDENTITY, "tt0111161") == {"tmdb_id": 278, "content_type": "movie"}


def test_namespaces_are_isolated(store: CacheStore) -> None:
    store.set(CacheNamespace.LOCATIONS, "tt0111161", [{"place": "Mansfield, Ohio, USA"}])

    assert store.get(CacheNamespace.METADATA, "tt0111161") is None
    assert store.get("imdb_locations", "tt0111161") == [{"place": "Mansfield, Ohio, USA"}]


def test_empty_list_is_a_hit(store: CacheStore) -> None:
    """A page without locations is cached as [] and must not read as a miss."""

    store.set(CacheNamespace.LOCATIONS, "tt0000000", [])

    assert store.get(CacheNamespace.LOCATIONS, "tt0000000") == []


def test_overwrite_replaces_value(store: CacheStore) -> None:
    store.set(CacheNamespace.GEOCODE, "london, uk", {"lat": 1.0})
    store.set(CacheNamespace.GEOCODE, "london, uk", {"lat": 2.0})

    assert store.get(CacheNamespace.GEOCODE, "london, uk") == {"lat": 2.0}


def test_sqlite_store_persists_across_instances(tmp_path: Path) -> None:
    url = sqlite_url(tmp_path / "cache.db")
    first = SQLiteCacheStore(url)
    first.set(CacheNamespace.GEOCODE, "mansfield, ohio, usa", {"lat": 40.75, "lng": -82.51})
    first.close()

    second = SQLiteCacheStore(url)
    try:
        assert second.get(CacheNamespace.GEOCODE, "mansfield, ohio, usa") == {"lat": 40.75, "lng": -82.51}
    finally:
        second.close()


def test_file_store_treats_corrupt_entries_as_misses(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path)
    store.set(CacheNamespace.GEOCODE, "rome, italy", {"lat": 41.9})
    (entry,) = (tmp_path / "geocode").glob("*.json")
    entry.write_text("{truncated", encoding="utf-8")

    assert store.get(CacheNamespace.GEOCODE, "rome, italy") is None


def test_file_store_write_failure_is_not_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    store = FileCacheStore(blocker)

    assert store.set(CacheNamespace.GEOCODE, "paris", {"lat": 48.8}) is False
    assert store.get(CacheNamespace.GEOCODE, "paris") is None


def test_create_cache_store_selects_backend(tmp_path: Path) -> None:
    sqlite_store = create_cache_store(EnricherSettings(cache_dir=tmp_path / "c1"))
    file_store = create_cache_store(EnricherSettings(cache_backend="file", cache_dir=tmp_path / "c2"))
    redis_store = create_cache_store(EnricherSettings(cache_backend="redis", cache_url="fakeredis://"))
    try:
        assert isinstance(sqlite_store, SQLiteCacheStore)
        assert (tmp_path / "c1" / "cache.db").exists()
        assert isinstance(file_store, FileCacheStore)
        assert isinstance(redis_store, RedisCacheStore)
    finally:
        for backend in (sqlite_store, file_store, redis_store):
            backend.close()


def test_create_cache_store_falls_back_to_memory(tmp_path: Path) -> None:
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")

    store = create_cache_store(EnricherSettings(cache_dir=blocker / "cache"))

    assert isinstance(store, MemoryCacheStore)


def test_sqlite_store_stamps_rows_on_insert_and_update(tmp_path: Path) -> None:
    """Both the insert and the overwrite path must commit, not fail open."""

    store = SQLiteCacheStore(sqlite_url(tmp_path / "cache.db"))
    try:
        assert store.set(CacheNamespace.LOCATIONS, "tt0000000", []) is True
        assert store.set(CacheNamespace.LOCATIONS, "tt0000000", [{"place": "Oslo, Norway"}]) is True

        with Session(store._engine) as session:
            (record,) = session.exec(select(CacheEntryRecord)).all()
        assert record.value == [{"place": "Oslo, Norway"}]
        assert record.created_at is not None
    finally:
        store.close()
