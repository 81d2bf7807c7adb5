"""Namespaced key-value cache with pluggable backing stores.

Every store is fail-open: storage problems are logged and reported as a miss
(``get``) or as ``False`` (``set``) so a cold or damaged cache never stops a
run.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

try:  # pragma: no cover - optional dependency for test environments
    import fakeredis
except ModuleNotFoundError:  # pragma: no cover - runtime path without fakeredis
    fakeredis = None  # type: ignore[assignment]

from ..db import create_cache_engine, sqlite_url
from ..errors import ConfigurationError
from ..models import CacheEntryRecord, utcnow
from ..schemas import CacheNamespace
from ..settings import EnricherSettings
from ..utils.paths import ensure_directory

logger = logging.getLogger(__name__)


def _namespace(value: CacheNamespace | str) -> str:
    return value.value if isinstance(value, CacheNamespace) else str(value)


class CacheStore:
    """Interface shared by all cache backends."""

    def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, namespace: CacheNamespace | str, key: str, value: Any) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources."""


class MemoryCacheStore(CacheStore):
    """Process-local store, used for one-off probes and tests."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], Any] = {}

    def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        value = self._entries.get((_namespace(namespace), key))
        return json.loads(value) if value is not None else None

    def set(self, namespace: CacheNamespace | str, key: str, value: Any) -> bool:
        self._entries[(_namespace(namespace), key)] = json.dumps(value)
        return True


class SQLiteCacheStore(CacheStore):
    """One row per entry in an embedded SQLite database."""

    def __init__(self, database_url: str) -> None:
        self._engine = create_cache_engine(database_url)
        self._lock = Lock()

    def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        statement = select(CacheEntryRecord).where(
            CacheEntryRecord.namespace == _namespace(namespace),
            CacheEntryRecord.key == key,
        )
        try:
            with Session(self._engine) as session:
                record = session.exec(statement).first()
                return record.value if record is not None else None
        except SQLAlchemyError as exc:
            logger.warning("Cache read failed for %s/%s: %s", _namespace(namespace), key, exc)
            return None

    def set(self, namespace: CacheNamespace | str, key: str, value: Any) -> bool:
        ns = _namespace(namespace)
        statement = select(CacheEntryRecord).where(
            CacheEntryRecord.namespace == ns,
            CacheEntryRecord.key == key,
        )
        try:
            with self._lock, Session(self._engine) as session:
                record = session.exec(statement).first()
                if record is None:
                    record = CacheEntryRecord(namespace=ns, key=key, value=value)
                else:
                    record.value = value
                    record.created_at = utcnow()
                session.add(record)
                session.commit()
            return True
        except SQLAlchemyError as exc:
            logger.warning("Cache write failed for %s/%s: %s", ns, key, exc)
            return False

    def close(self) -> None:
        self._engine.dispose()


class FileCacheStore(CacheStore):
    """One JSON file per entry, grouped in a directory per namespace."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def _path(self, namespace: str, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self._root / namespace / f"{digest}.json"

    def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        path = self._path(_namespace(namespace), key)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Cache file %s unreadable: %s", path, exc)
            return None
        if not isinstance(payload, dict) or payload.get("key") != key:
            return None
        return payload.get("value")

    def set(self, namespace: CacheNamespace | str, key: str, value: Any) -> bool:
        path = self._path(_namespace(namespace), key)
        payload = {
            "key": key,
            "value": value,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp_path = path.with_suffix(".tmp")
        try:
            ensure_directory(path.parent)
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Cache file %s not written: %s", path, exc)
            return False


class RedisCacheStore(CacheStore):
    """One Redis string per entry, holding a JSON envelope."""

    KEY_PREFIX = "filmingmap"

    def __init__(self, url: str) -> None:
        self._connection = self._create_connection(url)

    @staticmethod
    def _create_connection(url: str) -> Redis:
        """Instantiate a Redis connection, supporting fakeredis for tests."""

        if url.startswith("fakeredis://"):
            if fakeredis is None:  # pragma: no cover - safety branch
                raise ConfigurationError("fakeredis is required for fakeredis:// URLs")
            return fakeredis.FakeRedis()  # type: ignore[return-value]
        return Redis.from_url(url)

    @property
    def connection(self) -> Redis:
        return self._connection

    def _key(self, namespace: str, key: str) -> str:
        return f"{self.KEY_PREFIX}:{namespace}:{key}"

    def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        try:
            raw = self._connection.get(self._key(_namespace(namespace), key))
            if raw is None:
                return None
            return json.loads(raw)["value"]
        except (RedisError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Redis cache read failed for %s/%s: %s", _namespace(namespace), key, exc)
            return None

    def set(self, namespace: CacheNamespace | str, key: str, value: Any) -> bool:
        envelope = {"value": value, "created_at": datetime.now(timezone.utc).isoformat()}
        try:
            self._connection.set(self._key(_namespace(namespace), key), json.dumps(envelope))
            return True
        except (RedisError, TypeError, ValueError) as exc:
            logger.warning("Redis cache write failed for %s/%s: %s", _namespace(namespace), key, exc)
            return False

    def close(self) -> None:
        self._connection.close()


def create_cache_store(settings: EnricherSettings) -> CacheStore:
    """Build the cache backend selected in settings."""

    if settings.cache_backend == "redis":
        return RedisCacheStore(settings.cache_url)
    try:
        cache_dir = ensure_directory(settings.resolved_cache_dir())
        if settings.cache_backend == "file":
            return FileCacheStore(cache_dir)
        return SQLiteCacheStore(sqlite_url(cache_dir / "cache.db"))
    except (OSError, SQLAlchemyError) as exc:
        logger.warning("Cache unavailable (%s); continuing with an in-memory cache", exc)
        return MemoryCacheStore()
