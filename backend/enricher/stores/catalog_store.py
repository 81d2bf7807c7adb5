"""
Merge-only persistence for the enriched catalog JSON.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..errors import PersistenceError
from ..schemas import ContentRecord

logger = logging.getLogger(__name__)

CatalogEntry = Dict[str, object]


def entry_id(entry: CatalogEntry) -> Optional[str]:
    value = entry.get("movie_id") or entry.get("imdb_id")
    return str(value) if value else None


def load_catalog(path: Path) -> List[CatalogEntry]:
    """Read the catalog as raw entries; a missing file is an empty catalog."""

    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PersistenceError(f"Catalog {path} is unreadable: {exc}") from exc
    if not isinstance(data, list):
        raise PersistenceError(f"Catalog {path} is not a JSON array")
    return [entry for entry in data if isinstance(entry, dict)]


def index_catalog(entries: Iterable[CatalogEntry]) -> Dict[str, CatalogEntry]:
    index: Dict[str, CatalogEntry] = {}
    for entry in entries:
        key = entry_id(entry)
        if key and key not in index:
            index[key] = entry
    return index


def dump_catalog(entries: List[CatalogEntry]) -> str:
    return json.dumps(entries, indent=2, ensure_ascii=False) + "\n"


def write_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Could not write {path}: {exc}") from exc


class CatalogWriter:
    """Integrates batches of records into the catalog file.

    The file is re-read right before every write, records not in the batch
    are written back exactly as read, and the pre-write file is copied to a
    backup the first time this writer touches it.
    """

    def __init__(self, path: Path, *, backup_path: Optional[Path] = None) -> None:
        self.path = Path(path)
        self.backup_path = backup_path or self.path.with_name(f"{self.path.stem}.backup{self.path.suffix}")
        self._backed_up = False

    def read(self) -> List[CatalogEntry]:
        return load_catalog(self.path)

    def read_records(self) -> List[ContentRecord]:
        records: List[ContentRecord] = []
        for entry in self.read():
            try:
                records.append(ContentRecord.model_validate(entry))
            except ValueError as exc:
                logger.warning("Ignoring malformed catalog entry %s: %s", entry_id(entry), exc)
        return records

    def backup(self) -> None:
        if self._backed_up:
            return
        if self.path.exists():
            try:
                shutil.copyfile(self.path, self.backup_path)
            except OSError as exc:
                raise PersistenceError(f"Could not back up {self.path}: {exc}") from exc
            logger.info("Catalog backup written to %s", self.backup_path)
        self._backed_up = True

    def merge(self, records: Iterable[ContentRecord]) -> List[CatalogEntry]:
        """Replace or append ``records`` and persist the merged catalog."""

        updates: Dict[str, CatalogEntry] = {}
        for record in records:
            updates[record.movie_id] = record.to_catalog_entry()

        current = self.read()
        if not updates:
            return current

        merged: List[CatalogEntry] = []
        replaced: set[str] = set()
        for entry in current:
            key = entry_id(entry)
            if key in updates and key not in replaced:
                merged.append(updates[key])
                replaced.add(key)
            else:
                merged.append(entry)
        appended = [entry for key, entry in updates.items() if key not in replaced]
        merged.extend(appended)

        self.backup()
        write_atomic(self.path, dump_catalog(merged))
        logger.info(
            "Catalog saved: %d updated, %d added, %d total",
            len(replaced),
            len(appended),
            len(merged),
        )
        return merged

    def rewrite(self, entries: List[CatalogEntry]) -> None:
        """Write a full catalog produced by a maintenance pass."""

        current = self.read()
        if len(entries) < len(current):
            raise PersistenceError(
                f"Refusing to shrink catalog {self.path} from {len(current)} to {len(entries)} entries"
            )
        self.backup()
        write_atomic(self.path, dump_catalog(entries))
