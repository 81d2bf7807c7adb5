"""Input loading and work selection for enrichment runs."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..errors import ConfigurationError
from ..schemas import ContentRecord, ContentType, PipelineItem
from ..stores.catalog_store import CatalogEntry, entry_id

logger = logging.getLogger(__name__)


def _parse_input_row(row: Any) -> Optional[PipelineItem]:
    if isinstance(row, str):
        return PipelineItem(imdb_id=row.strip()) if row.strip() else None
    if not isinstance(row, Mapping):
        return None
    try:
        return PipelineItem(
            imdb_id=row.get("imdb_id") or None,
            tmdb_id=row.get("tmdb_id"),
            content_type=ContentType(row["type"]) if row.get("type") else None,
        )
    except (ValidationError, ValueError):
        return None


def load_input_items(path: Path) -> List[PipelineItem]:
    """Read the input list of ids (strings or ``{imdb_id, tmdb_id, type}`` objects)."""

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Input file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Input file {path} is unreadable: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError(f"Input file {path} must contain a JSON array")

    items: List[PipelineItem] = []
    seen: set[str] = set()
    for index, row in enumerate(data):
        item = _parse_input_row(row)
        if item is None or (item.imdb_id is None and item.tmdb_id is None):
            logger.warning("Ignoring input row %d: %r", index, row)
            continue
        if item.label in seen:
            continue
        seen.add(item.label)
        items.append(item)
    return items


def _has_locations(entry: Optional[CatalogEntry]) -> bool:
    return bool(entry and entry.get("locations"))


def select_enrich_items(
    items: Sequence[PipelineItem],
    catalog: Iterable[CatalogEntry],
    processed_ids: Iterable[str],
    *,
    skip_completed: bool = True,
    limit: Optional[int] = None,
) -> List[PipelineItem]:
    """Pick input items still needing work, in input order."""

    processed = set(processed_ids)
    by_id = {}
    for entry in catalog:
        key = entry_id(entry)
        if key:
            by_id.setdefault(key, entry)

    selected: List[PipelineItem] = []
    for item in items:
        if skip_completed and (item.label in processed or _has_locations(by_id.get(item.label))):
            continue
        selected.append(item)
        if limit is not None and len(selected) >= limit:
            break
    skipped = len(items) - len(selected)
    logger.info("Selected %d of %d input title(s); %d already done or over limit", len(selected), len(items), skipped)
    return selected


def needs_rescrape(record: ContentRecord) -> bool:
    """Records without any scene description were scraped by an older extractor."""

    return not any(location.scene_description for location in record.locations)


def select_rescrape_items(
    records: Iterable[ContentRecord],
    processed_ids: Iterable[str],
    *,
    skip_completed: bool = True,
    limit: Optional[int] = None,
) -> List[PipelineItem]:
    """Pick catalog records whose locations should be scraped again."""

    processed = set(processed_ids)
    selected: List[PipelineItem] = []
    for record in records:
        imdb_id = record.imdb_id or record.movie_id
        if not imdb_id.startswith("tt"):
            continue
        if skip_completed and record.movie_id in processed:
            continue
        if not needs_rescrape(record):
            continue
        selected.append(
            PipelineItem(
                imdb_id=imdb_id,
                tmdb_id=record.tmdb_id,
                content_type=record.type,
                existing=record,
            )
        )
        if limit is not None and len(selected) >= limit:
            break
    logger.info("Selected %d catalog record(s) for rescrape", len(selected))
    return selected
