"""Pydantic models shared across the enrichment pipeline."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "Unknown"


class ContentType(str, Enum):
    """Content types as named by TMDB and stored in the catalog."""

    MOVIE = "movie"
    SERIES = "tv"


class CacheNamespace(str, Enum):
    """Key spaces used by the key-value cache."""

    IDENTITY = "tmdb_find"
    METADATA = "tmdb_details"
    LOCATIONS = "imdb_locations"
    GEOCODE = "geocode"


class ItemState(str, Enum):
    """Lifecycle of one title inside a run."""

    PENDING = "pending"
    RESOLVING_ID = "resolving_id"
    FETCHING_METADATA = "fetching_metadata"
    SCRAPING_LOCATIONS = "scraping_locations"
    GEOCODING = "geocoding"
    DEDUPING = "deduping"
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {ItemState.PERSISTED, ItemState.SKIPPED, ItemState.FAILED}


class RawLocation(BaseModel):
    """A filming-location mention as scraped, before geocoding."""

    place: str
    scene: str | None = None


class GeocodeResult(BaseModel):
    """Coordinates and place names returned by the geocoder."""

    lat: float
    lng: float
    city: str = UNKNOWN
    country: str = UNKNOWN


class Location(BaseModel):
    """A geocoded filming location attached to a catalog record."""

    lat: float
    lng: float
    city: str = Field(default=UNKNOWN)
    country: str = Field(default=UNKNOWN)
    description: str = Field(description="The scraped mention this location was geocoded from.")
    scene_description: str | None = Field(default=None)

    @field_validator("city", "country", mode="before")
    @classmethod
    def _default_unknown(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return UNKNOWN
        return value


class ContentRecord(BaseModel):
    """One movie or series entry of the catalog."""

    model_config = ConfigDict(extra="allow")

    movie_id: str
    title: str
    original_title: str | None = None
    year: int = 0
    imdb_id: str | None = None
    tmdb_id: int | None = None
    type: ContentType = ContentType.MOVIE
    genres: list[str] = Field(default_factory=list)
    poster: str = ""
    trailer: str | None = None
    imdb_rating: float | None = Field(default=None, ge=0, le=10)
    locations: list[Location] = Field(default_factory=list)

    def to_catalog_entry(self) -> dict[str, Any]:
        """Serialize to the catalog JSON shape, omitting absent optionals."""

        return self.model_dump(mode="json", exclude_none=True)


class ResolvedIdentity(BaseModel):
    """TMDB identity of an externally known title."""

    tmdb_id: int
    content_type: ContentType


class TitleMetadata(BaseModel):
    """Descriptive metadata fetched from TMDB."""

    tmdb_id: int
    content_type: ContentType
    title: str
    original_title: str | None = None
    year: int = 0
    genres: list[str] = Field(default_factory=list)
    poster: str = ""
    trailer: str | None = None
    rating: float | None = None
    imdb_id: str | None = None


class ResumeState(BaseModel):
    """Identifiers already enriched with at least one location."""

    model_config = ConfigDict(populate_by_name=True)

    processed_ids: list[str] = Field(default_factory=list, alias="processedIds")
    last_run_date: str = Field(default="", alias="lastRunDate")

    def touch(self) -> None:
        self.last_run_date = datetime.now(timezone.utc).isoformat()


class PipelineItem(BaseModel):
    """One unit of work: an input row, or an existing record to rescrape."""

    imdb_id: str | None = None
    tmdb_id: int | None = None
    content_type: ContentType | None = None
    existing: ContentRecord | None = None

    @property
    def label(self) -> str:
        if self.imdb_id:
            return self.imdb_id
        if self.tmdb_id is not None:
            return f"tmdb_{self.tmdb_id}"
        return "<unidentified>"


class ItemResult(BaseModel):
    """Outcome of running one item through the pipeline."""

    item: PipelineItem
    state: ItemState = ItemState.PENDING
    record: ContentRecord | None = None
    scraped_count: int = 0
    geocoded_count: int = 0
    error: str | None = None


class RunSummary(BaseModel):
    """Running counters reported after each batch."""

    total: int = 0
    processed: int = 0
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    locations: int = 0

    def record(self, result: ItemResult) -> None:
        self.processed += 1
        if result.state is ItemState.PERSISTED:
            self.persisted += 1
            if result.record is not None:
                self.locations += len(result.record.locations)
        elif result.state is ItemState.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
