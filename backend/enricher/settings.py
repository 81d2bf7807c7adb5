"""Runtime configuration for the location enricher."""
from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.paths import default_cache_dir


class EnricherSettings(BaseSettings):
    """Environment-aware settings for enrichment runs."""

    tmdb_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FILMINGMAP_TMDB_API_KEY", "TMDB_API_KEY"),
        description="TMDB v3 API key used for identity lookups and metadata.",
    )
    tmdb_base_url: str = Field(
        default="https://api.themoviedb.org/3", description="Base URL for the TMDB API."
    )
    tmdb_request_delay: float = Field(
        default=0.25, ge=0, description="Pause in seconds after each uncached TMDB detail call."
    )
    tmdb_timeout: float = Field(default=20.0, gt=0, description="TMDB request timeout in seconds.")
    nominatim_base_url: str = Field(
        default="https://nominatim.openstreetmap.org",
        description="Base URL for the Nominatim search endpoint.",
    )
    nominatim_user_agent: str = Field(
        default="filmingmap/1.0 (Movie Filming Location Mapper)",
        description="User-Agent sent to Nominatim, which rejects anonymous clients.",
    )
    geocode_min_interval: float = Field(
        default=1.2, ge=0, description="Minimum spacing in seconds between geocoding requests."
    )
    geocode_timeout: float = Field(default=10.0, gt=0, description="Geocoding request timeout in seconds.")
    data_dir: Path = Field(default=Path("data"), description="Directory holding catalog and state files.")
    catalog_path: Path | None = Field(
        default=None, description="Catalog JSON path; defaults to <data_dir>/movies_enriched.json."
    )
    resume_state_path: Path | None = Field(
        default=None, description="Resume state path; defaults to <data_dir>/rescrape_state.json."
    )
    input_file: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("FILMINGMAP_INPUT_FILE", "INPUT_FILE"),
        description="Input id list; defaults to <data_dir>/movies_input.json.",
    )
    cache_backend: Literal["sqlite", "file", "redis"] = Field(
        default="sqlite", description="Backing store used by the key-value cache."
    )
    cache_dir: Path | None = Field(
        default=None, description="Cache directory; defaults to the platform user cache dir."
    )
    cache_url: str = Field(
        default="redis://localhost:6379/0", description="Redis URL used when cache_backend is redis."
    )
    batch_size: int = Field(default=5, ge=1, description="Number of titles processed concurrently.")
    navigation_timeout: float = Field(
        default=30.0, gt=0, description="Browser navigation timeout in seconds."
    )
    settle_seconds: float = Field(
        default=2.0, ge=0, description="Wait after page load and after each expand click."
    )
    max_expand_clicks: int = Field(
        default=5, ge=0, description="Upper bound on 'show more' clicks per page."
    )
    headless: bool = Field(default=True, description="Run Chromium without a visible window.")
    browser_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent used by the browser session.",
    )
    skip_completed: bool = Field(
        default=True,
        description="Skip ids already listed in the resume state or already holding locations.",
    )
    debug_html_dir: Path | None = Field(
        default=None, description="When set, scraped page snapshots are written here."
    )

    model_config = SettingsConfigDict(
        env_prefix="FILMINGMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def resolved_catalog_path(self) -> Path:
        return self.catalog_path or self.data_dir / "movies_enriched.json"

    def resolved_resume_state_path(self) -> Path:
        return self.resume_state_path or self.data_dir / "rescrape_state.json"

    def resolved_input_file(self) -> Path:
        return self.input_file or self.data_dir / "movies_input.json"

    def resolved_cache_dir(self) -> Path:
        return self.cache_dir or default_cache_dir()
