"""Shared state container for an enrichment run."""
from __future__ import annotations

from typing import Optional

import httpx

from .errors import ConfigurationError
from .scrapers.imdb_locations import LocationScraper, PageFetcher, PlaywrightPageFetcher
from .services.geocoder import GeocodingResolver, NominatimClient
from .services.pipeline import EnrichmentPipeline
from .services.queue import GeocodingQueue
from .services.tmdb import IdentityResolver, MetadataFetcher, TMDBClient
from .settings import EnricherSettings
from .stores.cache_store import CacheStore, create_cache_store
from .stores.catalog_store import CatalogWriter
from .stores.resume_store import ResumeStateStore


class EnricherState:
    """Builds and owns every collaborator used by one run.

    Use as ``async with EnricherState(settings) as state`` so the HTTP client
    and the cache backend are released when the run ends.
    """

    def __init__(
        self,
        settings: EnricherSettings,
        *,
        require_tmdb: bool = True,
        cache: Optional[CacheStore] = None,
        page_fetcher: Optional[PageFetcher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if require_tmdb and not settings.tmdb_api_key:
            raise ConfigurationError("TMDB_API_KEY is not set")

        self.settings = settings
        self.cache = cache or create_cache_store(settings)
        self.http = httpx.AsyncClient(transport=transport, follow_redirects=True)
        self.queue = GeocodingQueue(settings.geocode_min_interval)

        self.tmdb = TMDBClient(
            self.http,
            settings.tmdb_api_key or "",
            base_url=settings.tmdb_base_url,
            timeout=settings.tmdb_timeout,
        )
        self.identity = IdentityResolver(self.tmdb, self.cache)
        self.metadata = MetadataFetcher(
            self.tmdb, self.cache, request_delay=settings.tmdb_request_delay
        )
        self.geocoder = GeocodingResolver(
            NominatimClient(
                self.http,
                base_url=settings.nominatim_base_url,
                user_agent=settings.nominatim_user_agent,
                timeout=settings.geocode_timeout,
            ),
            self.queue,
            self.cache,
        )
        self.scraper = LocationScraper(
            self.cache,
            page_fetcher
            or PlaywrightPageFetcher(
                headless=settings.headless,
                navigation_timeout=settings.navigation_timeout,
                settle_seconds=settings.settle_seconds,
                max_expand_clicks=settings.max_expand_clicks,
                user_agent=settings.browser_user_agent,
            ),
            debug_html_dir=settings.debug_html_dir,
        )
        self.writer = CatalogWriter(settings.resolved_catalog_path())
        self.resume = ResumeStateStore(settings.resolved_resume_state_path())

    def pipeline(self) -> EnrichmentPipeline:
        return EnrichmentPipeline(
            identity=self.identity,
            metadata=self.metadata,
            scraper=self.scraper,
            geocoder=self.geocoder,
            writer=self.writer,
            resume=self.resume,
            batch_size=self.settings.batch_size,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
        self.cache.close()

    async def __aenter__(self) -> "EnricherState":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
