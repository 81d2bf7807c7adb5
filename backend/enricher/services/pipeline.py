"""
Per-item enrichment state machine and the batched run loop.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from ..errors import EnricherError, IdentityNotFoundError
from ..scrapers.imdb_locations import LocationScraper
from ..schemas import (
    ContentRecord,
    ContentType,
    ItemResult,
    ItemState,
    Location,
    PipelineItem,
    RawLocation,
    ResolvedIdentity,
    RunSummary,
)
from ..stores.catalog_store import CatalogWriter
from ..stores.resume_store import ResumeStateStore
from .dedupe import deduplicate_locations, is_plausible_coordinate
from .geocoder import GeocodingResolver
from .tmdb import IdentityResolver, MetadataFetcher

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, RunSummary], None]


class EnrichmentPipeline:
    """Runs titles through resolve, fetch, scrape, geocode and dedupe."""

    def __init__(
        self,
        *,
        identity: IdentityResolver,
        metadata: MetadataFetcher,
        scraper: LocationScraper,
        geocoder: GeocodingResolver,
        writer: CatalogWriter,
        resume: ResumeStateStore,
        batch_size: int = 5,
    ) -> None:
        self.identity = identity
        self.metadata = metadata
        self.scraper = scraper
        self.geocoder = geocoder
        self.writer = writer
        self.resume = resume
        self.batch_size = max(1, batch_size)

    async def process_item(self, item: PipelineItem) -> ItemResult:
        """Enrich one title.

        Failures never escape: a missing identity becomes ``SKIPPED`` and any
        other error ``FAILED``. A successful result carries ``record`` and is
        left in ``DEDUPING`` until the batch is flushed by :meth:`run`.
        """

        result = ItemResult(item=item)
        try:
            await self._enrich(result)
        except IdentityNotFoundError as exc:
            logger.info("%s: skipped, %s", item.label, exc)
            self._transition(result, ItemState.SKIPPED)
        except EnricherError as exc:
            logger.warning("%s: failed during %s: %s", item.label, result.state.value, exc)
            result.error = str(exc)
            self._transition(result, ItemState.FAILED)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s: unexpected error during %s", item.label, result.state.value)
            result.error = f"{type(exc).__name__}: {exc}"
            self._transition(result, ItemState.FAILED)
        return result

    async def _enrich(self, result: ItemResult) -> None:
        item = result.item
        existing = item.existing

        if existing is not None:
            imdb_id = existing.imdb_id or item.imdb_id
            base: Optional[ContentRecord] = existing
        else:
            self._transition(result, ItemState.RESOLVING_ID)
            identity = await self._identity_for(item)
            if identity is None:
                logger.info("%s: skipped, no IMDb or TMDB id", item.label)
                self._transition(result, ItemState.SKIPPED)
                return

            self._transition(result, ItemState.FETCHING_METADATA)
            meta = await self.metadata.fetch(identity)
            imdb_id = item.imdb_id or meta.imdb_id
            base = None
            if imdb_id:
                base = ContentRecord(
                    movie_id=imdb_id,
                    title=meta.title,
                    original_title=meta.original_title,
                    year=meta.year,
                    imdb_id=imdb_id,
                    tmdb_id=meta.tmdb_id,
                    type=meta.content_type,
                    genres=meta.genres,
                    poster=meta.poster,
                    trailer=meta.trailer,
                    imdb_rating=meta.rating,
                )

        if not imdb_id or base is None:
            logger.info("%s: skipped, no IMDb id to scrape", item.label)
            self._transition(result, ItemState.SKIPPED)
            return

        self._transition(result, ItemState.SCRAPING_LOCATIONS)
        raw_locations = await self.scraper.scrape(imdb_id)
        result.scraped_count = len(raw_locations)
        if not raw_locations:
            logger.info("%s: skipped, no filming locations found", item.label)
            self._transition(result, ItemState.SKIPPED)
            return

        self._transition(result, ItemState.GEOCODING)
        locations = await self._geocode_all(raw_locations)
        result.geocoded_count = len(locations)

        self._transition(result, ItemState.DEDUPING)
        locations = deduplicate_locations(locations)
        if not locations:
            logger.info(
                "%s: skipped, none of %d location(s) could be geocoded",
                item.label,
                len(raw_locations),
            )
            self._transition(result, ItemState.SKIPPED)
            return

        result.record = base.model_copy(update={"locations": locations})
        logger.info(
            "%s: %d/%d location(s) geocoded, %d after dedupe",
            item.label,
            result.geocoded_count,
            result.scraped_count,
            len(locations),
        )

    async def _identity_for(self, item: PipelineItem) -> Optional[ResolvedIdentity]:
        if item.tmdb_id is not None:
            return ResolvedIdentity(
                tmdb_id=item.tmdb_id,
                content_type=item.content_type or ContentType.MOVIE,
            )
        if item.imdb_id:
            return await self.identity.resolve(item.imdb_id)
        return None

    async def _geocode_all(self, raw_locations: Sequence[RawLocation]) -> List[Location]:
        # Requests serialize on the shared queue; gather keeps scrape order.
        geocoded = await asyncio.gather(*(self.geocoder.resolve(raw.place) for raw in raw_locations))
        locations: List[Location] = []
        for raw, hit in zip(raw_locations, geocoded):
            if hit is None:
                logger.debug("Could not geocode %r", raw.place)
                continue
            if not is_plausible_coordinate(hit.lat, hit.lng):
                logger.debug("Dropping placeholder coordinate %s,%s for %r", hit.lat, hit.lng, raw.place)
                continue
            locations.append(
                Location(
                    lat=hit.lat,
                    lng=hit.lng,
                    city=hit.city,
                    country=hit.country,
                    description=raw.place,
                    scene_description=raw.scene,
                )
            )
        return locations

    @staticmethod
    def _transition(result: ItemResult, state: ItemState) -> None:
        logger.debug("%s: %s -> %s", result.item.label, result.state.value, state.value)
        result.state = state

    async def run(
        self,
        items: Sequence[PipelineItem],
        *,
        on_batch: Optional[BatchCallback] = None,
    ) -> RunSummary:
        """Process ``items`` batch by batch, flushing after every batch.

        ``PersistenceError`` from the catalog or resume state propagates and
        stops the run.
        """

        summary = RunSummary(total=len(items))
        batches = [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]
        for number, batch in enumerate(batches, start=1):
            logger.info("Batch %d/%d: %d title(s)", number, len(batches), len(batch))
            results = await asyncio.gather(*(self.process_item(item) for item in batch))

            ready = [result.record for result in results if result.record is not None]
            if ready:
                self.writer.merge(ready)
                self.resume.mark_processed(ready)

            for result in results:
                if result.record is not None:
                    self._transition(result, ItemState.PERSISTED)
                summary.record(result)

            logger.info(
                "Progress %d/%d: %d persisted, %d skipped, %d failed",
                summary.processed,
                summary.total,
                summary.persisted,
                summary.skipped,
                summary.failed,
            )
            if on_batch is not None:
                on_batch(number, summary)
        return summary
