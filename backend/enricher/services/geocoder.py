"""
Free-text geocoding with a cascade of progressively simpler queries.

Every outbound request goes through the shared ``GeocodingQueue`` so that
concurrent titles never exceed the geocoder's rate limit.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..errors import TransientNetworkError
from ..schemas import UNKNOWN, CacheNamespace, GeocodeResult
from ..stores.cache_store import CacheStore
from .queue import GeocodingQueue

logger = logging.getLogger(__name__)

NOMINATIM_ENDPOINT = "https://nominatim.openstreetmap.org"
CITY_FIELDS = ("city", "town", "village", "county", "state")


def split_segments(place: str) -> List[str]:
    return [segment.strip() for segment in place.split(",") if segment.strip()]


def build_query_cascade(place: str) -> List[str]:
    """Return the ordered, de-duplicated queries to try for ``place``.

    The first query is always ``place`` itself; later ones drop the venue
    name, pair the first and last segments, or keep only trailing segments.
    """

    segments = split_segments(place)
    count = len(segments)
    candidates = [place]
    if count >= 3:
        candidates.append(", ".join(segments[1:]))
    if count >= 2:
        candidates.append(f"{segments[0]}, {segments[-1]}")
    if count >= 4:
        candidates.append(", ".join(segments[-3:]))
    if count >= 3:
        candidates.append(", ".join(segments[-2:]))
    if count >= 2:
        candidates.append(segments[0])
    if count >= 3:
        candidates.append(segments[1])

    queries: List[str] = [place]
    for candidate in candidates[1:]:
        if candidate and candidate not in queries:
            queries.append(candidate)
    return queries


def normalize_query(query: str) -> str:
    return " ".join(query.casefold().split())


def map_address(result: Dict[str, Any], fallback_city: str) -> GeocodeResult:
    """Turn one Nominatim hit into a ``GeocodeResult``."""

    address = result.get("address") or {}
    city = next((address[field] for field in CITY_FIELDS if address.get(field)), None)
    return GeocodeResult(
        lat=float(result["lat"]),
        lng=float(result["lon"]),
        city=city or fallback_city or UNKNOWN,
        country=address.get("country") or UNKNOWN,
    )


class NominatimClient:
    """Issues single Nominatim search requests."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = NOMINATIM_ENDPOINT,
        user_agent: str = "filmingmap/1.0",
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout

    async def search(self, query: str) -> List[Dict[str, Any]]:
        params = {"q": query, "format": "json", "limit": 1, "addressdetails": 1}
        try:
            resp = await self._client.get(
                f"{self.base_url}/search",
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Geocoding request failed for {query!r}: {exc}") from exc
        except ValueError as exc:
            raise TransientNetworkError(f"Geocoder returned invalid JSON for {query!r}") from exc
        return data if isinstance(data, list) else []


class GeocodingResolver:
    """Resolves one scraped place mention to coordinates.

    Concurrent resolves of the same normalized query share one queued
    request, so a place repeated across scenes costs a single queue slot.
    """

    def __init__(self, client: NominatimClient, queue: GeocodingQueue, cache: CacheStore) -> None:
        self._client = client
        self._queue = queue
        self._cache = cache
        self._inflight: Dict[str, asyncio.Future] = {}

    async def resolve(self, place: str) -> Optional[GeocodeResult]:
        if not place or not place.strip():
            return None
        segments = split_segments(place)
        fallback_city = segments[0] if segments else UNKNOWN

        for query in build_query_cascade(place):
            cache_key = normalize_query(query)
            cached = self._cached_result(cache_key)
            if cached is not None:
                return cached

            try:
                results = await self._search(query, cache_key)
            except TransientNetworkError as exc:
                logger.warning("%s", exc)
                continue
            if not results:
                continue

            try:
                geocoded = map_address(results[0], fallback_city)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Unusable geocoder result for %r: %s", query, exc)
                continue
            self._cache.set(CacheNamespace.GEOCODE, cache_key, geocoded.model_dump())
            if query != place:
                logger.debug("Geocoded %r via fallback query %r", place, query)
            return geocoded

        return None

    def _cached_result(self, cache_key: str) -> Optional[GeocodeResult]:
        cached = self._cache.get(CacheNamespace.GEOCODE, cache_key)
        if not cached:
            return None
        try:
            return GeocodeResult.model_validate(cached)
        except ValidationError as exc:
            logger.warning("Ignoring malformed geocode cache entry %r: %s", cache_key, exc)
            return None

    async def _search(self, query: str, cache_key: str) -> List[Dict[str, Any]]:
        pending = self._inflight.get(cache_key)
        if pending is None:
            pending = asyncio.ensure_future(self._queue.enqueue(lambda: self._client.search(query)))
            self._inflight[cache_key] = pending
            pending.add_done_callback(lambda done: self._forget(cache_key, done))
        return await asyncio.shield(pending)

    def _forget(self, cache_key: str, done: asyncio.Future) -> None:
        if self._inflight.get(cache_key) is done:
            del self._inflight[cache_key]
