"""
TMDB identity resolution and metadata fetching.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..errors import IdentityNotFoundError, TransientNetworkError
from ..schemas import CacheNamespace, ContentType, ResolvedIdentity, TitleMetadata
from ..stores.cache_store import CacheStore

logger = logging.getLogger(__name__)

TMDB_ENDPOINT = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"


class TMDBClient:
    """Thin async wrapper over the TMDB v3 REST API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        *,
        base_url: str = TMDB_ENDPOINT,
        timeout: float = 20.0,
    ) -> None:
        self._client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"api_key": self.api_key, **(params or {})}
        url = f"{self.base_url}{endpoint}"
        try:
            resp = await self._client.get(url, params=query, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"TMDB request {endpoint} failed: {exc}") from exc
        except ValueError as exc:
            raise TransientNetworkError(f"TMDB returned invalid JSON for {endpoint}") from exc


class IdentityResolver:
    """Maps an IMDb id to its TMDB id and content type."""

    def __init__(self, tmdb: TMDBClient, cache: CacheStore) -> None:
        self._tmdb = tmdb
        self._cache = cache

    async def resolve(self, imdb_id: str) -> ResolvedIdentity:
        cached = self._cache.get(CacheNamespace.IDENTITY, imdb_id)
        if cached:
            try:
                return ResolvedIdentity.model_validate(cached)
            except ValidationError as exc:
                logger.warning("Ignoring malformed identity cache entry for %s: %s", imdb_id, exc)

        data = await self._tmdb.get(f"/find/{imdb_id}", {"external_source": "imdb_id"})
        identity = _first_match(data)
        if identity is None:
            raise IdentityNotFoundError(imdb_id)

        logger.debug("Resolved %s to TMDB %s %s", imdb_id, identity.content_type.value, identity.tmdb_id)
        self._cache.set(CacheNamespace.IDENTITY, imdb_id, identity.model_dump(mode="json"))
        return identity


def _first_match(data: Dict[str, Any]) -> Optional[ResolvedIdentity]:
    # Movies win over series when an id appears in both result sets.
    for key, content_type in (("movie_results", ContentType.MOVIE), ("tv_results", ContentType.SERIES)):
        results = data.get(key) or []
        if results and results[0].get("id") is not None:
            return ResolvedIdentity(tmdb_id=int(results[0]["id"]), content_type=content_type)
    return None


class MetadataFetcher:
    """Fetches and normalizes TMDB details for a resolved title."""

    def __init__(self, tmdb: TMDBClient, cache: CacheStore, *, request_delay: float = 0.25) -> None:
        self._tmdb = tmdb
        self._cache = cache
        self.request_delay = request_delay

    async def fetch(self, identity: ResolvedIdentity) -> TitleMetadata:
        cache_key = f"{identity.content_type.value}_{identity.tmdb_id}"
        data = self._cache.get(CacheNamespace.METADATA, cache_key)
        if data is not None and not isinstance(data, dict):
            logger.warning("Ignoring malformed metadata cache entry %s", cache_key)
            data = None
        if data is None:
            data = await self._tmdb.get(
                f"/{identity.content_type.value}/{identity.tmdb_id}",
                {"append_to_response": "videos,external_ids"},
            )
            self._cache.set(CacheNamespace.METADATA, cache_key, data)
            # TMDB throttles bursts; this pause is independent of the geocoding queue.
            await asyncio.sleep(self.request_delay)
        return parse_metadata(data, identity)


def parse_metadata(data: Dict[str, Any], identity: ResolvedIdentity) -> TitleMetadata:
    title = data.get("title") or data.get("name") or ""
    original_title = data.get("original_title") or data.get("original_name")
    imdb_id = data.get("imdb_id") or (data.get("external_ids") or {}).get("imdb_id")
    rating = data.get("vote_average")
    return TitleMetadata(
        tmdb_id=identity.tmdb_id,
        content_type=identity.content_type,
        title=title,
        original_title=original_title,
        year=extract_year(data.get("release_date") or data.get("first_air_date")),
        genres=_genre_names(data.get("genres")),
        poster=build_image_url(data.get("poster_path")),
        trailer=extract_trailer_key(data.get("videos")),
        rating=float(rating) if isinstance(rating, (int, float)) else None,
        imdb_id=imdb_id or None,
    )


def extract_year(date_str: Optional[str]) -> int:
    if not date_str:
        return 0
    try:
        return int(str(date_str).split("-")[0])
    except ValueError:
        return 0


def build_image_url(path: Optional[str]) -> str:
    if not path:
        return ""
    return f"{TMDB_IMAGE_BASE}{path}"


def extract_trailer_key(videos: Optional[Dict[str, Any]]) -> Optional[str]:
    for video in (videos or {}).get("results") or []:
        if video.get("type") == "Trailer" and video.get("site") == "YouTube" and video.get("key"):
            return video["key"]
    return None


def _genre_names(genres: Any) -> list[str]:
    names: list[str] = []
    for genre in genres or []:
        name = genre.get("name") if isinstance(genre, dict) else None
        if name and name not in names:
            names.append(name)
    return names
