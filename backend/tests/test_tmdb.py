"""Tests for TMDB identity resolution and metadata parsing."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.enricher.errors import IdentityNotFoundError, TransientNetworkError  # noqa: E402
from backend.enricher.schemas import CacheNamespace, ContentType, ResolvedIdentity  # noqa: E402
from backend.enricher.services.tmdb import (  # noqa: E402
    IdentityResolver,
    MetadataFetcher,
    TMDBClient,
    extract_trailer_key,
    extract_year,
)
from backend.enricher.stores.cache_store import MemoryCacheStore  # noqa: E402


SHAWSHANK_DETAILS = {
    "id": 278,
    "title": "The Shawshank Redemption",
    "original_title": "The Shawshank Redemption",
    "release_date": "1994-09-23",
    "genres": [{"id": 18, "name": "Drama"}, {"id": 80, "name": "Crime"}],
    "poster_path": "/9cqNxx0GxF0bflZmeSMuL5tnGzr.jpg",
    "vote_average": 8.7,
    "imdb_id": "tt0111161",
    "videos": {
        "results": [
            {"type": "Teaser", "site": "YouTube", "key": "teaser"},
            {"type": "Trailer", "site": "Vimeo", "key": "vimeo"},
            {"type": "Trailer", "site": "YouTube", "key": "PLl99DlL6b4"},
        ]
    },
}

BREAKING_BAD_DETAILS = {
    "id": 1396,
    "name": "Breaking Bad",
    "original_name": "Breaking Bad",
    "first_air_date": "2008-01-20",
    "genres": [{"name": "Drama"}],
    "poster_path": None,
    "external_ids": {"imdb_id": "tt0903747"},
}


class TMDBStub:
    """Routes TMDB paths to canned payloads and records requests."""

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = self.routes.get(request.url.path)
        if payload is None:
            return httpx.Response(404, json={"status_message": "not found"})
        return httpx.Response(200, json=payload)


def _run(stub: TMDBStub, cache: MemoryCacheStore, action):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as http:
            tmdb = TMDBClient(http, "secret", base_url="https://tmdb.test/3")
            return await action(IdentityResolver(tmdb, cache), MetadataFetcher(tmdb, cache, request_delay=0))

    return asyncio.run(run())


def test_find_prefers_movie_over_series() -> None:
    stub = TMDBStub(
        {"/3/find/tt0111161": {"movie_results": [{"id": 278}], "tv_results": [{"id": 999}]}}
    )
    cache = MemoryCacheStore()

    identity = _run(stub, cache, lambda resolver, _: resolver.resolve("tt0111161"))

    assert identity == ResolvedIdentity(tmdb_id=278, content_type=ContentType.MOVIE)
    request = stub.requests[0]
    assert request.url.params["api_key"] == "secret"
    assert request.url.params["external_source"] == "imdb_id"
    assert cache.get(CacheNamespace.IDENTITY, "tt0111161") == {"tmdb_id": 278, "content_type": "movie"}


def test_find_falls_back_to_series_and_uses_cache() -> None:
    stub = TMDBStub({"/3/find/tt0903747": {"movie_results": [], "tv_results": [{"id": 1396}]}})
    cache = MemoryCacheStore()

    async def twice(resolver, _):
        return [await resolver.resolve("tt0903747"), await resolver.resolve("tt0903747")]

    first, second = _run(stub, cache, twice)

    assert first.content_type is ContentType.SERIES and first.tmdb_id == 1396
    assert second == first
    assert len(stub.requests) == 1


def test_find_without_match_raises_not_found() -> None:
    stub = TMDBStub({"/3/find/tt9999999": {"movie_results": [], "tv_results": []}})

    with pytest.raises(IdentityNotFoundError):
        _run(stub, MemoryCacheStore(), lambda resolver, _: resolver.resolve("tt9999999"))


def test_http_errors_are_transient() -> None:
    stub = TMDBStub({})

    with pytest.raises(TransientNetworkError):
        _run(stub, MemoryCacheStore(), lambda resolver, _: resolver.resolve("tt0111161"))


def test_movie_details_are_normalized() -> None:
    stub = TMDBStub({"/3/movie/278": SHAWSHANK_DETAILS})
    identity = ResolvedIdentity(tmdb_id=278, content_type=ContentType.MOVIE)

    meta = _run(stub, MemoryCacheStore(), lambda _, fetcher: fetcher.fetch(identity))

    assert meta.title == "The Shawshank Redemption"
    assert meta.year == 1994
    assert meta.genres == ["Drama", "Crime"]
    assert meta.poster == "https://image.tmdb.org/t/p/w500/9cqNxx0GxF0bflZmeSMuL5tnGzr.jpg"
    assert meta.trailer == "PLl99DlL6b4"
    assert meta.rating == pytest.approx(8.7)
    assert meta.imdb_id == "tt0111161"
    assert stub.requests[0].url.params["append_to_response"] == "videos,external_ids"


def test_series_details_use_name_and_external_ids() -> None:
    stub = TMDBStub({"/3/tv/1396": BREAKING_BAD_DETAILS})
    cache = MemoryCacheStore()
    identity = ResolvedIdentity(tmdb_id=1396, content_type=ContentType.SERIES)

    async def twice(_, fetcher):
        return [await fetcher.fetch(identity), await fetcher.fetch(identity)]

    meta, cached = _run(stub, cache, twice)

    assert (meta.title, meta.year, meta.imdb_id) == ("Breaking Bad", 2008, "tt0903747")
    assert meta.poster == "" and meta.trailer is None and meta.rating is None
    assert cached == meta
    assert len(stub.requests) == 1
    assert cache.get(CacheNamespace.METADATA, "tv_1396")["name"] == "Breaking Bad"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1994-09-23", 1994), ("2008", 2008), ("", 0), (None, 0), ("soon", 0)],
)
def test_extract_year(value, expected) -> None:
    assert extract_year(value) == expected


def test_trailer_requires_youtube_trailer() -> None:
    assert extract_trailer_key({"results": [{"type": "Clip", "site": "YouTube", "key": "x"}]}) is None
    assert extract_trailer_key(None) is None


def test_malformed_cache_entries_are_refetched() -> None:
    stub = TMDBStub(
        {
            "/3/find/tt0111161": {"movie_results": [{"id": 278}], "tv_results": []},
            "/3/movie/278": SHAWSHANK_DETAILS,
        }
    )
    cache = MemoryCacheStore()
    cache.set(CacheNamespace.IDENTITY, "tt0111161", {"tmdb": "not-an-id"})
    cache.set(CacheNamespace.METADATA, "movie_278", ["truncated"])

    async def both(resolver, fetcher):
        identity = await resolver.resolve("tt0111161")
        return identity, await fetcher.fetch(identity)

    identity, meta = _run(stub, cache, both)

    assert identity == ResolvedIdentity(tmdb_id=278, content_type=ContentType.MOVIE)
    assert meta.title == "The Shawshank Redemption"
    assert len(stub.requests) == 2
    assert cache.get(CacheNamespace.IDENTITY, "tt0111161") == {"tmdb_id": 278, "content_type": "movie"}
    assert cache.get(CacheNamespace.METADATA, "movie_278")["id"] == 278
