"""
IMDb filming-location scraper driven by headless Chromium.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright
from pydantic import ValidationError

from ..schemas import CacheNamespace, RawLocation
from ..stores.cache_store import CacheStore
from .extractors import DEFAULT_EXTRACTORS, Extractor, PageSnapshot, extract_locations

logger = logging.getLogger(__name__)

LOCATIONS_URL = "https://www.imdb.com/title/{imdb_id}/locations/"

EXPAND_SELECTORS = (
    "button.ipc-see-more__button",
    'button[class*="see-more"]',
    ".single-page-see-more-button-flmg_locations button",
    ".chained-see-more-button-flmg_locations button",
)
EXPAND_LABELS = ("more", "See all", "Show")

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920,1080",
]

PageFetcher = Callable[[str], Awaitable[Optional[PageSnapshot]]]


async def expand_all(page: Any, *, max_clicks: int = 5, settle_seconds: float = 2.0) -> int:
    """Click "show more" style controls until none is left or ``max_clicks`` is hit."""

    clicks = 0
    while clicks < max_clicks:
        try:
            clicked = await _click_first_expander(page, settle_seconds)
        except PlaywrightError as exc:
            logger.debug("Expand loop stopped: %s", exc)
            break
        if not clicked:
            break
        clicks += 1
    return clicks


async def _click_first_expander(page: Any, settle_seconds: float) -> bool:
    for selector in EXPAND_SELECTORS:
        for button in await page.query_selector_all(selector):
            text = (await button.text_content() or "").strip()
            if not text or not any(label in text for label in EXPAND_LABELS):
                continue
            logger.debug("Clicking expand control %r", text)
            await button.scroll_into_view_if_needed()
            await page.wait_for_timeout(500)
            await button.click()
            await page.wait_for_timeout(settle_seconds * 1000)
            return True
    return False


class PlaywrightPageFetcher:
    """Loads a page in an isolated Chromium session and returns its HTML."""

    def __init__(
        self,
        *,
        headless: bool = True,
        navigation_timeout: float = 30.0,
        settle_seconds: float = 2.0,
        max_expand_clicks: int = 5,
        user_agent: Optional[str] = None,
    ) -> None:
        self.headless = headless
        self.navigation_timeout = navigation_timeout
        self.settle_seconds = settle_seconds
        self.max_expand_clicks = max_expand_clicks
        self.user_agent = user_agent

    async def __call__(self, url: str) -> Optional[PageSnapshot]:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(
                    viewport={"width": 1920, "height": 1080},
                    user_agent=self.user_agent,
                )
                page = await context.new_page()
                try:
                    await page.goto(
                        url,
                        wait_until="domcontentloaded",
                        timeout=self.navigation_timeout * 1000,
                    )
                except (PlaywrightTimeout, PlaywrightError) as exc:
                    logger.warning("Navigation to %s failed: %s", url, exc)
                    return None

                await page.wait_for_timeout(self.settle_seconds * 1000)
                clicks = await expand_all(
                    page,
                    max_clicks=self.max_expand_clicks,
                    settle_seconds=self.settle_seconds,
                )
                logger.debug("Clicked %d expansion control(s) on %s", clicks, url)
                return PageSnapshot(html=await page.content(), url=url)
            finally:
                await browser.close()


class LocationScraper:
    """Produces raw filming-location mentions for an IMDb title."""

    def __init__(
        self,
        cache: CacheStore,
        fetch_page: PageFetcher,
        *,
        extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS,
        debug_html_dir: Optional[Path] = None,
    ) -> None:
        self._cache = cache
        self._fetch_page = fetch_page
        self._extractors = extractors
        self.debug_html_dir = debug_html_dir

    async def scrape(self, imdb_id: str) -> List[RawLocation]:
        cached = self._cached_locations(imdb_id)
        if cached is not None:
            logger.info("%s: using %d cached location(s)", imdb_id, len(cached))
            return cached

        url = LOCATIONS_URL.format(imdb_id=imdb_id)
        try:
            snapshot = await self._fetch_page(url)
        except PlaywrightError as exc:
            logger.warning("%s: browser session failed: %s", imdb_id, exc)
            return []
        if snapshot is None:
            # Transient; leave the cache cold so the next run retries.
            return []

        self._dump_html(imdb_id, snapshot)
        locations = extract_locations(snapshot, self._extractors)
        if not locations:
            logger.info("%s: no filming locations recognised on page", imdb_id)
        self._cache.set(
            CacheNamespace.LOCATIONS,
            imdb_id,
            [location.model_dump(exclude_none=True) for location in locations],
        )
        return locations

    def _cached_locations(self, imdb_id: str) -> Optional[List[RawLocation]]:
        cached = self._cache.get(CacheNamespace.LOCATIONS, imdb_id)
        if cached is None:
            return None
        try:
            return [RawLocation.model_validate(item) for item in cached]
        except (TypeError, ValidationError) as exc:
            logger.warning("%s: ignoring malformed location cache entry: %s", imdb_id, exc)
            return None

    def _dump_html(self, imdb_id: str, snapshot: PageSnapshot) -> None:
        if self.debug_html_dir is None:
            return
        path = Path(self.debug_html_dir) / f"debug_{imdb_id}.html"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(snapshot.html, encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write debug HTML %s: %s", path, exc)
