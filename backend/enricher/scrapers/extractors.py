"""
Extraction strategies for IMDb filming-location pages.

Each strategy is a pure function of a ``PageSnapshot`` and returns the raw
mentions it recognises, or an empty list. ``extract_locations`` runs them in
priority order and keeps the first non-empty result.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Callable, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from ..schemas import RawLocation

BOILERPLATE_PHRASES = (
    "Cast & crew",
    "User reviews",
    "Trivia",
    "Learn more",
    "IMDbPro",
    "See full",
    "All topics",
)
SECTION_KEYWORDS = ("Filming", "Location")
MIN_TEXT_LENGTH = 10
LOCATIONS_CATEGORY = "flmg_locations"


@dataclass
class PageSnapshot:
    """HTML captured from a rendered page."""

    html: str
    url: str = ""

    @cached_property
    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html or "", "html.parser")


Extractor = Callable[[PageSnapshot], List[RawLocation]]


def _clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def extract_from_cards(snapshot: PageSnapshot) -> List[RawLocation]:
    """Structured location cards; the only strategy that yields scene text."""

    results: List[RawLocation] = []
    for card in snapshot.soup.select('[data-testid="item-id"]'):
        link = card.select_one('a[data-testid="item-text-with-link"]')
        place = _clean(link.get_text(" ") if link else "")
        if not place:
            continue
        scene_el = card.select_one('[data-testid="item-attributes"]')
        scene = _clean(scene_el.get_text(" ") if scene_el else "")
        results.append(RawLocation(place=place, scene=scene or None))
    return results


def _walk(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _locations_from_payload(payload: Any) -> Iterable[str]:
    categories = _walk(payload, "props", "pageProps", "contentData", "categories") or []
    for category in categories if isinstance(categories, list) else []:
        if not isinstance(category, dict) or category.get("id") != LOCATIONS_CATEGORY:
            continue
        for item in _walk(category, "section", "items") or []:
            if isinstance(item, dict) and isinstance(item.get("cardText"), str):
                yield item["cardText"]

    edges = _walk(payload, "filmingLocations", "edges") or []
    for edge in edges if isinstance(edges, list) else []:
        location = _walk(edge, "node", "location")
        if isinstance(location, str):
            yield location


def extract_from_embedded_json(snapshot: PageSnapshot) -> List[RawLocation]:
    """Locations from JSON payloads embedded in script tags (no scene text)."""

    results: List[RawLocation] = []
    for script in snapshot.soup.find_all("script", attrs={"type": "application/json"}):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for place in _locations_from_payload(payload):
            cleaned = _clean(place)
            if cleaned:
                results.append(RawLocation(place=cleaned))
    return results


def _is_boilerplate(text: str) -> bool:
    return any(phrase in text for phrase in BOILERPLATE_PHRASES)


def extract_from_text_blocks(snapshot: PageSnapshot) -> List[RawLocation]:
    """Last resort: list items inside sections that talk about locations."""

    soup = snapshot.soup
    root = soup.find("main") or soup.body or soup
    results: List[RawLocation] = []
    seen: set[str] = set()
    for section in root.find_all("section"):
        if not isinstance(section, Tag):
            continue
        section_text = section.get_text(" ")
        if not any(keyword in section_text for keyword in SECTION_KEYWORDS):
            continue
        for item in section.find_all("li"):
            text = _clean(item.get_text(" "))
            if len(text) <= MIN_TEXT_LENGTH or _is_boilerplate(text) or text in seen:
                continue
            seen.add(text)
            results.append(RawLocation(place=text))
    return results


DEFAULT_EXTRACTORS: Sequence[Extractor] = (
    extract_from_cards,
    extract_from_embedded_json,
    extract_from_text_blocks,
)


def extract_locations(
    snapshot: PageSnapshot, extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS
) -> List[RawLocation]:
    for extractor in extractors:
        results = extractor(snapshot)
        if results:
            return results
    return []
