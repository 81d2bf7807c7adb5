"""
Location enrichment backend for FilmingMap.

This package resolves titles on TMDB, scrapes their IMDb filming locations
with Playwright, geocodes them through a rate-limited Nominatim queue and
merges the results into the catalog JSON consumed by the map.
"""

__all__ = ["scrapers", "services", "stores", "settings", "state"]
