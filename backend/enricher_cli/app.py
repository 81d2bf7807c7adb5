"""Command line interface for the FilmingMap location enricher."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

import typer

from backend.enricher.errors import ConfigurationError, PersistenceError
from backend.enricher.schemas import RunSummary
from backend.enricher.services.dedupe import deduplicate_entries, is_plausible_coordinate
from backend.enricher.services.selection import (
    load_input_items,
    select_enrich_items,
    select_rescrape_items,
)
from backend.enricher.settings import EnricherSettings
from backend.enricher.state import EnricherState
from backend.enricher.stores.catalog_store import CatalogWriter, entry_id, load_catalog
from backend.enricher.stores.resume_store import ResumeStateStore

app = typer.Typer(help="Discover, geocode and store filming locations for the FilmingMap catalog.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings(**overrides: object) -> EnricherSettings:
    settings = EnricherSettings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=updates) if updates else settings


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


def _echo_progress(batch: int, summary: RunSummary) -> None:
    typer.echo(
        f"[batch {batch}] {summary.processed}/{summary.total} processed: "
        f"{summary.persisted} saved, {summary.skipped} skipped, {summary.failed} failed"
    )


def _echo_summary(summary: RunSummary, settings: EnricherSettings) -> None:
    typer.echo(
        f"Done: {summary.persisted} saved ({summary.locations} locations), "
        f"{summary.skipped} skipped, {summary.failed} failed of {summary.total}."
    )
    typer.echo(f"Catalog: {settings.resolved_catalog_path()}")


def _reset_state(settings: EnricherSettings) -> None:
    ResumeStateStore(settings.resolved_resume_state_path()).reset()
    typer.echo(f"Resume state cleared: {settings.resolved_resume_state_path()}")


def _common_overrides(
    batch_size: Optional[int], headed: bool, skip_completed: Optional[bool]
) -> dict[str, object]:
    return {
        "batch_size": batch_size,
        "headless": False if headed else None,
        "skip_completed": skip_completed,
    }


COUNT_ARGUMENT = typer.Argument(None, min=1, help="Maximum number of titles to process.")
RESET_OPTION = typer.Option(False, "--reset", help="Clear the resume state and exit.")
BATCH_SIZE_OPTION = typer.Option(None, "--batch-size", min=1, help="Titles processed concurrently.")
HEADED_OPTION = typer.Option(False, "--headed", help="Show the browser window while scraping.")
SKIP_COMPLETED_OPTION = typer.Option(
    None,
    "--skip-completed/--no-skip-completed",
    help="Skip titles already enriched (default from settings).",
    show_default=False,
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


@app.command()
def enrich(
    count: Optional[int] = COUNT_ARGUMENT,
    reset: bool = RESET_OPTION,
    input_file: Optional[Path] = typer.Option(
        None,
        "--input-file",
        envvar="INPUT_FILE",
        help="JSON array of IMDb ids or {imdb_id, tmdb_id, type} objects.",
    ),
    batch_size: Optional[int] = BATCH_SIZE_OPTION,
    headed: bool = HEADED_OPTION,
    skip_completed: Optional[bool] = SKIP_COMPLETED_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Enrich titles from the input list and merge them into the catalog."""

    _configure_logging(verbose)
    settings = _load_settings(input_file=input_file, **_common_overrides(batch_size, headed, skip_completed))
    if reset:
        _reset_state(settings)
        return

    try:
        summary = asyncio.run(_run_enrich(settings, count))
    except ConfigurationError as exc:
        raise _fail(f"Configuration error: {exc}") from exc
    except PersistenceError as exc:
        raise _fail(f"Aborted, catalog could not be saved: {exc}") from exc
    _echo_summary(summary, settings)


async def _run_enrich(settings: EnricherSettings, count: Optional[int]) -> RunSummary:
    if not settings.tmdb_api_key:
        raise ConfigurationError("TMDB_API_KEY is not set")
    items = load_input_items(settings.resolved_input_file())
    writer = CatalogWriter(settings.resolved_catalog_path())
    resume = ResumeStateStore(settings.resolved_resume_state_path())
    selected = select_enrich_items(
        items,
        writer.read(),
        resume.processed_ids(),
        skip_completed=settings.skip_completed,
        limit=count,
    )
    if not selected:
        typer.echo("Nothing to do: every input title is already enriched.")
        return RunSummary()

    typer.echo(f"Enriching {len(selected)} title(s) in batches of {settings.batch_size}")
    async with EnricherState(settings) as state:
        return await state.pipeline().run(selected, on_batch=_echo_progress)


@app.command()
def rescrape(
    count: Optional[int] = COUNT_ARGUMENT,
    reset: bool = RESET_OPTION,
    batch_size: Optional[int] = BATCH_SIZE_OPTION,
    headed: bool = HEADED_OPTION,
    skip_completed: Optional[bool] = SKIP_COMPLETED_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Scrape locations again for catalog records that have no scene descriptions."""

    _configure_logging(verbose)
    settings = _load_settings(**_common_overrides(batch_size, headed, skip_completed))
    if reset:
        _reset_state(settings)
        return

    try:
        summary = asyncio.run(_run_rescrape(settings, count))
    except ConfigurationError as exc:
        raise _fail(f"Configuration error: {exc}") from exc
    except PersistenceError as exc:
        raise _fail(f"Aborted, catalog could not be saved: {exc}") from exc
    _echo_summary(summary, settings)


async def _run_rescrape(settings: EnricherSettings, count: Optional[int]) -> RunSummary:
    writer = CatalogWriter(settings.resolved_catalog_path())
    resume = ResumeStateStore(settings.resolved_resume_state_path())
    selected = select_rescrape_items(
        writer.read_records(),
        resume.processed_ids(),
        skip_completed=settings.skip_completed,
        limit=count,
    )
    if not selected:
        typer.echo("Nothing to rescrape.")
        return RunSummary()

    typer.echo(f"Rescraping {len(selected)} record(s) in batches of {settings.batch_size}")
    async with EnricherState(settings, require_tmdb=False) as state:
        return await state.pipeline().run(selected, on_batch=_echo_progress)


@app.command()
def status() -> None:
    """Summarize the catalog, the input list and the resume state."""

    settings = _load_settings()
    try:
        catalog = load_catalog(settings.resolved_catalog_path())
    except PersistenceError as exc:
        raise _fail(str(exc)) from exc
    state = ResumeStateStore(settings.resolved_resume_state_path()).load()

    input_path = settings.resolved_input_file()
    try:
        input_ids = [item.label for item in load_input_items(input_path)]
    except ConfigurationError:
        input_ids = []

    with_locations = [entry for entry in catalog if entry.get("locations")]
    location_count = sum(len(entry["locations"]) for entry in with_locations)
    scene_count = sum(
        1
        for entry in with_locations
        for location in entry["locations"]
        if isinstance(location, dict) and location.get("scene_description")
    )
    done = set(state.processed_ids) | {entry_id(entry) for entry in with_locations}
    pending = [item_id for item_id in input_ids if item_id not in done]

    report = {
        "input_file": str(input_path),
        "input_titles": len(input_ids),
        "catalog_file": str(settings.resolved_catalog_path()),
        "catalog_records": len(catalog),
        "records_with_locations": len(with_locations),
        "records_without_locations": len(catalog) - len(with_locations),
        "total_locations": location_count,
        "scene_descriptions": scene_count,
        "resumed_ids": len(state.processed_ids),
        "last_run_date": state.last_run_date or None,
        "pending_titles": len(pending),
    }
    typer.echo(json.dumps(report, indent=2, ensure_ascii=False))


LocationFilter = Callable[[List[dict]], List[dict]]


def _rewrite_locations(settings: EnricherSettings, label: str, keep: LocationFilter) -> None:
    writer = CatalogWriter(settings.resolved_catalog_path())
    try:
        entries = writer.read()
        changed_records = 0
        removed = 0
        emptied: List[str] = []
        for entry in entries:
            locations = entry.get("locations")
            if not isinstance(locations, list):
                continue
            kept = keep(locations)
            if len(kept) != len(locations):
                removed += len(locations) - len(kept)
                changed_records += 1
                entry["locations"] = kept
                movie_id = entry_id(entry)
                if not kept and movie_id:
                    emptied.append(movie_id)
        if removed:
            writer.rewrite(entries)
        if emptied:
            ResumeStateStore(settings.resolved_resume_state_path()).discard(emptied)
    except PersistenceError as exc:
        raise _fail(str(exc)) from exc
    typer.echo(f"{label}: removed {removed} location(s) from {changed_records} record(s).")


def _plausible_only(locations: List[dict]) -> List[dict]:
    return [
        raw
        for raw in locations
        if isinstance(raw, dict) and is_plausible_coordinate(raw.get("lat"), raw.get("lng"))
    ]


@app.command()
def dedupe() -> None:
    """Collapse locations sharing a rounded coordinate in every catalog record."""

    _configure_logging(False)
    _rewrite_locations(_load_settings(), "Dedupe", deduplicate_entries)


@app.command()
def clean() -> None:
    """Drop locations with missing, out-of-range or placeholder coordinates."""

    _configure_logging(False)
    _rewrite_locations(_load_settings(), "Clean", _plausible_only)


@app.command()
def scrape(
    imdb_id: str = typer.Argument(..., help="IMDb title id, e.g. tt0111161."),
    geocode: bool = typer.Option(False, "--geocode", help="Geocode each scraped location."),
    headed: bool = HEADED_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Scrape one title and print its raw (optionally geocoded) locations."""

    _configure_logging(verbose)
    if not imdb_id.startswith("tt"):
        raise _fail(f"Not an IMDb title id: {imdb_id}")
    settings = _load_settings(headless=False if headed else None)
    rows = asyncio.run(_run_scrape(settings, imdb_id, geocode))
    typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))


async def _run_scrape(settings: EnricherSettings, imdb_id: str, geocode: bool) -> List[dict]:
    async with EnricherState(settings, require_tmdb=False) as state:
        rows: List[dict] = []
        for raw in await state.scraper.scrape(imdb_id):
            row: dict = raw.model_dump(exclude_none=True)
            if geocode:
                hit = await state.geocoder.resolve(raw.place)
                row["geocode"] = hit.model_dump() if hit else None
            rows.append(row)
        return rows
