"""Tests for the Typer-based enricher CLI."""
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.enricher_cli.app import app  # noqa: E402


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated data directory with no credentials in the environment."""

    monkeypatch.chdir(tmp_path)
    for name in ("TMDB_API_KEY", "FILMINGMAP_TMDB_API_KEY", "INPUT_FILE", "FILMINGMAP_INPUT_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FILMINGMAP_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("FILMINGMAP_CACHE_DIR", str(tmp_path / "cache"))
    path = tmp_path / "data"
    path.mkdir()
    return path


def _write_catalog(data_dir: Path, entries: list[dict]) -> Path:
    path = data_dir / "movies_enriched.json"
    path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
    return path


def test_enrich_without_tmdb_key_exits_with_error(runner: CliRunner, data_dir: Path) -> None:
    (data_dir / "movies_input.json").write_text('["tt0111161"]', encoding="utf-8")

    result = runner.invoke(app, ["enrich", "5"])

    assert result.exit_code == 1
    assert "TMDB_API_KEY" in result.output


def test_enrich_with_missing_input_exits_with_error(
    runner: CliRunner, data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TMDB_API_KEY", "key")

    result = runner.invoke(app, ["enrich", "--input-file", str(data_dir / "missing.json")])

    assert result.exit_code == 1
    assert "Input file not found" in result.output


def test_enrich_with_everything_done_is_a_no_op(
    runner: CliRunner, data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TMDB_API_KEY", "key")
    input_file = data_dir / "ids.json"
    input_file.write_text('["tt0111161"]', encoding="utf-8")
    monkeypatch.setenv("INPUT_FILE", str(input_file))
    (data_dir / "rescrape_state.json").write_text(
        json.dumps({"processedIds": ["tt0111161"], "lastRunDate": "2026-01-01T00:00:00+00:00"}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["enrich"])

    assert result.exit_code == 0, result.output
    assert "Nothing to do" in result.output
    assert not (data_dir / "movies_enriched.json").exists()


def test_reset_clears_resume_state(runner: CliRunner, data_dir: Path) -> None:
    state_path = data_dir / "rescrape_state.json"
    state_path.write_text(json.dumps({"processedIds": ["tt1"], "lastRunDate": "x"}), encoding="utf-8")

    result = runner.invoke(app, ["enrich", "--reset"])

    assert result.exit_code == 0, result.output
    assert json.loads(state_path.read_text(encoding="utf-8"))["processedIds"] == []


def test_status_reports_catalog_counts(runner: CliRunner, data_dir: Path) -> None:
    _write_catalog(
        data_dir,
        [
            {
                "movie_id": "tt0000001",
                "title": "A",
                "locations": [
                    {"lat": 1.0, "lng": 1.0, "description": "a", "scene_description": "x"},
                    {"lat": 2.0, "lng": 2.0, "description": "b"},
                ],
            },
            {"movie_id": "tt0000002", "title": "B", "locations": []},
        ],
    )
    (data_dir / "movies_input.json").write_text('["tt0000001", "tt0000002", "tt0000003"]', encoding="utf-8")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["catalog_records"] == 2
    assert report["records_with_locations"] == 1
    assert report["total_locations"] == 2
    assert report["scene_descriptions"] == 1
    assert report["input_titles"] == 3
    assert report["pending_titles"] == 2


def test_dedupe_command_collapses_duplicates_with_backup(runner: CliRunner, data_dir: Path) -> None:
    path = _write_catalog(
        data_dir,
        [
            {
                "movie_id": "tt0000001",
                "title": "A",
                "locations": [
                    {"lat": 51.50070, "lng": -0.12460, "description": "first"},
                    {"lat": 51.50071, "lng": -0.12459, "description": "second"},
                ],
            }
        ],
    )

    result = runner.invoke(app, ["dedupe"])

    assert result.exit_code == 0, result.output
    (entry,) = json.loads(path.read_text(encoding="utf-8"))
    assert [location["description"] for location in entry["locations"]] == ["first"]
    assert (data_dir / "movies_enriched.backup.json").exists()


def test_clean_command_drops_placeholder_coordinates(runner: CliRunner, data_dir: Path) -> None:
    path = _write_catalog(
        data_dir,
        [
            {
                "movie_id": "tt0000001",
                "title": "A",
                "locations": [
                    {"lat": 0, "lng": 0, "description": "null island"},
                    {"lat": -80.1, "lng": 0.2, "description": "antarctic"},
                    {"lat": "n/a", "lng": 3, "description": "text"},
                    {"lat": 40.7, "lng": -74.0, "description": "kept"},
                ],
            }
        ],
    )

    result = runner.invoke(app, ["clean"])

    assert result.exit_code == 0, result.output
    assert "removed 3" in result.output
    (entry,) = json.loads(path.read_text(encoding="utf-8"))
    assert [location["description"] for location in entry["locations"]] == ["kept"]


def test_scrape_rejects_non_imdb_ids(runner: CliRunner, data_dir: Path) -> None:
    result = runner.invoke(app, ["scrape", "12345"])

    assert result.exit_code == 1
    assert "Not an IMDb title id" in result.output


def test_clean_forgets_resumed_ids_left_without_locations(runner: CliRunner, data_dir: Path) -> None:
    """A resumed id must always point at a record that still has locations."""

    _write_catalog(
        data_dir,
        [
            {"movie_id": "tt0000001", "title": "A", "locations": [{"lat": 0, "lng": 0, "description": "x"}]},
            {"movie_id": "tt0000002", "title": "B", "locations": [{"lat": 40.7, "lng": -74.0, "description": "y"}]},
        ],
    )
    state_path = data_dir / "rescrape_state.json"
    state_path.write_text(
        json.dumps({"processedIds": ["tt0000001", "tt0000002"], "lastRunDate": "2026-01-01T00:00:00+00:00"}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["clean"])

    assert result.exit_code == 0, result.output
    assert json.loads(state_path.read_text(encoding="utf-8"))["processedIds"] == ["tt0000002"]
