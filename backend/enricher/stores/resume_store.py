"""Persistence for the set of titles already enriched with locations."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

from ..schemas import ContentRecord, ResumeState
from .catalog_store import write_atomic

logger = logging.getLogger(__name__)


class ResumeStateStore:
    """Reads and updates the resume state file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> ResumeState:
        if not self.path.exists():
            return ResumeState()
        try:
            return ResumeState.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            # A damaged state file only costs repeated work, never catalog data.
            logger.warning("Resume state %s unreadable, starting empty: %s", self.path, exc)
            return ResumeState()

    def save(self, state: ResumeState) -> None:
        payload = state.model_dump(by_alias=True)
        write_atomic(self.path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")

    def processed_ids(self) -> set[str]:
        return set(self.load().processed_ids)

    def mark_processed(self, records: Iterable[ContentRecord]) -> ResumeState:
        """Add every record that ended with at least one location."""

        state = self.load()
        known = set(state.processed_ids)
        for record in records:
            if record.locations and record.movie_id not in known:
                state.processed_ids.append(record.movie_id)
                known.add(record.movie_id)
        state.touch()
        self.save(state)
        return state

    def reset(self) -> ResumeState:
        state = ResumeState()
        self.save(state)
        logger.info("Resume state reset at %s", self.path)
        return state

    def discard(self, ids: Iterable[str]) -> ResumeState:
        """Forget ids whose records no longer hold any location."""

        state = self.load()
        dropped = set(ids)
        remaining = [movie_id for movie_id in state.processed_ids if movie_id not in dropped]
        if len(remaining) != len(state.processed_ids):
            logger.info("Removed %d id(s) from resume state", len(state.processed_ids) - len(remaining))
            state.processed_ids = remaining
            self.save(state)
        return state
