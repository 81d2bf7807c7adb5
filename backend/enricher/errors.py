"""Exception taxonomy for the enrichment pipeline."""
from __future__ import annotations


class EnricherError(RuntimeError):
    """Base class for enrichment failures."""


class IdentityNotFoundError(EnricherError):
    """Raised when an external id has no movie or series match on TMDB."""

    def __init__(self, external_id: str) -> None:
        super().__init__(f"No TMDB match for {external_id}")
        self.external_id = external_id


class TransientNetworkError(EnricherError):
    """Raised on timeouts, connection errors and non-success HTTP responses."""


class PersistenceError(EnricherError):
    """Raised when the catalog or resume state cannot be written.

    Unlike the other errors this one aborts the run.
    """


class ConfigurationError(EnricherError):
    """Raised when a run cannot start, e.g. a missing API key or input file."""
