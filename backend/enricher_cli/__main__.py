"""Console entry point for the enricher CLI."""
from __future__ import annotations

from dotenv import load_dotenv

from .app import app


def main() -> None:
    """Load ``.env`` and execute the Typer application."""

    load_dotenv()
    app()


if __name__ == "__main__":
    main()
