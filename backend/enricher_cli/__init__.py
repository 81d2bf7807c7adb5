"""Typer command line interface for the location enricher."""
