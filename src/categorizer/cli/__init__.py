"""
Command-line interface for the categorizer.

A Typer application whose sub-commands drive the same gateway, store and
engine the API uses, in-process. Terminal concerns only: argument parsing,
coloured output and tables.

Entry point::

    categorizer --help
"""

from categorizer.cli.app import app

__all__ = ["app"]
