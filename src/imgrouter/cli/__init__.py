"""
Command-line interface for imgrouter.

This package contains CLI implementations using Click.
Uses only the public API: from imgrouter import ...
"""

from imgrouter.cli.commands import cli, main

__all__ = ["cli", "main"]
