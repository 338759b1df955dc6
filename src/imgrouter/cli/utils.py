"""
Utility functions for the CLI.

This module contains helper functions used by CLI commands,
such as path generation, option parsing and exit code constants.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

import click

# Exit codes (130 = common for SIGINT)
EXIT_SUCCESS = 0
EXIT_API_OR_NETWORK = 1
EXIT_VALIDATION_OR_CONFIG = 2
EXIT_CANCELLED = 130

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def default_output_path(content_type: str | None) -> str:
    """Return default output path: imgrouter_<YYYYMMDD>_<HHMMSS>.<ext> in current directory."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    ext = _EXTENSIONS.get((content_type or "").split(";")[0].strip().lower(), "png")
    return f"imgrouter_{timestamp}.{ext}"


def default_session_id() -> str:
    """Session id for one CLI invocation: cli-<YYYYMMDD>-<HHMMSS>."""
    return datetime.now().strftime("cli-%Y%m%d-%H%M%S")


class DecimalParamType(click.ParamType):
    """Click parameter parsed as a non-negative Decimal (costs are never floats)."""

    name = "decimal"

    def convert(
        self, value: object, param: click.Parameter | None, ctx: click.Context | None
    ) -> Decimal:
        if isinstance(value, Decimal):
            return value
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid decimal amount", param, ctx)
        if not parsed.is_finite() or parsed < 0:
            self.fail(f"{value!r} must be a finite, non-negative amount", param, ctx)
        return parsed


DECIMAL = DecimalParamType()


__all__ = [
    "DECIMAL",
    "EXIT_SUCCESS",
    "EXIT_API_OR_NETWORK",
    "EXIT_VALIDATION_OR_CONFIG",
    "EXIT_CANCELLED",
    "default_output_path",
    "default_session_id",
]
