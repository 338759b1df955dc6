"""
Error handling and cancellation for the CLI.

Library exceptions are mapped to exit codes by their ErrorKind. Async command
bodies run through run_async, which turns Ctrl+C into a CancellationError.
"""

import asyncio
import sys
from collections.abc import Callable, Coroutine
from typing import Any

import click

from imgrouter import CancellationError, ErrorKind, ImgrouterError, ValidationError
from imgrouter.cli import progress
from imgrouter.cli.utils import (
    EXIT_API_OR_NETWORK,
    EXIT_CANCELLED,
    EXIT_VALIDATION_OR_CONFIG,
)

# Failures the user can fix by changing arguments or environment.
_USAGE_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.CONFIGURATION, ErrorKind.UNSUPPORTED})


def map_exception_to_exit(exc: BaseException) -> tuple[int, str]:
    """Map library and known exceptions to (exit_code, user_message)."""
    if isinstance(exc, CancellationError):
        return (EXIT_CANCELLED, "Cancelled.")
    msg = str(exc) if exc.args else f"{type(exc).__name__} raised."
    if isinstance(exc, ValidationError) and exc.field:
        msg = f"{msg} (field: {exc.field})"
    if isinstance(exc, ImgrouterError) and exc.kind in _USAGE_KINDS:
        return (EXIT_VALIDATION_OR_CONFIG, msg)
    # Remote, network, timeout, availability and unexpected errors
    return (EXIT_API_OR_NETWORK, msg)


def run_async(coro: Coroutine[Any, Any, None]) -> None:
    """
    Run a command coroutine to completion.

    Raises:
        CancellationError: If the user interrupted the run (Ctrl+C)
    """
    try:
        asyncio.run(coro)
    except KeyboardInterrupt as e:
        raise CancellationError("Operation was cancelled.") from e


def run_with_error_handling(
    fn: Callable[[], None],
    *,
    quiet: bool = False,
    debug: bool = False,
) -> None:
    """
    Run fn(); print the mapped message and exit with the mapped code on error.

    Unexpected (non-imgrouter) exceptions are re-raised when debug is set.
    """
    try:
        fn()
    except Exception as e:
        if debug and not isinstance(e, ImgrouterError):
            raise
        code, msg = map_exception_to_exit(e)
        if code == EXIT_CANCELLED:
            if not quiet:
                progress.print_warning(msg)
        elif quiet:
            click.echo(msg, err=True)
        else:
            progress.print_error(msg)
        sys.exit(code)


__all__ = [
    "map_exception_to_exit",
    "run_async",
    "run_with_error_handling",
]
