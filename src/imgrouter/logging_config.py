"""
Logging configuration for imgrouter.

Provides structured logging with verbosity levels. Logging is configured lazily
so library users who never call set_verbosity or configure_logging get no
logs unless they configure logging themselves.

Verbosity levels:
- 0 (default): INFO: selection decisions, attempt outcomes, circuit changes
- 1 (info): INFO + prompt text sent to providers
- 2 (verbose): DEBUG + prompt text, HTTP calls, health probes, cache hits

Observability events (health_check, provider_selected, generation_attempt,
circuit_state_change, attempt_failed) are emitted with log_event(), which
renders ``event key=value ...`` and attaches the fields as ``extra`` so an
external collector can consume them without parsing the message.

Use set_verbosity(level) or configure_logging(verbose_level, quiet).
IMGROUTER_VERBOSITY env (0/1/2) is read when the CLI runs; CLI flags override env.
"""

import logging
import os
from enum import Enum
from typing import Any

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER_NAME = "imgrouter"

_log_prompts: bool = False
_configured: bool = False


def _ensure_handler() -> None:
    """Add a stderr handler to the root imgrouter logger if not already present."""
    global _configured
    if _configured:
        return
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    _configured = True


def set_verbosity(level: int) -> None:
    """
    Set logging verbosity (0=default, 1=info, 2=verbose).

    - 0: INFO level; events only (no prompt text).
    - 1: INFO level; same + log prompt text.
    - 2: DEBUG level; same + HTTP calls, probes, cache hits (no secrets).
    """
    global _log_prompts
    _ensure_handler()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if level <= 0:
        root.setLevel(logging.INFO)
        _log_prompts = False
    elif level == 1:
        root.setLevel(logging.INFO)
        _log_prompts = True
    else:
        root.setLevel(logging.DEBUG)
        _log_prompts = True


def log_prompts() -> bool:
    """Return True if prompt text should be logged at INFO (verbosity 1 or 2)."""
    return _log_prompts


def configure_logging(verbose_level: int = 0, quiet: bool = False) -> None:
    """
    Configure logging from CLI or library.

    When quiet is True, sets level to WARNING (failures and circuit changes only).
    Otherwise calls set_verbosity(verbose_level).
    """
    global _log_prompts
    _ensure_handler()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if quiet:
        root.setLevel(logging.WARNING)
        _log_prompts = False
        return
    set_verbosity(verbose_level)


def get_verbosity_from_env() -> int:
    """
    Read IMGROUTER_VERBOSITY from environment (0, 1, or 2).

    Invalid or missing values return 0.
    """
    raw = os.environ.get("IMGROUTER_VERBOSITY", "0").strip()
    if raw == "1":
        return 1
    if raw == "2":
        return 2
    return 0


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under imgrouter (e.g. imgrouter.core.manager)."""
    if name.startswith(ROOT_LOGGER_NAME + ".") or name == ROOT_LOGGER_NAME:
        return logging.getLogger(name)
    return logging.getLogger(ROOT_LOGGER_NAME + "." + name)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".") or "0"
    if isinstance(value, Enum):
        value = value.value
    text = str(value)
    if " " in text:
        return repr(text)
    return text


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """
    Emit one structured observability event.

    None-valued fields are dropped. Fields are rendered into the message and
    attached to the record as ``record.event`` and ``record.fields``.
    """
    if not logger.isEnabledFor(level):
        return
    payload = {k: v for k, v in fields.items() if v is not None}
    rendered = " ".join(f"{k}={_format_value(v)}" for k, v in payload.items())
    message = f"{event} {rendered}" if rendered else event
    logger.log(level, message, extra={"event": event, "fields": payload})


__all__ = [
    "configure_logging",
    "get_logger",
    "get_verbosity_from_env",
    "log_event",
    "log_prompts",
    "set_verbosity",
]
