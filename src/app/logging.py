"""Console logging setup backed by rich."""

from __future__ import annotations

import logging
from typing import Final

from rich.logging import RichHandler

_DEFAULT_LEVEL: Final[str] = "INFO"
_FORMAT: Final[str] = "%(message)s"
_DATE_FORMAT: Final[str] = "[%X]"

_configured: bool = False
_handler: RichHandler | None = None


def setup_logging(level: str | None = None) -> None:
    """Attach a Rich console handler to the root logger.

    The handler is added once.  Later calls only change the level, and
    only when *level* is given.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Falls back to the WARD_LOG_LEVEL env var, then to INFO.
    """
    global _configured, _handler
    if _configured:
        if level is not None:
            _apply_level(getattr(logging, level.upper(), logging.INFO))
        return

    if level is None:
        # Deferred import to avoid circular dependency with config module.
        import os
        level = os.environ.get("WARD_LOG_LEVEL", _DEFAULT_LEVEL)

    resolved_level = getattr(logging, level.upper(), logging.INFO)

    handler = RichHandler(
        level=resolved_level,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))

    logging.getLogger().addHandler(handler)
    _handler = handler
    _apply_level(resolved_level)

    _configured = True


def _apply_level(resolved_level: int) -> None:
    logging.getLogger().setLevel(resolved_level)
    if _handler is not None:
        _handler.setLevel(resolved_level)
    # httpx logs every request at INFO; one line per poll is noise here.
    logging.getLogger("httpx").setLevel(max(resolved_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Return a named logger, configuring logging on first use."""
    setup_logging()
    return logging.getLogger(name)
