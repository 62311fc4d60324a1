"""Logging for CLI runs and the API server.

The terminal and the log file are tuned separately:

- ``--verbose`` lowers the stderr handler from WARNING to DEBUG.
- ``QUALMATRIX_LOG_LEVEL`` sets the file handler level (default INFO), so
  validator repairs and quality defects for every run end up in
  ``<output_dir>/.qualmatrix/qualmatrix.log`` without cluttering the terminal.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIRNAME = ".qualmatrix"
LOG_FILENAME = "qualmatrix.log"

_ROTATE_AT_BYTES = 5 * 1024 * 1024
_ROTATED_KEEP = 2

_TERMINAL_FORMAT = "%(levelname)s | %(name)s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# SDK and server loggers that log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "uvicorn.access")


def _parse_log_level(level_str: str) -> int:
    """Level name to constant, any case; unknown names mean INFO."""
    numeric = getattr(logging, level_str.strip().upper(), None)
    return numeric if isinstance(numeric, int) else logging.INFO


def log_path(output_dir: Path) -> Path:
    """Where :func:`setup_logging` writes the log for *output_dir*."""
    return output_dir / LOG_DIRNAME / LOG_FILENAME


def _terminal_handler(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(logging.Formatter(_TERMINAL_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=_ROTATE_AT_BYTES,
        backupCount=_ROTATED_KEEP,
        encoding="utf-8",
    )
    handler.setLevel(_parse_log_level(os.environ.get("QUALMATRIX_LOG_LEVEL", "INFO")))
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    *,
    output_dir: Path | None = None,
    verbose: bool = False,
) -> None:
    """Replace the root logger's handlers with a terminal and a file handler.

    Args:
        output_dir: Directory the run writes into.  ``None`` skips the log
            file (``qualmatrix speakers``, tests).
        verbose: Show DEBUG messages on the terminal.

    Calling it again replaces the handlers rather than adding to them.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    # Handlers do the filtering
    root.setLevel(logging.DEBUG)
    root.addHandler(_terminal_handler(verbose))
    if output_dir is not None:
        root.addHandler(_file_handler(log_path(output_dir)))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
