"""Logging configuration helpers for the loop export pipeline."""

from __future__ import annotations

import logging
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple, Union

LOGGER_NAME = "loop_export"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _open_log_file(requested: Union[str, Path]) -> Tuple[Optional[logging.Handler], List[str]]:
    """Open ``requested``, falling back to the temp directory when it is unwritable.

    Returns the handler (or ``None``) and the warnings to emit once logging is up.
    """
    target = Path(requested).expanduser()
    if not target.is_absolute():
        target = Path.cwd() / target
    candidates = [target, Path(tempfile.gettempdir()) / target.name]

    warnings: List[str] = []
    for candidate in candidates:
        try:
            candidate.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(candidate, encoding="utf-8")
        except OSError as exc:
            warnings.append(f"Cannot write log file '{candidate}': {exc}")
            continue
        if candidate != target:
            warnings.append(f"Logging to '{candidate}' instead of '{target}'")
        return handler, warnings
    return None, warnings


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Union[str, Path, None] = None,
    include_stream: bool = True,
) -> logging.Logger:
    """Configure export logging and return the package logger.

    Console output goes to stderr so that command output on stdout (reports,
    preset listings) stays machine-readable. ``log_file`` of ``None`` disables
    file logging.
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = []

    deferred: List[str] = []
    if log_file:
        file_handler, deferred = _open_log_file(log_file)
        if file_handler is not None:
            handlers.append(file_handler)
    if include_stream:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for message in deferred:
        logger.warning(message)
    return logger


__all__ = ["LOGGER_NAME", "LOG_FORMAT", "configure_logging"]
