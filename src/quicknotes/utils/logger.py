"""Logging setup for the command line front end."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from quicknotes.utils.helper import store_paths

_LOG_FILE_NAME = "quicknotes.log"


def configure_logging(store_dir: Path, verbose: bool = False) -> logging.Logger:
    """Rotating log file inside the store directory plus warnings on stderr."""
    logger = logging.getLogger("quicknotes")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_directory = store_paths(Path(store_dir))["logs"]
    try:
        log_directory.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_directory / _LOG_FILE_NAME,
            maxBytes=1_048_576,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"[!] Cannot open log file in {log_directory}: {exc}", file=sys.stderr)
    else:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    logger.debug("Logger initialised for store %s", store_dir)
    return logger
