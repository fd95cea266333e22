from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "localtune"

log = logging.getLogger(LOGGER_NAME)


def logs_dir(home: Optional[Path] = None) -> Path:
    base = (home or (Path.home() / ".localtune")) / "logs"
    base.mkdir(parents=True, exist_ok=True)
    return base


def setup_logger(
    level: int = logging.INFO,
    log_file: str = "localtune.log",
    home: Optional[Path] = None,
) -> logging.Logger:
    """
    Attach a stderr handler and a rotating file handler to the package logger.

    stdout stays free for the JSON the CLI prints. Calling this twice only
    updates the level.
    """
    log.setLevel(level)
    if log.handlers:
        return log

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    log.addHandler(console)

    try:
        file_handler = RotatingFileHandler(
            logs_dir(home) / log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
    except OSError as exc:
        log.warning("File logging disabled: %s", exc)
    else:
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)

    return log
