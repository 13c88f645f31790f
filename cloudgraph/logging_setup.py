"""Logger configuration for the cloudgraph package."""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logger(
    level: int | str = logging.INFO,
    log_file: str | Path | None = None,
    name: str = "cloudgraph",
) -> logging.Logger:
    """Attach stream (stderr) and optional file handlers to the package logger.

    Calling it again only adjusts the level; handlers are installed once.
    """
    logger = logging.getLogger(name)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    if logger.handlers:
        return logger

    fmt = logging.Formatter(LOG_FORMAT)
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger
