from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <7}</level> | "
    "{thread.name: <18} | <cyan>{name}</cyan> - <level>{message}</level>"
)


def setup_logging(debug: bool = False, log_file: Optional[Path] = None) -> None:
    """Replace loguru's default sink with the feed's stderr (and optional rotating file) sinks."""
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, backtrace=debug, diagnose=False)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
            colorize=False,
        )
