"""Loguru sinks shared by the command-line entry points."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from config.settings import LOGS_DIR

CONSOLE_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    run_label: str,
    logs_dir: Path = LOGS_DIR,
    console_level: str = "INFO",
) -> Path:
    """Send log records to stderr and to ``<logs_dir>/<run_label>_<UTC stamp>.log``.

    Any sinks added earlier, loguru's default one included, are removed.
    The file sink records DEBUG and above.

    Returns
    -------
    Path
        The log file.
    """
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = logs_dir / f"{run_label}_{stamp}.log"

    logger.remove()
    logger.add(sys.stderr, level=console_level, format=CONSOLE_FORMAT)
    logger.add(str(log_path), level="DEBUG", format=FILE_FORMAT, rotation="100 MB")

    logger.info("Logging to {}", log_path)
    return log_path
