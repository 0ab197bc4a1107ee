"""Logging setup: rich console output plus an append-only deployment log."""

import datetime
import gzip
import logging
import os
import shutil

from rich.logging import RichHandler

from .ui import console

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("portfolio_deploy")


def rotate_log(log_file: str) -> None:
    """Compress the log file aside when it grows past MAX_LOG_SIZE."""
    if not os.path.exists(log_file) or os.path.getsize(log_file) <= MAX_LOG_SIZE:
        return
    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    rotated = f"{log_file}.{ts}.gz"
    try:
        with open(log_file, "rb") as fin, gzip.open(rotated, "wb") as fout:
            shutil.copyfileobj(fin, fout)
        open(log_file, "w").close()
        console.print(f"Rotated log file to [path]{rotated}[/path]")
    except OSError as e:
        console.print(f"[warning]Failed to rotate log file: {e}[/warning]")


def setup_logging(log_file: str, debug: bool = False) -> logging.Logger:
    """Configure logging with Rich handler and file output."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_handler = RichHandler(
        rich_tracebacks=True, markup=False, console=console, show_path=False
    )
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.addHandler(console_handler)

    directory = os.path.dirname(log_file)
    try:
        if directory:
            os.makedirs(directory, exist_ok=True)
        rotate_log(log_file)
        file_handler = logging.FileHandler(log_file, mode="a")
    except OSError as e:
        logger.warning(f"Deployment log unavailable ({log_file}): {e}")
        return logger
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    logger.debug("Logging initialized: %s", log_file)
    return logger
