"""Loguru configuration for liftsync processes (CLI, trigger workers)."""

import sys
from pathlib import Path

from loguru import logger

from liftsync.config.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[document_id]}</magenta> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def _stderr_sink(message: str) -> None:
    # Resolved per write so a swapped or closed sys.stderr is never kept.
    sys.stderr.write(message)


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> None:
    """Send logs to stderr and, optionally, a rotating file.

    Records without a bound `document_id` show "-" in that column.

    Args:
        level: Minimum level to emit
        log_file: Path of an additional log file, or None for console only
        rotation: When to rotate the log file (size or interval)
        retention: How long rotated files are kept
        serialize: Write the file sink as JSON lines
    """
    logger.remove()
    logger.configure(extra={"document_id": "-"})

    logger.add(_stderr_sink, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
        )

    logger.debug(f"Logger initialized with level={level}")


def setup_logger_from_settings(debug: bool = False) -> None:
    setup_logger(
        level="DEBUG" if debug else settings.log_level,
        log_file=settings.log_file or None,
    )
