"""Logging setup: loguru sinks that carry the job a record belongs to."""

import sys
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>{extra[job_tag]} | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}{extra[job_tag]} | {message}"


def _tag_job(record: dict) -> None:
    """Fill the extra fields every format references."""
    extra = record["extra"]
    extra.setdefault("name", record["name"])
    job_id = extra.get("job_id")
    extra["job_tag"] = f" [{job_id}]" if job_id else ""


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> None:
    """
    Route log records to stderr and, optionally, a rotated log file.

    Replaces any previously configured sinks. Records bound with ``job_id``
    show it next to the logger name, so frame workers and the orchestrator
    of one job can be followed in a shared log.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        rotation: Log rotation size
        retention: Log retention period
        serialize: Write the file as JSON lines instead of text
    """
    handlers: list[dict[str, Any]] = [
        {"sink": sys.stderr, "format": CONSOLE_FORMAT, "level": log_level, "colorize": True},
    ]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            {
                "sink": log_path,
                "format": FILE_FORMAT,
                "level": log_level,
                "rotation": rotation,
                "retention": retention,
                "compression": "zip",
                "serialize": serialize,
            }
        )
    logger.configure(handlers=handlers, patcher=_tag_job)


def get_logger(name: str, **context: Any) -> Any:
    """Return the shared logger bound to a module name and optional context (job_id, stage)."""
    return logger.bind(name=name, **context)


setup_logging()
