"""Logging setup shared by the API process and the scripts."""

import logging
import os
import sys

from pydantic import BaseModel, Field

# Chatty at INFO: one line per HTTP request or SQL statement
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore", "aiosqlite", "uvicorn.access", "sse_starlette")


class LogConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
    date_format: str = "%Y-%m-%dT%H:%M:%S"
    quiet_loggers: tuple[str, ...] = QUIET_LOGGERS
    quiet_level: str = "WARNING"


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger to write to stdout, replacing any earlier handlers."""
    config = config or LogConfig()

    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )
    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(config.quiet_level)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Module logger. ``level`` overrides LOG_LEVEL for this logger only."""
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
