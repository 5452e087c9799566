"""Logging setup shared by the API, the agent and the tools."""

import logging
import os
import sys

from pydantic import BaseModel, Field

# Clients that log every request at INFO
NOISY_LOGGERS = ("anthropic", "httpx", "httpcore", "uvicorn.access", "sse_starlette")


def env_log_level(default: str = "INFO") -> str:
    """LOREKEEPER_LOG_LEVEL wins over the generic LOG_LEVEL."""
    return os.getenv("LOREKEEPER_LOG_LEVEL") or os.getenv("LOG_LEVEL") or default


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default_factory=env_log_level)
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    quiet_loggers: tuple[str, ...] = NOISY_LOGGERS


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger to write to stdout."""
    config = config or LogConfig()

    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level, overriding the environment

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or env_log_level()).upper())
    return logger
