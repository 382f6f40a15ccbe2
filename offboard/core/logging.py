"""Loguru setup.

Events are logged as snake_case messages with context bound through
``logger.bind(...)``. Bound values whose key names a credential are masked
before any sink sees them.
"""

import logging
import sys
from typing import Any

from loguru import logger

from offboard.config import get_settings

SECRET_KEYS = frozenset({"password", "client_secret", "access_token", "token", "authorization"})

MASK = "***"

STDLIB_LOGGERS = ["uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine", "httpx", "apscheduler"]


class InterceptHandler(logging.Handler):
    """Route stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _mask_secrets(record: dict[str, Any]) -> None:
    extra = record["extra"]
    for key in extra:
        if key.lower() in SECRET_KEYS:
            extra[key] = MASK


def _quiet_health_checks(record: dict[str, Any]) -> bool:
    """Load balancer health checks only show up at DEBUG."""
    if "/health" in record["message"]:
        return record["level"].no <= logging.DEBUG
    return True


def setup_logging() -> None:
    """Configure loguru for the API process, the poller and the CLI."""
    settings = get_settings()

    logger.remove()
    logger.configure(patcher=_mask_secrets)

    if settings.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=(
                "<green>{time:HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level> {extra}"
            ),
            backtrace=True,
            diagnose=True,
        )
    elif settings.log_json:
        logger.add(
            sys.stderr,
            level=settings.log_level,
            serialize=True,
            filter=_quiet_health_checks,
            diagnose=False,
        )
    else:
        # diagnose=False keeps local variables out of tracebacks
        logger.add(
            sys.stderr,
            level=settings.log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}",
            filter=_quiet_health_checks,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in STDLIB_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]

    logger.bind(debug=settings.debug, json=settings.log_json).debug("logging_configured")


def get_logger(name: str) -> Any:
    """Logger bound to a module name."""
    return logger.bind(name=name)
