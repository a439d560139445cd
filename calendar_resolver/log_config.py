"""
Central logging configuration for calendar_resolver.

Console output goes through a colorlog formatter. Every record emitted while
a resolve call is running carries that call's resolve id, so interleaved
calls from several threads or tasks can be told apart.
"""

import contextlib
import logging
import os
import sys
import uuid
from collections.abc import Iterator
from contextvars import ContextVar
from typing import Optional

from colorlog import ColoredFormatter

NO_RESOLVE_ID = "-"

_resolve_id: ContextVar[str] = ContextVar("calendar_resolver_resolve_id", default=NO_RESOLVE_ID)

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s [%(resolve_id)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Third-party loggers kept quiet unless explicitly reset
NOISY_LOGGERS = ("icalendar", "asyncio", "dateutil")


def get_resolve_id() -> str:
    """Resolve id of the current context, or "-" outside a resolve call."""
    return _resolve_id.get()


@contextlib.contextmanager
def resolve_id_scope(resolve_id: Optional[str] = None) -> Iterator[str]:
    """Tag log records emitted inside the block with a resolve id.

    Nested scopes reuse the outer id so one call produces one id.
    """
    current = _resolve_id.get()
    if current != NO_RESOLVE_ID and resolve_id is None:
        yield current
        return

    token = _resolve_id.set(resolve_id or uuid.uuid4().hex[:8])
    try:
        yield _resolve_id.get()
    finally:
        _resolve_id.reset(token)


class ResolveIdFilter(logging.Filter):
    """Add the current resolve id to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add resolve id to log record.

        Args:
            record: Log record to enhance

        Returns:
            True to allow record to be logged
        """
        record.resolve_id = get_resolve_id()
        return True


def _env_debug() -> bool:
    return os.environ.get("CALENDAR_RESOLVER_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def _attach_filter(handler: logging.Handler) -> None:
    if not any(isinstance(existing, ResolveIdFilter) for existing in handler.filters):
        handler.addFilter(ResolveIdFilter())


def init_logging(level_name: Optional[str] = None) -> None:
    """Initialize root logging to stream to the console.

    Installs a colorized handler once; repeated calls only adjust the level.
    CALENDAR_RESOLVER_DEBUG (truthy values: "1", "true", "yes", "on") forces
    DEBUG verbosity.
    """
    if _env_debug():
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   [resolve-id] logger.name: message
        handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATEFMT, log_colors=LOG_COLORS))
        root.addHandler(handler)

    for handler in root.handlers:
        _attach_filter(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.strip().upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for calendar_resolver.

    Debug mode can be overridden via environment variable for troubleshooting.

    Args:
        debug_mode: Whether to enable debug logging for calendar_resolver modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        CALENDAR_RESOLVER_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CALENDAR_RESOLVER_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_log_level = os.environ.get("CALENDAR_RESOLVER_LOG_LEVEL", "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    elif _env_debug():
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    for handler in root_logger.handlers:
        _attach_filter(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # NOTSET defers to the root level chosen by init_logging
    logging.getLogger("calendar_resolver").setLevel(logging.DEBUG if final_debug else logging.NOTSET)

    if final_debug:
        root_logger.debug("Debug logging enabled for calendar_resolver modules")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("calendar_resolver", *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
