"""Logging configuration for the pairlink relay.

Relay modules log under the ``pairlink`` tree. aiohttp's server-side
loggers are attached to the same handlers at WARNING, so transport
failures land in the relay log without per-request access noise.
"""

import logging
from pathlib import Path

from pairlink.config import Config

# Transport loggers that share the relay's handlers
LIBRARY_LOGGERS = ("aiohttp.server", "aiohttp.web", "aiohttp.websocket")

# Module-level logger cache
_logger: logging.Logger | None = None


def _level(name: str) -> int | None:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else None


def _build_handlers(config: Config) -> list[logging.Handler]:
    # Log format: 2025-01-27 10:30:45 [INFO] message
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    formatter.datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = []
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Config) -> logging.Logger:
    """Set up relay logging from configuration.

    Calling it again returns the logger from the first call unchanged.

    Args:
        config: Configuration object with log settings.

    Returns:
        The ``pairlink`` logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    level = _level(config.log_level)
    handlers = _build_handlers(config)

    logger = logging.getLogger("pairlink")
    logger.setLevel(level if level is not None else logging.INFO)
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)
    # Keep relay lines out of the root logger
    logger.propagate = False

    for name in LIBRARY_LOGGERS:
        library = logging.getLogger(name)
        library.setLevel(logging.WARNING)
        library.handlers[:] = handlers
        library.propagate = False

    if level is None:
        logger.warning(f"Unknown log level {config.log_level!r}, using INFO")

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is None:
        return

    for handler in _logger.handlers:
        handler.close()
    for name in ("pairlink",) + LIBRARY_LOGGERS:
        log = logging.getLogger(name)
        log.handlers.clear()
        log.setLevel(logging.NOTSET)
        log.propagate = True
    _logger = None
