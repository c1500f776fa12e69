"""Logging configuration for kegdex.

Modules log through a per-module logger:

    import logging
    log = logging.getLogger(__name__)

The log level is read from the KEGDEX_LOG_LEVEL environment variable
(DEBUG, INFO, WARNING, ERROR). WARNING is the default so that reindex
passes stay quiet unless a node fails.
"""

import logging
import os
import sys

PACKAGE_LOGGER = "kegdex"
LOG_LEVEL_ENV = "KEGDEX_LOG_LEVEL"


def configure_logging(level: str | None = None) -> None:
    """Configure logging for the kegdex package.

    Call this once at application startup (the CLI does). Subsequent calls
    only adjust the level.

    Args:
        level: Explicit level name. Falls back to KEGDEX_LOG_LEVEL.
    """
    root_logger = logging.getLogger(PACKAGE_LOGGER)

    level_name = (level or os.environ.get(LOG_LEVEL_ENV, "WARNING")).upper()
    resolved = getattr(logging, level_name, logging.WARNING)

    if root_logger.handlers:
        root_logger.setLevel(resolved)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(name)s: %(message)s"))

    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)

    # Keep messages out of the root logger to avoid duplicates
    root_logger.propagate = False
