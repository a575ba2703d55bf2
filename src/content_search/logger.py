"""Project-wide logging setup.

Modules import ``logging`` from here so the handler is configured exactly once:

    from content_search.logger import logging

    logger = logging.getLogger(__name__)
"""

import logging
import os
import sys

LOG_LEVEL_ENV_VAR = "CONTENT_SEARCH_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None):
    """
    Attach a stderr handler to the package logger.

    stdout is left alone so the MCP stdio server can use it as its transport.
    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")

    package_logger = logging.getLogger("content_search")
    package_logger.setLevel(level.upper())

    if not any(getattr(h, "_content_search", False) for h in package_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._content_search = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)


configure_logging()

__all__ = ["logging", "configure_logging"]
