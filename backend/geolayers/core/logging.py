"""Logging setup shared by the application factory and scripts.

Modules obtain their own logger with ``logging.getLogger(__name__)``; this
module only configures the root handler once per process.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = logging.INFO) -> None:
    """Configure root logging with the project format.

    Args:
        level: Log level name (e.g. ``"DEBUG"``) or numeric level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("geolayers").setLevel(level)
