"""Logging setup."""

import logging

from waterpoint.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure root logging once per process."""
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs full provider URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
