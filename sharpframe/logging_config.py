from __future__ import annotations

import logging

from sharpframe.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(settings: LoggingSettings, *, verbose: bool = False) -> None:
    """Configure process-wide logging once at startup.

    ``verbose`` forces DEBUG regardless of the configured level.
    """

    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, force=True)
    logging.getLogger(__name__).debug("Logging configured at level %s", logging.getLevelName(level))
