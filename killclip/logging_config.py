from __future__ import annotations

import logging

from killclip.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(settings: LoggingSettings, *, verbose: bool = False) -> None:
    """Configure process-wide logging once at startup.

    ``verbose`` forces DEBUG regardless of the configured level so a single
    CLI flag can be used to inspect per-frame scoring.
    """

    level_name = "DEBUG" if verbose else settings.level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=settings.format or DEFAULT_LOG_FORMAT,
        force=True,
    )
