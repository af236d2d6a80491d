# content_crawler/services/logging_config.py
# Responsibility: One-time logging setup shared by the API process and the worker.

import logging

from content_crawler.config.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = None) -> None:
    """
    Configures the root logger. Safe to call more than once.

    Args:
        level (str): Log level name. Defaults to settings.LOG_LEVEL.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
