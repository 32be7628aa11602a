from __future__ import annotations

import logging
import sys
import time
import typing as tp

from ._config import TRACE, Config

__all__ = ("configure_logging", "LOG_FORMAT")

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logging.addLevelName(TRACE, "TRACE")


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


def configure_logging(config: Config) -> logging.Handler:
    """
    Attaches a single handler to the `condcache` logger.

    Messages go to `config.log_file` when set, otherwise to stderr, one
    line each: UTC timestamp, level name and message. Calling this again
    replaces the handler installed by the previous call.
    """

    logger = logging.getLogger("condcache")

    handler: logging.Handler
    if config.log_file is not None:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(UTCFormatter(LOG_FORMAT, DATE_FORMAT))

    for existing in list(logger.handlers):
        if getattr(existing, "_condcache", False):
            logger.removeHandler(existing)
            existing.close()
    tp.cast(tp.Any, handler)._condcache = True

    logger.addHandler(handler)
    logger.setLevel(config.logging_level)
    return handler
