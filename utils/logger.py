"""Shared application logger"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logger(name: str = "revive", level: str = None) -> logging.Logger:
    """
    Create (or return) the application logger.

    The level comes from the LOG_LEVEL environment variable unless given
    explicitly. Handlers are attached only once so repeated imports don't
    duplicate output.
    """
    log = logging.getLogger(name)
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log.setLevel(getattr(logging, level_name, logging.INFO))

    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
        log.propagate = False

    return log


logger = setup_logger()
