import logging
import sys

from sheet_ingest.config import EnvVariables

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger writing to stderr at the configured level.

    Handlers are attached once per logger name, so repeated calls are safe.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(EnvVariables.LOG_LEVEL)
    return logger
