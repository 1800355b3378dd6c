"""Process-wide logging setup."""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

NOISY_LOGGERS = ("asyncio", "httpx", "httpcore", "urllib3", "openai", "chromadb")


def setup_logging(level: Union[int, str] = logging.INFO, stream=None) -> None:
    """
    Configure the root logger once for the whole process.

    Replaces any existing root handlers and quiets chatty client libraries.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
