"""
Logging setup for the server.

Usage:
    from logging_config import setup_logging
    setup_logging("DEBUG")
"""

import logging
import sys

LOG_FORMAT  = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    # uvicorn keeps its own access log, only its errors go through us
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
