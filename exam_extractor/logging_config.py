"""
Logging setup shared by the CLI and the HTTP service.

Package modules log to "exam_extractor.<module>". The HTTP stack under the
model SDK logs every request at INFO; those loggers are held at WARNING
unless the run is verbose.
"""

import logging
import sys


LOGGER_NAME = "exam_extractor"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# One INFO line per model call otherwise
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Send package logs to stderr, leaving stdout to the scripts' own output.

    Calling it again replaces the handler instead of adding a second one.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger below the package namespace ("service" → "exam_extractor.service")."""
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
