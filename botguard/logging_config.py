"""Logging setup shared by the collector and the server.

Every record carries a ``trace_id`` so ingestion messages for one batch can be
correlated in the rotating log file.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "botguard"
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] [trace=%(trace_id)s] %(message)s"

logger = logging.getLogger(LOGGER_NAME)


# Ensure every log record gets a trace_id attribute so the formatter can print
# one even when a LoggerAdapter does not supply it.
class TraceFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "-"
        return True


def configure_logging(log_file: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """Attach console and (optionally) rotating file handlers to the package logger.

    Safe to call repeatedly: the console handler is added once and the file
    handler follows the most recent ``log_file``.
    """
    logger.setLevel(level.upper())
    formatter = logging.Formatter(LOG_FORMAT)

    # Filters on a logger do not apply to records from child loggers, so the
    # filter sits on each handler instead.
    if not any(getattr(h, "_botguard_console", False) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(TraceFilter())
        console_handler._botguard_console = True
        logger.addHandler(console_handler)

    if log_file:
        target = os.path.abspath(log_file)
        for h in [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]:
            if h.baseFilename != target:
                logger.removeHandler(h)
                h.close()
        if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
            os.makedirs(os.path.dirname(target), exist_ok=True)
            # Rotating file handler to avoid uncontrolled log growth
            file_handler = RotatingFileHandler(target, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
            file_handler.setFormatter(formatter)
            file_handler.addFilter(TraceFilter())
            logger.addHandler(file_handler)

    return logger


def get_trace_logger(trace_id: Optional[str], name: str = LOGGER_NAME):
    """Return a LoggerAdapter that attaches a trace_id to each LogRecord.

    Use this where a batch or request correlation id is known so that
    subsequent log messages can be grouped together.
    """
    return logging.LoggerAdapter(logging.getLogger(name), {"trace_id": trace_id if trace_id else "-"})
