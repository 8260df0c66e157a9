"""Logging for the long-running federation controllers.

Each controller runs on its own threads, so records carry the thread name.
Client libraries are held at WARNING; their request logs drown out
reconcile output.
"""

import logging
import logging.config
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

QUIET_LOGGERS = ("urllib3", "kubernetes", "kubernetes.dynamic")


def logging_dict(level: str, log_file: Path | None = None) -> dict:
    """Describe the handlers for ``logging.config.dictConfig``.

    The console logs at ``level``; a log file, when given, always gets DEBUG.
    """
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "controller",
            "level": level,
        }
    }
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(log_file),
            "formatter": "controller",
            "level": "DEBUG",
        }
    root_level = "DEBUG" if log_file is not None else level
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"controller": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": handlers,
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {"level": root_level, "handlers": list(handlers)},
    }


def setup_logging(level: str = "INFO", log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure the root logger.

    Args:
        level: Console level name, ignored when ``verbose`` is set
        log_file: Optional file that receives every record
        verbose: Log DEBUG to the console
    """
    level = "DEBUG" if verbose else level.upper()
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logging.warning(f"Cannot write log file {log_file}: {e}")
            log_file = None
    logging.config.dictConfig(logging_dict(level, log_file))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
