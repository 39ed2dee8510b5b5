"""Logging configuration and custom logger with error tracing."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict

from vidshelf.config.env import ENABLE_LOGGING, LOG_FILE, LOG_LEVEL

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'


class CustomLogger(logging.Logger):
    """Logger with *_trace helpers that attach the active stack trace."""

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        """Log an error with full stack trace and a resource snapshot."""
        self.log_resource_usage()
        kwargs.pop('exc_info', None)
        self.error(msg, *args, exc_info=True, **kwargs)

    def warning_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log_resource_usage()
        kwargs.pop('exc_info', None)
        self.warning(msg, *args, exc_info=True, **kwargs)

    def info_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.pop('exc_info', None)
        self.info(msg, *args, exc_info=sys.exc_info()[0] is not None, **kwargs)

    def debug_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.pop('exc_info', None)
        self.debug(msg, *args, exc_info=sys.exc_info()[0] is not None, **kwargs)

    def log_resource_usage(self) -> None:
        # Must never raise while an exception is being logged.
        try:
            import psutil

            process = psutil.Process()
            rss_mb = process.memory_info().rss / (1024 * 1024)
            children = len(process.children(recursive=True))
            memory = psutil.virtual_memory()
            self.debug(
                f"Process memory={rss_mb:.2f} MB, child processes={children}, "
                f"system available={memory.available / (1024 * 1024):.2f} MB, "
                f"CPU={psutil.cpu_percent():.2f}%"
            )
        except Exception:
            return


_loggers: Dict[str, CustomLogger] = {}
_loggers_lock = Lock()


def setup_logger(name: str, log_file: Path = LOG_FILE) -> CustomLogger:
    """Return the configured logger for ``name``.

    Handlers are attached once per logger name, so calling this at import time
    from many modules does not duplicate output.
    """
    with _loggers_lock:
        logger = _loggers.get(name)
        if logger is None:
            logger = _loggers[name] = _build_logger(name, log_file)
        return logger


def _build_logger(name: str, log_file: Path) -> CustomLogger:
    logger = CustomLogger(name)
    log_level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(log_level)
    formatter = logging.Formatter(_FORMAT)

    # Below ERROR to stdout, ERROR and above to stderr
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    console_handler.addFilter(lambda record: record.levelno < logging.ERROR)
    logger.addHandler(console_handler)

    error_handler = logging.StreamHandler(sys.stderr)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    logger.addHandler(error_handler)

    if ENABLE_LOGGING:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=5,
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Failed to create log file {log_file}: {e}")

    return logger
