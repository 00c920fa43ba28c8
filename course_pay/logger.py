"""
Logging for the Course Payment server.

Every part of the server logs through one of four named loggers:
``course_pay`` (app lifecycle), ``payments`` (provider calls),
``webhooks`` (event intake and dispatch) and ``database`` (event store).
``LOG_LEVEL`` sets their starting level; ``configure_logging`` changes it.
"""
import logging
import os
import sys
from typing import Dict, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


class Logger:
    """Named logger with an ``error=`` shortcut for attaching exceptions."""

    def __init__(self, name: str, level: Union[str, int] = "INFO"):
        self.logger = logging.getLogger(name)
        self.set_level(level)

        # Module reloads must not stack handlers
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)

    @property
    def name(self) -> str:
        return self.logger.name

    def set_level(self, level: Union[str, int]):
        """Change the level at runtime; accepts "debug", "INFO" or logging.WARNING."""
        self.logger.setLevel(_level(level))

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, error: Optional[Exception] = None, **kwargs):
        """Log an error, with the exception's message and traceback when given."""
        if error is None:
            self.logger.error(message, extra=kwargs)
        else:
            self.logger.error(f"{message}: {error}", extra=kwargs, exc_info=error)

    def critical(self, message: str, error: Optional[Exception] = None, **kwargs):
        if error is None:
            self.logger.critical(message, extra=kwargs)
        else:
            self.logger.critical(f"{message}: {error}", extra=kwargs, exc_info=error)


_LEVEL = os.getenv("LOG_LEVEL", "INFO")

app_logger = Logger("course_pay", _LEVEL)
payment_logger = Logger("payments", _LEVEL)
webhook_logger = Logger("webhooks", _LEVEL)
db_logger = Logger("database", _LEVEL)

LOGGERS: Dict[str, Logger] = {
    logger.name: logger for logger in (app_logger, payment_logger, webhook_logger, db_logger)
}


def configure_logging(level: Union[str, int]):
    """Apply a level to every application logger."""
    for logger in LOGGERS.values():
        logger.set_level(level)
