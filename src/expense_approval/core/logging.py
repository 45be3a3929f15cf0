"""Logging setup."""

import logging.config

from expense_approval.core.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the API process.

    @param level - Override for Settings.log_level
    """
    log_level = (level or get_settings().log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"level": log_level, "handlers": ["console"]},
            # SQL echo is controlled by Settings.debug on the engine
            "loggers": {"sqlalchemy.engine": {"level": "WARNING"}},
        }
    )
