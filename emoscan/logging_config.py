"""
Logging setup for the emoscan service.

uvicorn is started with ``log_config=None`` so this module owns every handler:
application, uvicorn and the inference libraries all end up in the console
and in the rotating ``emoscan-runtime.log``.
"""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict

from .config import Settings

LOG_FILE_NAME = "emoscan-runtime.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# third-party loggers that flood the console at INFO
QUIET_LOGGERS = ("mediapipe", "absl", "httpx", "httpcore", "websockets")


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    level = settings.log_level
    log_dir = Path(settings.log_directory).expanduser()
    handlers = ["console", "runtime_file"]

    loggers: Dict[str, Dict[str, Any]] = {
        "emoscan": {"level": level},
        "uvicorn": {"level": level, "handlers": handlers, "propagate": False},
        "uvicorn.error": {"level": level},
        # request lines only when debugging
        "uvicorn.access": {
            "level": "DEBUG" if level == "DEBUG" else "WARNING",
            "handlers": handlers,
            "propagate": False,
        },
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
            "runtime_file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "default",
                "level": level,
                "filename": str(log_dir / LOG_FILE_NAME),
                "when": "midnight",
                "backupCount": max(int(settings.log_retention_days), 1),
                "utc": True,
                "delay": True,
                "encoding": "utf-8",
            },
        },
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": handlers},
    }


def configure_logging(settings: Settings) -> None:
    """Create the log directory and apply :func:`build_logging_config`."""
    Path(settings.log_directory).expanduser().mkdir(parents=True, exist_ok=True)
    dictConfig(build_logging_config(settings))


__all__ = ["LOG_FILE_NAME", "QUIET_LOGGERS", "build_logging_config", "configure_logging"]
