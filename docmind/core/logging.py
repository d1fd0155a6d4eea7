# docmind/core/logging.py
import logging
import logging.config

from docmind.core.config import settings


def configure_logging() -> None:
    debug_mode = settings.LOG_LEVEL == "debug"
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": level,
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": level,
            },
        }
    )

    # provider SDK request logs are noise unless debugging
    for noisy in ("httpx", "openai", "botocore"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if debug_mode else logging.WARNING)
