import logging.config


def setup_logging(level: str = "INFO") -> None:
    """Configure console logging for the service"""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"}
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "simple"},
        },
        "root": {"level": level.upper(), "handlers": ["console"]},
        "loggers": {
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })
