"""
Logging configuration for the financial reporting service.
"""
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter

import config


class ReportJsonFormatter(JsonFormatter):
    """JSON formatter adding timestamp, level and logger name to every record"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name


def build_logging_config(level: str = config.LOG_LEVEL, fmt: str = config.LOG_FORMAT) -> Dict[str, Any]:
    formatter = "json" if fmt == "json" else "standard"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": ReportJsonFormatter,
                "format": "%(timestamp)s %(level)s %(logger)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"level": level.upper(), "handlers": ["console"]},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "pymongo": {"level": "WARNING"},
        },
    }


def setup_logging(level: str = config.LOG_LEVEL, fmt: str = config.LOG_FORMAT) -> None:
    logging.config.dictConfig(build_logging_config(level, fmt))
