"""Structured JSON logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import settings
from app.middleware.request_id import get_request_id

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s"


class RequestIdFilter(logging.Filter):
    """Stamp every record with the request id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


def setup_logging() -> None:
    """Configure JSON structured logging for production, human-readable for dev."""
    if settings.APP_ENV == "production":
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            LOG_FORMAT,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        logging.root.handlers = [handler]
        logging.root.setLevel(logging.INFO)
    else:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        for handler in logging.root.handlers:
            handler.addFilter(RequestIdFilter())
