"""Application logging: a rotating file under LOG_DIR plus stderr, both tagged with the request id."""
import logging
import os
from logging.handlers import RotatingFileHandler

from flask import g, has_request_context

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(request_id)s | %(message)s"
LOG_FILENAME = "civicconnect.log"


class RequestIdFilter(logging.Filter):
    """Stamps each record with the id assigned in before_request, or "-" outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = "-"
        if has_request_context():
            request_id = g.get("request_id", "-")
        record.request_id = request_id
        return True


def _handlers(log_path: str, level: int) -> list:
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    stamp = RequestIdFilter()
    handlers = [
        RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(stamp)
    return handlers


def init_logging(app) -> logging.Logger:
    log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, LOG_FILENAME)
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL") or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(app.name)
    # Handlers from a previous create_app call are closed first.
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in _handlers(log_path, level):
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)
    logger.info("Logging to %s at %s", log_path, logging.getLevelName(level))
    return logger
