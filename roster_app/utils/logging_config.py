# roster_app/utils/logging_config.py
"""
Application logging setup: console and rotating file handlers with JSON or text output
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys() | {"message", "asctime"}
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields"""

    def __init__(self, app_name=None, app_version=None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.app_name:
            payload["app"] = self.app_name
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JsonFormatter(app_name=app.config.get("APP_NAME"), app_version=app.config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app):
    """Attach handlers to ``app.logger`` according to the monitoring config"""
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app)

    # Re-running setup (tests create several apps) must not stack handlers.
    for handler in list(app.logger.handlers):
        if getattr(handler, "_roster_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        if not os.path.isabs(log_dir):
            log_dir = os.path.join(os.path.dirname(app.root_path), log_dir)
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, app.config.get("LOG_FILE_NAME", "roster.log")),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._roster_handler = True
        app.logger.addHandler(handler)

    app.logger.setLevel(level)
    # The importer modules log through module loggers when no app context is active.
    logging.getLogger("roster_app").setLevel(level)

    app.logger.info(
        "Logging configured",
        extra={"log_level": level_name, "log_format": app.config.get("LOG_FORMAT"), "handler_count": len(handlers)},
    )
