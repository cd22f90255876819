"""Logging setup driven by settings."""

import json
import logging
from datetime import datetime, timezone

from chainwatch.core.config import Settings, get_settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the root logger from settings.

    Args:
        settings: Settings to use (defaults to cached settings)
    """
    settings = settings or get_settings()

    handler = logging.StreamHandler()
    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logging.basicConfig(
        level=settings.log_level.upper(),
        handlers=[handler],
        force=True,
    )
