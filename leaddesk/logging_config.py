"""JSON logging configuration for the leaddesk session core."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from leaddesk.config import settings


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            payload["context"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, stream: Optional[Any] = None) -> None:
    """Install the JSON handler on the root logger."""
    root_logger = logging.getLogger()
    level = level or settings.log_level
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"leaddesk.{name}")


class ConversationLoggerAdapter(logging.LoggerAdapter):
    """Attach the conversation key (and any per-call context) to records."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        combined = {**(self.extra or {}), **(context or {})}
        if combined:
            kwargs["extra"] = {"context": combined}
        return msg, kwargs


def conversation_logger(name: str, conversation_key: str) -> ConversationLoggerAdapter:
    return ConversationLoggerAdapter(get_logger(name), {"conversation": conversation_key})
