"""Non-blocking notifications surfaced to the UI (toasts)."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from leaddesk.logging_config import get_logger

logger = get_logger("notifications")

LEVELS = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass
class Notification:
    level: str
    title: str
    description: Optional[str] = None
    context: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationCenter:
    """Collects notifications in order until the UI drains them."""

    def __init__(self):
        self._pending: list[Notification] = []

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def notify(self, level: str, title: str, description: Optional[str] = None, context: Optional[dict] = None) -> Notification:
        level = level.upper()
        notification = Notification(level=level, title=title, description=description, context=context or {})
        self._pending.append(notification)
        logger.log(
            LEVELS.get(level, logging.INFO),
            f"{title}: {description}" if description else title,
            extra={"context": notification.context} if notification.context else None,
        )
        return notification

    def info(self, title: str, description: Optional[str] = None, context: Optional[dict] = None) -> Notification:
        return self.notify("INFO", title, description, context)

    def warning(self, title: str, description: Optional[str] = None, context: Optional[dict] = None) -> Notification:
        return self.notify("WARNING", title, description, context)

    def error(self, title: str, description: Optional[str] = None, context: Optional[dict] = None) -> Notification:
        return self.notify("ERROR", title, description, context)

    def drain(self) -> list[Notification]:
        drained, self._pending = self._pending, []
        return drained
