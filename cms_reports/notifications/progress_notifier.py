"""
Transient progress and status notifications for exports

Notifications are kept in memory and shown by whatever listeners are
subscribed (the CLI prints them). Status notifications dismiss themselves
after a configurable duration when an event loop is running.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass
class Notification:
    id: str
    level: NotificationLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dismissed: bool = False


Listener = Callable[[str, Notification], None]


class ProgressNotifier:
    """In-process notification feed with auto-dismiss."""

    def __init__(self, duration_seconds: float = 5.0):
        self.duration_seconds = duration_seconds
        self._notifications: Dict[str, Notification] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        """Register a callback receiving (event, notification) pairs."""
        self._listeners.append(listener)

    def progress(self, message: str) -> str:
        """Show a progress notification that stays until dismissed."""
        return self._show(NotificationLevel.PROGRESS, message, auto_dismiss=False)

    def success(self, message: str) -> str:
        return self._show(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> str:
        return self._show(NotificationLevel.ERROR, message)

    def info(self, message: str) -> str:
        return self._show(NotificationLevel.INFO, message)

    def update(self, notification_id: str, message: str) -> None:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.dismissed:
            return
        notification.message = message
        self._emit('updated', notification)

    def dismiss(self, notification_id: str) -> bool:
        """
        Remove a notification. Failures are logged and never raised.

        Returns:
            True if the notification was visible
        """
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()

        notification = self._notifications.pop(notification_id, None)
        if notification is None:
            logger.debug(f"Notification {notification_id} already dismissed")
            return False

        notification.dismissed = True
        self._emit('dismissed', notification)
        return True

    def active(self) -> List[Notification]:
        return list(self._notifications.values())

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._notifications.get(notification_id)

    def _show(self, level: NotificationLevel, message: str, auto_dismiss: bool = True) -> str:
        notification = Notification(id=uuid.uuid4().hex[:12], level=level, message=message)
        self._notifications[notification.id] = notification
        self._emit('shown', notification)

        if auto_dismiss and self.duration_seconds > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._timers[notification.id] = loop.call_later(
                    self.duration_seconds, self.dismiss, notification.id
                )
        return notification.id

    def _emit(self, event: str, notification: Notification) -> None:
        for listener in self._listeners:
            try:
                listener(event, notification)
            except Exception as e:
                logger.warning(f"Notification listener failed on {event}: {e}")
