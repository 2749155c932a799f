"""
Logging notifier, used when no delivery channel is configured.
"""

import logging

from .base import Notification, NotificationResult, Notifier

logger = logging.getLogger(__name__)


class LogNotifier(Notifier):
    """Writes notifications to the application log."""

    def send(self, notification: Notification) -> NotificationResult:
        logger.info(f"[{notification.kind}] {notification.title}: {notification.body}")
        return NotificationResult(success=True, channel="log")
