"""
Base notifier classes and the notification sink.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

KIND_ALERT = "alert"
KIND_SUMMARY = "summary"


@dataclass
class Notification:
    """A titled message for the user."""

    id: str
    title: str
    body: str
    kind: str = KIND_ALERT
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    @abstractmethod
    def send(self, notification: Notification) -> NotificationResult:
        """
        Send a single notification.

        Args:
            notification: Notification to send

        Returns:
            NotificationResult indicating success or failure
        """
        pass


class NotificationSink:
    """Fire-and-forget fan-out of notifications to every configured notifier."""

    def __init__(self, notifiers: list[Notifier]):
        self.notifiers = notifiers

    def notify(
        self, notification_id: str, title: str, body: str, kind: str = KIND_ALERT
    ) -> None:
        """Deliver a notification; failures are logged, never raised."""
        notification = Notification(
            id=notification_id, title=title, body=body, kind=kind
        )
        for notifier in self.notifiers:
            result = notifier.send(notification)
            if not result.success:
                logger.warning(
                    f"Notification {notification_id} failed on {result.channel}: "
                    f"{result.error}"
                )


class NotifierFactory:
    """Factory for creating notifier instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> Notifier:
        """
        Create a notifier from configuration.

        Args:
            config: Notifier configuration dict

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If notifier type is unknown
        """
        notifier_type = config.get("type")

        if notifier_type == "discord":
            from .discord import DiscordNotifier

            return DiscordNotifier(
                webhook_url=config.get("webhook_url", ""),
                mention_on_alert=config.get("mention_on_alert", False),
            )

        elif notifier_type == "email":
            from .email import EmailNotifier

            return EmailNotifier(
                smtp_host=config.get("smtp_host", ""),
                smtp_port=config.get("smtp_port", 587),
                smtp_user=config.get("smtp_user", ""),
                smtp_password=config.get("smtp_password", ""),
                from_address=config.get("from_address", ""),
                to_addresses=config.get("to_addresses", []),
                timeout=config.get("timeout", 30.0),
            )

        elif notifier_type == "log":
            from .log import LogNotifier

            return LogNotifier()

        else:
            raise ValueError(f"Unknown notifier type: {notifier_type}")
