"""
Discord webhook notifier.
"""

import time
from typing import Any

import requests

from .base import KIND_ALERT, Notification, NotificationResult, Notifier


class DiscordNotifier(Notifier):
    """Sends notifications via Discord webhook."""

    # Discord embed colors
    COLOR_ALERT = 0xFFA500  # Orange
    COLOR_SUMMARY = 0x3498DB  # Blue

    def __init__(self, webhook_url: str, mention_on_alert: bool = False):
        """
        Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
            mention_on_alert: Whether to @here on fired alerts
        """
        self.webhook_url = webhook_url
        self.mention_on_alert = mention_on_alert

    def send(self, notification: Notification) -> NotificationResult:
        """Send notification to Discord."""
        try:
            payload = self._create_payload(notification)
            response = self._send_webhook(payload)

            if response.ok:
                return NotificationResult(success=True, channel="discord")
            else:
                return NotificationResult(
                    success=False,
                    channel="discord",
                    error=f"HTTP {response.status_code}: {response.text}",
                )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel="discord",
                error=f"Connection error: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel="discord",
                error=str(e),
            )

    def _send_webhook(self, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=10,
        )

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(float(retry_after))
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=10,
            )

        return response

    def _create_payload(self, notification: Notification) -> dict[str, Any]:
        """Create Discord webhook payload."""
        payload: dict[str, Any] = {
            "embeds": [self._create_embed(notification)],
        }

        if self.mention_on_alert and notification.kind == KIND_ALERT:
            payload["content"] = "@here"

        return payload

    def _create_embed(self, notification: Notification) -> dict[str, Any]:
        """Create Discord embed for a notification."""
        color = (
            self.COLOR_ALERT if notification.kind == KIND_ALERT else self.COLOR_SUMMARY
        )
        return {
            "title": notification.title,
            "description": notification.body,
            "color": color,
            "footer": {"text": notification.id},
            "timestamp": notification.created_at.isoformat(),
        }
