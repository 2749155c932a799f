"""
Email SMTP notifier.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from .base import KIND_ALERT, Notification, NotificationResult, Notifier


class EmailNotifier(Notifier):
    """Sends notifications via email SMTP."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
        to_addresses: list[str],
        timeout: float = 30.0,
    ):
        """
        Initialize email notifier.

        Args:
            smtp_host: SMTP server hostname
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_address: Sender email address
            to_addresses: List of recipient email addresses
            timeout: Seconds to wait on the SMTP connection
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address
        self.to_addresses = to_addresses
        self.timeout = timeout

    def send(self, notification: Notification) -> NotificationResult:
        """Send notification via email."""
        try:
            message = self._create_message(notification)

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(message)

            return NotificationResult(success=True, channel="email")

        except smtplib.SMTPAuthenticationError as e:
            return NotificationResult(
                success=False,
                channel="email",
                error=f"Authentication failed: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel="email",
                error=f"SMTP error: {str(e)}",
            )

    def _create_message(self, notification: Notification) -> MIMEMultipart:
        """Create email message."""
        message = MIMEMultipart("alternative")
        message["Subject"] = self._create_subject(notification)
        message["From"] = self.from_address
        message["To"] = ", ".join(self.to_addresses)

        message.attach(MIMEText(self._create_text_body(notification), "plain"))
        message.attach(MIMEText(self._create_body(notification), "html"))

        return message

    def _create_subject(self, notification: Notification) -> str:
        """Create email subject."""
        prefix = "[Alert]" if notification.kind == KIND_ALERT else "[Summary]"
        return f"{prefix} RateWatch: {notification.title}"

    def _create_text_body(self, notification: Notification) -> str:
        """Create plain text email body."""
        return f"""
{notification.title}

{notification.body}

Time: {notification.created_at.strftime("%Y-%m-%d %H:%M:%S")}
"""

    def _create_body(self, notification: Notification) -> str:
        """Create HTML email body."""
        color = "#FFA500" if notification.kind == KIND_ALERT else "#3498DB"

        return f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; }}
        .alert-box {{
            border-left: 4px solid {color};
            padding: 15px;
            background-color: #f9f9f9;
        }}
        .title {{ font-size: 20px; font-weight: bold; color: {color}; }}
        .message {{ margin: 15px 0; color: #555; }}
        .meta {{ color: #888; font-size: 12px; }}
    </style>
</head>
<body>
    <div class="alert-box">
        <div class="title">{escape(notification.title)}</div>
        <div class="message">{escape(notification.body)}</div>
        <div class="meta">
            Time: {notification.created_at.strftime("%Y-%m-%d %H:%M:%S")}
        </div>
    </div>
</body>
</html>
"""
