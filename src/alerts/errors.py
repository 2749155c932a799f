"""
Error types for the rate alert engine.
"""


class AlertError(Exception):
    """Base class for rate alert errors."""

    pass


class ValidationError(AlertError):
    """Raised when an alert definition or settings patch is invalid."""

    pass


class NotFoundError(AlertError):
    """Raised when an alert id does not exist."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class LimitExceededError(AlertError):
    """Raised when the alert cap has been reached."""

    def __init__(self, max_alerts: int):
        super().__init__(f"Maximum {max_alerts} alerts allowed")
        self.max_alerts = max_alerts


class RateFetchError(AlertError):
    """Raised when a rate source cannot provide a usable rate."""

    pass


class PersistenceError(AlertError):
    """Raised when the key-value store cannot be read or written."""

    pass
