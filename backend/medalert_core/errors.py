from __future__ import annotations


class AlertError(Exception):
    pass


class ValidationError(AlertError):
    """Malformed or missing input. Raised before anything is written."""

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class PersistenceError(AlertError):
    pass


class ReadError(AlertError):
    pass


class InvalidTransitionError(AlertError):
    pass


class AlertNotFound(InvalidTransitionError):
    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class ScoringUnavailable(AlertError):
    pass
