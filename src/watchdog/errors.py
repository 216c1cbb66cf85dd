"""Exceptions raised by the watchdog core."""


class WatchdogError(Exception):
    """Base class for watchdog errors."""


class UnknownUnitError(WatchdogError, KeyError):
    """Raised when an operation names a unit that was never registered."""

    def __init__(self, unit_id: str) -> None:
        super().__init__(unit_id)
        self.unit_id = unit_id

    def __str__(self) -> str:
        return f"Unit '{self.unit_id}' is not monitored"


class UnknownAlertError(WatchdogError, KeyError):
    """Raised when acknowledging an alert id that does not exist."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(alert_id)
        self.alert_id = alert_id

    def __str__(self) -> str:
        return f"Alert '{self.alert_id}' not found"


class InvalidThresholdsError(WatchdogError, ValueError):
    """Raised when a threshold registry file cannot be parsed or validated."""
