"""
Domain errors for booking, meeting and notification flows.

Expected failures are converted to result objects by the booking service;
these exceptions are what the lower layers raise to tell it what went wrong.
"""
from typing import Optional


class BookingError(Exception):
    """Base class for booking-flow failures."""

    def __init__(self, message: str, *, appointment_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.appointment_id = appointment_id


class AppointmentNotFound(BookingError):
    """No appointment with this id is owned by the calling user."""


class InvalidStatusTransition(BookingError):
    """The appointment's current status does not allow the requested change."""

    def __init__(self, current: str, target: str, *, appointment_id: Optional[int] = None):
        super().__init__(
            f"Cannot move appointment from '{current}' to '{target}'",
            appointment_id=appointment_id,
        )
        self.current = current
        self.target = target


class MeetingProvisioningError(BookingError):
    """A video meeting provider refused or failed to create a meeting."""

    def __init__(self, platform: str, message: str, *, appointment_id: Optional[int] = None):
        super().__init__(f"{platform}: {message}", appointment_id=appointment_id)
        self.platform = platform


class NotificationDeliveryError(BookingError):
    """An email provider failed to accept a message."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ExternalServiceTimeout(BookingError):
    """An external call did not finish within its time budget."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(f"{operation} timed out after {timeout_seconds}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class UnknownNotificationKind(ValueError):
    """Programmer error: no template exists for this notification kind."""
