"""
Error handling module for the reservation bot.

Main Components:
    - exceptions: Custom exception hierarchy for all error categories
    - handlers: Severity-aware logging and user message lookup
    - logging_config: loguru configuration and structured event helpers
"""

from .exceptions import (
    BookingSystemError,
    ValidationError,
    InvalidReservationTimeError,
    InvalidGuestCountError,
    CapacityError,
    SlotFullError,
    ConflictError,
    DuplicateBookingError,
    NotFoundError,
    SlotNotFoundError,
    ReservationNotFoundError,
    AlreadyCancelledError,
    PersistenceError,
    ConsistencyError,
    CompensationFailedError,
    NotificationError,
    DeliveryError,
    StateTransitionError,
)

from .handlers import (
    GENERIC_ERROR_MESSAGE,
    log_error,
    severity_for,
    user_message_for,
)

from .logging_config import (
    configure_logging,
    log_booking_event,
    log_conversation_event,
    log_notification_event,
    log_error_with_context,
)

__all__ = [
    # Exceptions
    "BookingSystemError",
    "ValidationError",
    "InvalidReservationTimeError",
    "InvalidGuestCountError",
    "CapacityError",
    "SlotFullError",
    "ConflictError",
    "DuplicateBookingError",
    "NotFoundError",
    "SlotNotFoundError",
    "ReservationNotFoundError",
    "AlreadyCancelledError",
    "PersistenceError",
    "ConsistencyError",
    "CompensationFailedError",
    "NotificationError",
    "DeliveryError",
    "StateTransitionError",

    # Handlers
    "GENERIC_ERROR_MESSAGE",
    "log_error",
    "severity_for",
    "user_message_for",

    # Logging
    "configure_logging",
    "log_booking_event",
    "log_conversation_event",
    "log_notification_event",
    "log_error_with_context",
]
