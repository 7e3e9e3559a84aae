"""
Custom Exception Classes for the slot reservation bot.

This module defines exception classes for different error categories:
- Validation errors (closed day, past time, outside business hours)
- Capacity errors (slot full, lost reserve race)
- Conflict errors (duplicate booking)
- Not-found errors (slot or reservation absent)
- Persistence errors (transient store failures)
- Consistency errors (a compensation step itself failed)
- Notification errors (reminder delivery)

Each exception carries a user-facing message and context for logging.
"""

from datetime import date, time
from typing import Any, Dict, Optional


class BookingSystemError(Exception):
    """Base exception for all reservation system errors."""

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        """
        Initialize reservation system error.

        Args:
            message: Technical error message for logging
            user_message: Message that may be shown to the user as-is
            context: Additional context for error recovery
            recoverable: Whether the user can continue after this error
        """
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.context = context or {}
        self.recoverable = recoverable


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(BookingSystemError):
    """
    Raised when a request breaks a business rule.

    Always reported to the user, never retried.
    """

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        context = {"field": field, "value": value, **kwargs}
        super().__init__(message, user_message, context, recoverable=True)
        self.field = field
        self.value = value


class InvalidReservationTimeError(ValidationError):
    """Raised when a date/time fails the calendar rules."""

    CLOSED_DAY = "closed_day"
    PAST = "past"
    OUTSIDE_HOURS = "outside_business_hours"

    def __init__(
        self,
        reason: str,
        user_message: str,
        reservation_date: Optional[date] = None,
        start_time: Optional[time] = None,
    ):
        super().__init__(
            f"Invalid reservation time {reservation_date} {start_time}: {reason}",
            user_message=user_message,
            field="time" if reason == self.OUTSIDE_HOURS else "date",
            value=start_time if reason == self.OUTSIDE_HOURS else reservation_date,
            reason=reason,
        )
        self.reason = reason


class InvalidGuestCountError(ValidationError):
    """Raised when the guest count is out of range."""

    def __init__(self, guest_count: int, max_guests: int):
        super().__init__(
            f"Invalid guest count {guest_count}. Allowed range is 1-{max_guests}.",
            user_message=f"Please choose between 1 and {max_guests} guests.",
            field="guest_count",
            value=guest_count,
            max_guests=max_guests,
        )


# ============================================================================
# Capacity / Conflict / Not Found
# ============================================================================

class CapacityError(BookingSystemError):
    """Raised when a slot cannot admit the requested guests."""


class SlotFullError(CapacityError):
    """Raised when the slot is full or the conditional reserve lost a race."""

    def __init__(
        self,
        reservation_date: date,
        start_time: time,
        requested: int,
        available: Optional[int] = None,
    ):
        super().__init__(
            f"Slot {reservation_date} {start_time} cannot admit {requested} guests "
            f"(available={available})",
            user_message="That time is fully booked. Please choose another time.",
            context={
                "date": reservation_date,
                "time": start_time,
                "requested": requested,
                "available": available,
            },
        )


class ConflictError(BookingSystemError):
    """Raised when a request conflicts with an existing reservation."""


class DuplicateBookingError(ConflictError):
    """Raised when the user already holds a confirmed reservation at that time."""

    def __init__(self, user_identity: Any, reservation_date: date, start_time: time):
        super().__init__(
            f"User {user_identity} already has a confirmed reservation at "
            f"{reservation_date} {start_time}",
            user_message="You already have a reservation at that time.",
            context={"user": user_identity, "date": reservation_date, "time": start_time},
        )


class NotFoundError(BookingSystemError):
    """Raised when a slot or reservation does not exist."""


class SlotNotFoundError(NotFoundError):
    """Raised when no slot exists for the requested date and time."""

    def __init__(self, reservation_date: date, start_time: time):
        super().__init__(
            f"No time slot for {reservation_date} {start_time}",
            user_message="The selected time slot could not be found.",
            context={"date": reservation_date, "time": start_time},
        )


class ReservationNotFoundError(NotFoundError):
    """Raised when a reservation is absent."""

    def __init__(self, reservation_id: Any):
        super().__init__(
            f"Reservation {reservation_id} not found",
            user_message="The reservation could not be found or is already cancelled.",
            context={"reservation_id": reservation_id},
        )
        self.reservation_id = reservation_id


class AlreadyCancelledError(NotFoundError):
    """Raised when a reservation exists but is no longer confirmed."""

    def __init__(self, reservation_id: Any, status: Optional[str] = None):
        super().__init__(
            f"Reservation {reservation_id} is not confirmed (status={status})",
            user_message="This reservation has already been cancelled.",
            context={"reservation_id": reservation_id, "status": status},
        )
        self.reservation_id = reservation_id
        self.status = status


# ============================================================================
# Persistence / Consistency
# ============================================================================

class PersistenceError(BookingSystemError):
    """Raised when the persistent store fails (connection loss, timeouts)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            user_message="Something went wrong on our side. Please try again later.",
            context={
                "operation": operation,
                "original_error": str(original_error) if original_error else None,
            },
        )
        self.operation = operation
        self.original_error = original_error


class ConsistencyError(BookingSystemError):
    """Raised when stored capacity may no longer match the reservations."""


class CompensationFailedError(ConsistencyError):
    """
    Raised when seats released by an update or cancel could not be taken back.

    The user still sees the message of the failure that triggered the undo;
    operators get a distinct error class and a CRITICAL log line.
    """

    def __init__(
        self,
        reservation_id: Any,
        slot_id: Optional[int],
        guest_count: int,
        original_error: BookingSystemError,
        operation: str = "update",
    ):
        super().__init__(
            f"Failed to restore {guest_count} seats on slot {slot_id} while undoing "
            f"{operation} of reservation {reservation_id}: {original_error.message}",
            user_message=original_error.user_message,
            context={
                "reservation_id": reservation_id,
                "slot_id": slot_id,
                "guest_count": guest_count,
                "operation": operation,
                "original_error": type(original_error).__name__,
            },
            recoverable=False,
        )
        self.original_error = original_error


# ============================================================================
# Notification Errors
# ============================================================================

class NotificationError(BookingSystemError):
    """Base class for outgoing message failures."""


class DeliveryError(NotificationError):
    """Raised when the messaging gateway rejects or fails a delivery."""

    def __init__(self, message: str, recipient: Optional[str] = None, retryable: bool = True):
        super().__init__(message, context={"recipient": recipient, "retryable": retryable})
        self.recipient = recipient
        self.retryable = retryable


# ============================================================================
# Conversation Errors
# ============================================================================

class StateTransitionError(BookingSystemError):
    """Raised when a dialogue action is not valid in the current state."""

    def __init__(self, current_state: Optional[str], action: str):
        super().__init__(
            f"Action '{action}' is not valid in state {current_state}",
            user_message="That option is no longer available. Please start again.",
            context={"state": current_state, "action": action},
        )
