"""
Booking dialogue state machine.

ConversationSession applies user actions to the per-user BookingSession:
- validating each action against the current state
- checking chosen dates/times against the business calendar
- handing the completed draft to the ReservationLedger on confirmation

A session that has expired is simply absent: actions on it return None
instead of raising.
"""

from datetime import date, time
from typing import Optional

from loguru import logger

from error_handling.exceptions import (
    InvalidGuestCountError,
    InvalidReservationTimeError,
    StateTransitionError,
)
from error_handling.logging_config import log_conversation_event
from models.database import Reservation
from services.reservation_ledger import ReservationLedger

from .context import BookingSession
from .session_store import SessionStore
from .states import SessionState


class ConversationSession:
    """
    Drives booking sessions from first intent to a committed reservation.

    Attributes:
        store: Session storage (expiry and renewal live there)
        ledger: Reservation ledger used on confirmation
    """

    def __init__(self, store: SessionStore, ledger: ReservationLedger):
        self.store = store
        self.ledger = ledger
        self.calendar = ledger.calendar
        self.max_guest_count = ledger.settings.max_guest_count

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[BookingSession]:
        return self.store.get(user_id)

    def start(self, user_id: str) -> BookingSession:
        """Begin a new booking, replacing any session the user had."""
        session = self.store.set(user_id, SessionState.SELECTING_DATE)
        log_conversation_event("STARTED", user_id=user_id, state=session.state.value)
        return session

    def start_edit(self, user_id: str, reservation: Reservation) -> BookingSession:
        """
        Begin modifying an existing reservation.

        The draft starts with the reservation's guest count so the user can
        keep it while moving to another slot.
        """
        session = self.store.set(
            user_id,
            SessionState.EDITING,
            reservation_id=reservation.id,
            guest_count=reservation.guest_count,
            special_requests=reservation.special_requests,
        )
        log_conversation_event(
            "EDIT_STARTED",
            user_id=user_id,
            state=session.state.value,
            details={"reservation_id": reservation.id},
        )
        return session

    def cancel(self, user_id: str) -> bool:
        """Abandon the dialogue. Returns whether a session existed."""
        deleted = self.store.delete(user_id)
        if deleted:
            log_conversation_event("CANCELLED", user_id=user_id)
        return deleted

    # ------------------------------------------------------------------
    # Draft actions
    # ------------------------------------------------------------------

    def choose_date(self, user_id: str, day: date) -> Optional[BookingSession]:
        """
        Record the visit date and move on to time selection.

        Raises:
            InvalidReservationTimeError: closed day or past date
            StateTransitionError: not a state where a date can be chosen
        """
        session = self.store.get(user_id)
        if session is None:
            return None
        self._check_transition(session, SessionState.SELECTING_TIME, "select_date")

        if self.calendar.is_closed_day(day):
            raise InvalidReservationTimeError(
                InvalidReservationTimeError.CLOSED_DAY,
                f"We are closed on {self.calendar.closed_day_name()}s.",
                reservation_date=day,
            )
        if not self.calendar.is_future(day):
            raise InvalidReservationTimeError(
                InvalidReservationTimeError.PAST,
                "That date has already passed.",
                reservation_date=day,
            )

        return self._apply(
            session,
            "DATE_SELECTED",
            state=SessionState.SELECTING_TIME,
            selected_date=day,
            selected_time=None,
        )

    def choose_time(self, user_id: str, at: time) -> Optional[BookingSession]:
        """
        Record the start time and move on to confirmation.

        Raises:
            InvalidReservationTimeError: the date/time breaks a calendar rule
            StateTransitionError: no date chosen yet
        """
        session = self.store.get(user_id)
        if session is None:
            return None
        self._check_transition(session, SessionState.CONFIRMING, "select_time")
        if session.selected_date is None:
            raise StateTransitionError(session.state.value, "select_time")

        invalid = self.calendar.check_reservation_time(session.selected_date, at)
        if invalid is not None:
            raise invalid

        return self._apply(session, "TIME_SELECTED", state=SessionState.CONFIRMING, selected_time=at)

    def set_guest_count(self, user_id: str, guest_count: int) -> Optional[BookingSession]:
        """
        Record the number of guests; the state stays ``confirming``.

        Raises:
            InvalidGuestCountError: outside 1..max_guest_count
            StateTransitionError: not confirming
        """
        session = self.store.get(user_id)
        if session is None:
            return None
        self._require_state(session, SessionState.CONFIRMING, "set_guest_count")

        if guest_count < 1 or guest_count > self.max_guest_count:
            raise InvalidGuestCountError(guest_count, self.max_guest_count)

        return self._apply(session, "GUEST_COUNT_SELECTED", guest_count=guest_count)

    def set_special_requests(self, user_id: str, text: str) -> Optional[BookingSession]:
        """Free text typed while confirming becomes the special requests."""
        session = self.store.get(user_id)
        if session is None:
            return None
        self._require_state(session, SessionState.CONFIRMING, "special_requests")
        return self._apply(session, "SPECIAL_REQUESTS_SET", special_requests=text)

    def back_to_date(self, user_id: str) -> Optional[BookingSession]:
        """
        Clear the draft and return to date selection.

        An editing session keeps its reservation and returns to EDITING.
        """
        session = self.store.get(user_id)
        if session is None:
            return None

        target = SessionState.EDITING if session.is_editing else SessionState.SELECTING_DATE
        self._check_transition(session, target, "back_to_date")

        return self._apply(
            session,
            "RESTARTED",
            state=target,
            selected_date=None,
            selected_time=None,
            guest_count=None,
        )

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(self, user_id: str, display_name: Optional[str] = None) -> Optional[Reservation]:
        """
        Commit the draft through the ledger and end the session.

        A new booking calls ``create_reservation``; an editing session calls
        ``update_reservation``. The session survives a failed commit so the
        user can pick another time.

        Returns:
            The created or updated Reservation, or None if no session exists

        Raises:
            StateTransitionError: not confirming, or the draft is incomplete
            BookingSystemError: any ledger failure, unchanged
        """
        session = self.store.get(user_id)
        if session is None:
            return None
        self._require_state(session, SessionState.CONFIRMING, "confirm")
        if not session.is_complete():
            logger.info(f"Confirm rejected for {user_id}: missing {session.missing_fields()}")
            raise StateTransitionError(session.state.value, "confirm")

        if session.is_editing:
            reservation = self.ledger.update_reservation(
                session.reservation_id,
                new_date=session.selected_date,
                new_time=session.selected_time,
                new_guest_count=session.guest_count,
            )
        else:
            reservation = self.ledger.create_reservation(
                user_identity=user_id,
                display_name=display_name,
                reservation_date=session.selected_date,
                start_time=session.selected_time,
                guest_count=session.guest_count,
                special_requests=session.special_requests,
            )

        self.store.delete(user_id)
        log_conversation_event(
            "COMPLETED",
            user_id=user_id,
            state=session.state.value,
            details={"reservation_id": reservation.id, "editing": session.is_editing},
        )
        return reservation

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(self, session: BookingSession, event_type: str, **changes) -> Optional[BookingSession]:
        updated = self.store.update(session.user_id, **changes)
        if updated is not None:
            log_conversation_event(event_type, user_id=session.user_id, state=updated.state.value)
        return updated

    @staticmethod
    def _check_transition(session: BookingSession, target: SessionState, action: str) -> None:
        if not session.state.can_transition_to(target):
            raise StateTransitionError(session.state.value, action)

    @staticmethod
    def _require_state(session: BookingSession, required: SessionState, action: str) -> None:
        if session.state != required:
            raise StateTransitionError(session.state.value, action)
