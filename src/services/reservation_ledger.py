"""
ReservationLedger - reservation lifecycle for the slot reservation bot.

This service handles:
- Reservation creation with capacity admission through SlotAllocator
- Reservation modification as a compensating move between slots
- Cancellation guarded by a conditional status update
- Availability queries and calendar validation

Every operation runs in one unit of work: it commits as a whole or rolls
back as a whole.
"""
from datetime import date, datetime, time
from typing import Callable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from error_handling.exceptions import (
    AlreadyCancelledError,
    BookingSystemError,
    CompensationFailedError,
    DuplicateBookingError,
    InvalidGuestCountError,
    PersistenceError,
    ReservationNotFoundError,
    SlotFullError,
    SlotNotFoundError,
)
from error_handling.handlers import log_error
from error_handling.logging_config import log_booking_event
from models.database import Reservation, TimeSlot, unit_of_work, utcnow
from models.schemas import TimeSlotInfo
from services.business_calendar import BusinessCalendar
from services.slot_allocator import SlotAllocator
from services.users import find_or_create_user, find_user


class ReservationLedger:
    """
    Orchestrates create/update/cancel against SlotAllocator and the store.

    Attributes:
        session_factory: sessionmaker each unit of work is opened from
        calendar: Business calendar used for every time rule
        reminder_scheduler: Optional scheduler notified after each commit
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        calendar: Optional[BusinessCalendar] = None,
        reminder_scheduler=None,
        allocator_factory: Callable[[Session], SlotAllocator] = SlotAllocator,
    ):
        """
        Initialize the ledger.

        Args:
            session_factory: sessionmaker bound to the reservation database
            settings: Application settings (defaults to global settings)
            calendar: Business calendar (defaults to one built from settings)
            reminder_scheduler: ReminderScheduler to (re)schedule reminders
            allocator_factory: Builds the SlotAllocator for a session
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.calendar = calendar or BusinessCalendar(self.settings)
        self.reminder_scheduler = reminder_scheduler
        self.allocator_factory = allocator_factory

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_reservation(
        self,
        user_identity: str,
        display_name: Optional[str],
        reservation_date: date,
        start_time: time,
        guest_count: int,
        special_requests: Optional[str] = None,
    ) -> Reservation:
        """
        Book ``guest_count`` seats in the slot starting at ``start_time``.

        Steps, all in one unit of work:
        1. find or create the user (refreshing the display name)
        2. re-check the calendar rules, since time may have passed since validation
        3. look up the slot
        4. read-only availability check
        5. reject a second confirmed booking by the same user at the same time
        6. conditional reserve (authoritative against concurrent bookers)
        7. insert the confirmed reservation

        Args:
            user_identity: External channel user id
            display_name: Latest channel display name, if known
            reservation_date: Visit date
            start_time: Slot start time
            guest_count: Number of guests
            special_requests: Optional free text

        Returns:
            Created Reservation

        Raises:
            InvalidGuestCountError: guest count out of range
            InvalidReservationTimeError: closed day, past, or outside hours
            SlotNotFoundError: no slot at that date/time
            SlotFullError: not enough seats, or the reserve lost a race
            DuplicateBookingError: user already booked that time
            PersistenceError: store failure (nothing is committed)
        """
        self._check_guest_count(guest_count)
        special_requests = special_requests.strip() if special_requests and special_requests.strip() else None
        context = {"user": user_identity, "date": reservation_date, "time": start_time, "guests": guest_count}

        try:
            with unit_of_work(self.session_factory, "create_reservation") as session:
                allocator = self.allocator_factory(session)
                user = find_or_create_user(session, user_identity, display_name)

                invalid = self.calendar.check_reservation_time(reservation_date, start_time)
                if invalid is not None:
                    raise invalid

                slot = allocator.find_slot(reservation_date, start_time)
                if slot is None:
                    raise SlotNotFoundError(reservation_date, start_time)

                if not allocator.is_available(reservation_date, start_time, guest_count):
                    raise SlotFullError(reservation_date, start_time, guest_count, slot.available)

                if self._has_conflict(session, user.id, reservation_date, start_time):
                    raise DuplicateBookingError(user_identity, reservation_date, start_time)

                if not allocator.reserve(slot.id, guest_count):
                    raise SlotFullError(reservation_date, start_time, guest_count, allocator.remaining(slot.id))

                reservation = Reservation(
                    user_id=user.id,
                    reservation_date=reservation_date,
                    start_time=start_time,
                    end_time=self.calendar.end_time_for(start_time),
                    guest_count=guest_count,
                    status="confirmed",
                    special_requests=special_requests,
                )
                session.add(reservation)
                try:
                    session.flush()
                except IntegrityError as e:
                    # A concurrent request for the same user won the unique index
                    raise DuplicateBookingError(user_identity, reservation_date, start_time) from e
        except BookingSystemError as e:
            log_error(e, {"operation": "create_reservation", **context})
            raise

        log_booking_event(
            "CREATED",
            user_id=user_identity,
            reservation_id=reservation.id,
            details={"date": str(reservation_date), "time": str(start_time), "guests": guest_count},
        )
        self._schedule_reminder(reservation)
        return reservation

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_reservation(
        self,
        reservation_id: str,
        new_date: Optional[date] = None,
        new_time: Optional[time] = None,
        new_guest_count: Optional[int] = None,
    ) -> Reservation:
        """
        Move a confirmed reservation to a new slot and/or guest count.

        The move is "cancel old, book new": the old seats are released
        first, so the target check sees them, then taken back if any later
        step fails. Undo order is fixed: the only undo is re-reserving the
        old slot for the old guest count.

        Args:
            reservation_id: Reservation to modify
            new_date: Target date (defaults to the current one)
            new_time: Target start time (defaults to the current one)
            new_guest_count: Target guest count (defaults to the current one)

        Returns:
            Updated Reservation

        Raises:
            ReservationNotFoundError / AlreadyCancelledError: not a confirmed reservation
            InvalidReservationTimeError: target breaks a calendar rule
            SlotNotFoundError, SlotFullError, DuplicateBookingError: target rejected
            CompensationFailedError: the undo itself failed
        """
        if new_guest_count is not None:
            self._check_guest_count(new_guest_count)
        context = {"operation": "update_reservation", "reservation_id": reservation_id}

        try:
            with unit_of_work(self.session_factory, "update_reservation") as session:
                allocator = self.allocator_factory(session)
                reservation = self._load_confirmed(session, reservation_id)

                old_date = reservation.reservation_date
                old_time = reservation.start_time
                old_guests = reservation.guest_count
                target_date = new_date or old_date
                target_time = new_time or old_time
                target_guests = new_guest_count if new_guest_count is not None else old_guests

                invalid = self.calendar.check_reservation_time(target_date, target_time)
                if invalid is not None:
                    raise invalid

                # Phase 1: tentatively release the old seats
                old_slot = allocator.find_slot(old_date, old_time)
                if old_slot is not None:
                    allocator.release(old_slot.id, old_guests)
                else:
                    logger.warning(f"Reservation {reservation_id} points at missing slot {old_date} {old_time}")

                # Phase 2: take the new seats and rewrite the row, or undo phase 1
                try:
                    new_slot = allocator.find_slot(target_date, target_time)
                    if new_slot is None:
                        raise SlotNotFoundError(target_date, target_time)

                    if not allocator.is_available(target_date, target_time, target_guests):
                        raise SlotFullError(target_date, target_time, target_guests, new_slot.available)

                    if self._has_conflict(session, reservation.user_id, target_date, target_time, reservation.id):
                        raise DuplicateBookingError(reservation.user.external_id, target_date, target_time)

                    if not allocator.reserve(new_slot.id, target_guests):
                        raise SlotFullError(target_date, target_time, target_guests, allocator.remaining(new_slot.id))

                    self._write_move(session, reservation, target_date, target_time, target_guests)
                except BookingSystemError as failure:
                    self._undo_release(allocator, old_slot, old_guests, reservation_id, failure)
                    raise
                except SQLAlchemyError as e:
                    failure = PersistenceError(
                        f"Failed to write moved reservation {reservation_id}: {e}",
                        operation="update_reservation",
                        original_error=e,
                    )
                    self._undo_release(allocator, old_slot, old_guests, reservation_id, failure)
                    raise failure from e
        except BookingSystemError as e:
            log_error(e, context)
            raise

        log_booking_event(
            "UPDATED",
            reservation_id=reservation.id,
            details={
                "from": f"{old_date} {old_time} x{old_guests}",
                "to": f"{target_date} {target_time} x{target_guests}",
            },
        )
        self._schedule_reminder(reservation)
        return reservation

    def _write_move(
        self,
        session: Session,
        reservation: Reservation,
        target_date: date,
        target_time: time,
        target_guests: int,
    ) -> None:
        """
        Rewrite the reservation row inside a savepoint.

        The savepoint keeps the outer transaction usable when the write
        fails, so the old-slot undo can still run.
        """
        user_identity = reservation.user.external_id
        try:
            with session.begin_nested():
                reservation.reservation_date = target_date
                reservation.start_time = target_time
                reservation.end_time = self.calendar.end_time_for(target_time)
                reservation.guest_count = target_guests
                session.flush()
        except IntegrityError as e:
            raise DuplicateBookingError(user_identity, target_date, target_time) from e

    def _undo_release(
        self,
        allocator: SlotAllocator,
        old_slot: Optional[TimeSlot],
        old_guests: int,
        reservation_id: str,
        failure: BookingSystemError,
    ) -> None:
        """
        Compensate phase 1 by re-reserving the old seats.

        Raises:
            CompensationFailedError: if the old seats could not be taken back
        """
        if old_slot is None:
            return

        try:
            restored = allocator.reserve(old_slot.id, old_guests)
        except SQLAlchemyError as e:
            logger.error(f"Undo reserve on slot {old_slot.id} raised: {e}")
            restored = False

        if not restored:
            error = CompensationFailedError(reservation_id, old_slot.id, old_guests, failure)
            log_error(error, {"operation": "update_reservation.undo", "reservation_id": reservation_id})
            raise error from failure

        logger.info(
            f"Restored {old_guests} seats on slot {old_slot.id} after failed update of "
            f"{reservation_id}: {type(failure).__name__}"
        )

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        """
        Cancel a confirmed reservation and return its seats.

        The status change is conditional on ``status = 'confirmed'``, so of
        two concurrent cancels only one releases capacity.

        Raises:
            ReservationNotFoundError: no such reservation
            AlreadyCancelledError: reservation is not confirmed (any more)
            CompensationFailedError: a lost race left released seats that could not be taken back
        """
        context = {"operation": "cancel_reservation", "reservation_id": reservation_id}

        try:
            with unit_of_work(self.session_factory, "cancel_reservation") as session:
                allocator = self.allocator_factory(session)
                reservation = self._load_confirmed(session, reservation_id)

                slot = allocator.find_slot(reservation.reservation_date, reservation.start_time)
                if slot is not None:
                    allocator.release(slot.id, reservation.guest_count)

                result = session.execute(
                    update(Reservation)
                    .where(Reservation.id == reservation_id, Reservation.status == "confirmed")
                    .values(status="cancelled", updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    # Lost the race to a concurrent cancel; take the released seats back
                    lost = AlreadyCancelledError(reservation_id, "cancelled")
                    if slot is not None and not allocator.reserve(slot.id, reservation.guest_count):
                        raise CompensationFailedError(
                            reservation_id, slot.id, reservation.guest_count, lost, operation="cancel"
                        ) from lost
                    raise lost

                session.refresh(reservation)
        except BookingSystemError as e:
            log_error(e, context)
            raise

        log_booking_event(
            "CANCELLED",
            reservation_id=reservation_id,
            details={"date": str(reservation.reservation_date), "time": str(reservation.start_time)},
        )
        if self.reminder_scheduler is not None:
            self.reminder_scheduler.unschedule(reservation_id)
        return reservation

    # ------------------------------------------------------------------
    # Queries and validation
    # ------------------------------------------------------------------

    def get_available_slots(self, slot_date: date) -> List[TimeSlotInfo]:
        """
        Slots on a date that can still be offered to users.

        Returns an empty list on the closed day and for past dates; on the
        current day, slots that already started are left out. Each entry
        reports whether any seat is left.
        """
        if self.calendar.is_closed_day(slot_date) or not self.calendar.is_future(slot_date):
            return []

        with unit_of_work(self.session_factory, "get_available_slots") as session:
            slots = session.execute(
                select(TimeSlot).where(TimeSlot.slot_date == slot_date).order_by(TimeSlot.start_time)
            ).scalars().all()

            return [
                TimeSlotInfo(
                    id=slot.id,
                    slot_date=slot.slot_date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    capacity=slot.capacity,
                    available=slot.available,
                    is_available=slot.is_available(1),
                )
                for slot in slots
                if self.calendar.is_future(slot.slot_date, slot.start_time)
                and self.calendar.is_within_business_hours(slot.start_time)
            ]

    def validate_reservation_time(
        self,
        reservation_date: date,
        start_time: time,
        raise_on_invalid: bool = False,
    ) -> Tuple[bool, str]:
        """
        Validate a date/time against the calendar rules.

        Args:
            reservation_date: Requested date
            start_time: Requested start time
            raise_on_invalid: Raise InvalidReservationTimeError instead of returning False

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is empty.
        """
        invalid = self.calendar.check_reservation_time(reservation_date, start_time)
        if invalid is None:
            return True, ""
        if raise_on_invalid:
            raise invalid
        return False, invalid.user_message

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with unit_of_work(self.session_factory, "get_reservation") as session:
            return session.get(Reservation, reservation_id)

    def get_user_reservations(self, user_identity: str) -> List[Reservation]:
        """
        Upcoming confirmed reservations of a user, soonest first.
        """
        now = self.calendar.now()
        today, current_time = now.date(), now.time().replace(tzinfo=None)

        with unit_of_work(self.session_factory, "get_user_reservations") as session:
            user = find_user(session, user_identity)
            if user is None:
                return []

            return list(session.execute(
                select(Reservation)
                .where(
                    Reservation.user_id == user.id,
                    Reservation.status == "confirmed",
                    or_(
                        Reservation.reservation_date > today,
                        and_(Reservation.reservation_date == today, Reservation.start_time > current_time),
                    ),
                )
                .order_by(Reservation.reservation_date, Reservation.start_time)
            ).scalars().all())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_guest_count(self, guest_count: int) -> None:
        if guest_count < 1 or guest_count > self.settings.max_guest_count:
            raise InvalidGuestCountError(guest_count, self.settings.max_guest_count)

    @staticmethod
    def _load_confirmed(session: Session, reservation_id: str) -> Reservation:
        reservation = session.get(Reservation, reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        if reservation.status != "confirmed":
            raise AlreadyCancelledError(reservation_id, reservation.status)
        return reservation

    @staticmethod
    def _has_conflict(
        session: Session,
        user_id: int,
        reservation_date: date,
        start_time: time,
        exclude_id: Optional[str] = None,
    ) -> bool:
        query = select(Reservation.id).where(
            Reservation.user_id == user_id,
            Reservation.reservation_date == reservation_date,
            Reservation.start_time == start_time,
            Reservation.status == "confirmed",
        )
        if exclude_id is not None:
            query = query.where(Reservation.id != exclude_id)
        return session.execute(query.limit(1)).first() is not None

    def _schedule_reminder(self, reservation: Reservation) -> None:
        # Reminder problems never undo a committed booking
        if self.reminder_scheduler is None:
            return
        try:
            self.reminder_scheduler.schedule(reservation)
        except Exception as e:
            log_error(e, {"operation": "schedule_reminder", "reservation_id": reservation.id})
