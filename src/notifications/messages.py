"""
Plain-text message rendering for the booking dialogue and reminders.
"""
from datetime import date, time
from typing import Iterable, List, Optional

from models.database import Reservation
from models.schemas import TimeSlotInfo
from services.business_calendar import BusinessCalendar

DEFAULT_CUSTOMER_NAME = "Guest"
BOOKING_HINT = 'To make a reservation, send "book".'


def _when(day: date, at: time) -> str:
    return BusinessCalendar.format_date_time(day, at)


def welcome_message(shop_name: str, display_name: Optional[str] = None) -> str:
    greeting = f"Hi {display_name}, thanks for adding us!" if display_name else "Thanks for adding us!"
    return (
        f"{greeting}\n\n"
        f"This is the reservation assistant of {shop_name}. You can:\n"
        "- make, change or cancel a reservation\n"
        "- ask about opening hours, access and the menu\n\n"
        f"{BOOKING_HINT}"
    )


def help_message() -> str:
    return (
        "How can we help?\n\n"
        f"- {BOOKING_HINT}\n"
        '- To see your reservations, send "my reservations".\n'
        "- Questions about opening hours or access are welcome too."
    )


def error_message(text: str) -> str:
    return f"{text}\n\nPlease try again."


def session_expired_message() -> str:
    return f"Your booking session has expired.\n\n{BOOKING_HINT}"


def dialogue_cancelled_message() -> str:
    return f"Booking cancelled.\n\n{BOOKING_HINT}"


def date_picker(dates: Iterable[date]) -> str:
    lines = ["Please choose a date:"]
    lines.extend(f"- {BusinessCalendar.format_date(day)}" for day in dates)
    return "\n".join(lines)


def time_picker(day: date, slots: List[TimeSlotInfo]) -> str:
    """Times with seats left on ``day``, or an apology when there are none."""
    open_slots = [slot for slot in slots if slot.is_available]
    if not open_slots:
        return (
            f"Sorry, {BusinessCalendar.format_date(day)} is fully booked.\n"
            "Please choose another date."
        )

    lines = [f"Available times on {BusinessCalendar.format_date(day)}:"]
    lines.extend(
        f"- {slot.start_time.strftime('%H:%M')} ({slot.available} seats left)"
        for slot in open_slots
    )
    return "\n".join(lines)


def guest_count_prompt(day: date, at: time, max_guests: int) -> str:
    return f"{_when(day, at)}\nHow many guests? (1-{max_guests})"


def confirmation_summary(session) -> str:
    """Draft summary shown while confirming."""
    lines = [
        "Please check your reservation:",
        f"Date/time: {_when(session.selected_date, session.selected_time)}",
        f"Guests: {session.guest_count}",
    ]
    if session.special_requests:
        lines.append(f"Requests: {session.special_requests}")
    lines.append("")
    lines.append("Send any special requests as a message, or confirm to book.")
    return "\n".join(lines)


def reservation_complete(reservation: Reservation) -> str:
    lines = [
        "Your reservation is confirmed. Thank you!",
        "",
        f"Date/time: {_when(reservation.reservation_date, reservation.start_time)}",
        f"Guests: {reservation.guest_count}",
    ]
    if reservation.special_requests:
        lines.append(f"Requests: {reservation.special_requests}")
    lines.append(f"Reservation ID: {reservation.short_id}")
    return "\n".join(lines)


def reservation_updated(reservation: Reservation) -> str:
    return (
        "Your reservation has been changed.\n\n"
        f"Date/time: {_when(reservation.reservation_date, reservation.start_time)}\n"
        f"Guests: {reservation.guest_count}\n"
        f"Reservation ID: {reservation.short_id}"
    )


def reservation_cancelled(reservation: Reservation) -> str:
    return (
        f"Your reservation for {_when(reservation.reservation_date, reservation.start_time)} "
        "has been cancelled."
    )


def reservations_list(reservations: List[Reservation]) -> str:
    if not reservations:
        return f"You have no upcoming reservations.\n\n{BOOKING_HINT}"

    lines = ["Your upcoming reservations:"]
    for reservation in reservations:
        lines.append(
            f"- {_when(reservation.reservation_date, reservation.start_time)}, "
            f"{reservation.guest_count} guests (ID {reservation.short_id})"
        )
    return "\n".join(lines)


def reminder_message(reservation: Reservation, display_name: Optional[str] = None) -> str:
    """Day-before reminder pushed to the guest."""
    name = display_name or DEFAULT_CUSTOMER_NAME
    return (
        "Reservation reminder\n\n"
        f"{name}, this is a reminder of your upcoming reservation.\n\n"
        f"Date/time: {_when(reservation.reservation_date, reservation.start_time)}\n"
        f"Guests: {reservation.guest_count}\n"
        f"Reservation ID: {reservation.short_id}\n\n"
        "We look forward to seeing you!\n"
        'To change or cancel, send "my reservations".'
    )
