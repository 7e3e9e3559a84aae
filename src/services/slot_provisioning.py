"""
Time slot provisioning.

Creates one slot per business hour for every open day in the booking
window. Running it again only fills in what is missing; existing slots and
their counters are never touched.
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from models.database import TimeSlot, unit_of_work
from services.business_calendar import BusinessCalendar


def slot_start_times(settings: Settings) -> List[time]:
    """Start times of the slots on an open day."""
    step = timedelta(minutes=settings.slot_duration_minutes)
    current = datetime.combine(date.min, time(settings.business_hours_start))
    close = datetime.combine(date.min, time(settings.business_hours_end))

    starts = []
    while current < close:
        starts.append(current.time())
        current += step
    return starts


def _provision_day(session: Session, day: date, calendar: BusinessCalendar, capacity: int) -> int:
    existing = set(session.execute(
        select(TimeSlot.start_time).where(TimeSlot.slot_date == day)
    ).scalars().all())

    missing = [start for start in slot_start_times(calendar.settings) if start not in existing]
    if not missing:
        return 0

    try:
        # Per-day savepoint: a concurrent provisioner only costs this day
        with session.begin_nested():
            for start in missing:
                session.add(TimeSlot(
                    slot_date=day,
                    start_time=start,
                    end_time=calendar.end_time_for(start),
                    capacity=capacity,
                    available=capacity,
                ))
            session.flush()
    except IntegrityError:
        logger.info(f"Slots for {day} were created concurrently, skipping")
        return 0

    return len(missing)


def generate_time_slots(
    session_factory: sessionmaker,
    start_date: Optional[date] = None,
    days_ahead: Optional[int] = None,
    settings: Optional[Settings] = None,
    calendar: Optional[BusinessCalendar] = None,
) -> int:
    """
    Create the missing slots for ``days_ahead`` days starting at ``start_date``.

    Args:
        session_factory: sessionmaker bound to the reservation database
        start_date: First day to provision (defaults to today in business time)
        days_ahead: Number of days (defaults to the booking window)
        settings: Application settings (defaults to global settings)
        calendar: Business calendar (defaults to one built from settings)

    Returns:
        Number of slots created
    """
    settings = settings or get_settings()
    calendar = calendar or BusinessCalendar(settings)
    start_date = start_date or calendar.today()
    days_ahead = days_ahead or settings.booking_window_days

    created = 0
    with unit_of_work(session_factory, "generate_time_slots") as session:
        for offset in range(days_ahead):
            day = start_date + timedelta(days=offset)
            if calendar.is_closed_day(day):
                continue
            created += _provision_day(session, day, calendar, settings.slot_capacity)

    logger.info(f"Provisioned {created} time slots from {start_date} over {days_ahead} days")
    return created
