"""
Business calendar rules evaluated in the single business timezone.

Three rules gate every booking attempt:
- the weekly closed day,
- the date/time must still lie in the future,
- the start time must fall inside [business_hours_start, business_hours_end).
"""
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional

from config import Settings, get_settings
from error_handling.exceptions import InvalidReservationTimeError

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class BusinessCalendar:
    """
    Calendar arithmetic and validation for one shop location.

    Attributes:
        settings: Application settings (hours, closed day, timezone)
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or get_settings()
        self.tz = self.settings.tzinfo
        self._clock = clock

    def now(self) -> datetime:
        """Current time in the business timezone."""
        if self._clock is not None:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def tomorrow(self) -> date:
        return self.today() + timedelta(days=1)

    def combine(self, day: date, at: time) -> datetime:
        """Aware datetime for a wall-clock date and time in the business timezone."""
        return datetime.combine(day, at, tzinfo=self.tz)

    def is_closed_day(self, day: date) -> bool:
        return day.weekday() == self.settings.closed_weekday

    def is_future(self, day: date, at: Optional[time] = None) -> bool:
        """
        Whether the date (or the date and time) lies ahead of now.

        Without a time only the calendar date is compared, so today counts
        as not in the past.
        """
        if at is None:
            return day >= self.today()
        return self.combine(day, at) > self.now()

    def is_within_business_hours(self, at: time) -> bool:
        return self.settings.business_hours_start <= at.hour < self.settings.business_hours_end

    def closed_day_name(self) -> str:
        return WEEKDAY_NAMES[self.settings.closed_weekday]

    def check_reservation_time(self, day: date, at: time) -> Optional[InvalidReservationTimeError]:
        """
        Apply the three calendar rules in order.

        Returns:
            The first violated rule as an error, or None when the time is bookable
        """
        if self.is_closed_day(day):
            return InvalidReservationTimeError(
                InvalidReservationTimeError.CLOSED_DAY,
                f"We are closed on {self.closed_day_name()}s.",
                reservation_date=day,
                start_time=at,
            )

        if not self.is_future(day, at):
            return InvalidReservationTimeError(
                InvalidReservationTimeError.PAST,
                "That date and time has already passed.",
                reservation_date=day,
                start_time=at,
            )

        if not self.is_within_business_hours(at):
            start = self.settings.business_hours_start
            end = self.settings.business_hours_end
            return InvalidReservationTimeError(
                InvalidReservationTimeError.OUTSIDE_HOURS,
                f"That time is outside business hours ({start:02d}:00-{end:02d}:00).",
                reservation_date=day,
                start_time=at,
            )

        return None

    def end_time_for(self, start: time) -> time:
        """Slot end time: start plus the fixed slot duration."""
        end = datetime.combine(date.min, start) + timedelta(minutes=self.settings.slot_duration_minutes)
        return end.time()

    def reminder_fire_at(self, day: date) -> datetime:
        """Reminder moment: the day before the visit at the configured hour."""
        return self.combine(day - timedelta(days=1), time(self.settings.reminder_hour))

    def get_available_dates(self, days_ahead: Optional[int] = None) -> List[date]:
        """
        Open dates from today through the booking window.

        Today is included only while business hours have not ended.
        """
        days_ahead = days_ahead or self.settings.booking_window_days
        today = self.today()
        dates = []

        for offset in range(days_ahead):
            day = today + timedelta(days=offset)
            if self.is_closed_day(day):
                continue
            if offset == 0 and self.now().hour >= self.settings.business_hours_end:
                continue
            dates.append(day)

        return dates

    @staticmethod
    def format_date(day: date) -> str:
        return day.strftime("%a %d %b %Y")

    @staticmethod
    def format_date_time(day: date, at: time) -> str:
        return f"{day.strftime('%a %d %b %Y')} {at.strftime('%H:%M')}"
