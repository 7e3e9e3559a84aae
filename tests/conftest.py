"""
Pytest configuration and shared fixtures.

All tests run against a fixed business clock: Saturday 2024-06-08 09:00 in
Asia/Tokyo. Monday 2024-06-10 is an open day, Tuesday 2024-06-11 the closed
day.
"""
import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from config import Settings
from error_handling.exceptions import DeliveryError
from models.database import TimeSlot, create_db_engine, create_session_factory, create_tables, unit_of_work
from notifications.gateway import MessagingGateway
from scheduling.job_runner import JobRunner
from scheduling.reminder_scheduler import ReminderScheduler
from services.business_calendar import BusinessCalendar
from services.reservation_ledger import ReservationLedger

TOKYO = ZoneInfo("Asia/Tokyo")
NOW = datetime(2024, 6, 8, 9, 0, tzinfo=TOKYO)
SATURDAY = date(2024, 6, 8)
SUNDAY = date(2024, 6, 9)
MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)
WEDNESDAY = date(2024, 6, 12)


class FakeClock:
    """Mutable clock returning an aware datetime."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingGateway(MessagingGateway):
    """Gateway that records outgoing messages and can be told to fail."""

    def __init__(self):
        self.pushed: List[Tuple[str, str]] = []
        self.replies: List[Tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None

    def send_direct(self, user_identity: str, message: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.pushed.append((user_identity, message))

    def reply_to(self, reply_token: str, message: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.replies.append((reply_token, message))


class ManualJobRunner(JobRunner):
    """Job runner whose jobs only fire when a test says so."""

    def __init__(self, clock: Callable[[], datetime]):
        self.clock = clock
        self.jobs: Dict[str, Tuple[datetime, Callable[[], None]]] = {}
        self.was_shut_down = False

    def schedule(self, key: str, fire_at: datetime, fn: Callable[[], None]) -> None:
        self.jobs[key] = (fire_at, fn)

    def cancel(self, key: str) -> bool:
        return self.jobs.pop(key, None) is not None

    def pending(self) -> List[str]:
        return list(self.jobs)

    def shutdown(self) -> None:
        self.jobs.clear()
        self.was_shut_down = True

    def fire(self, key: str) -> None:
        _, fn = self.jobs.pop(key)
        fn()

    def run_due(self) -> int:
        due = [key for key, (fire_at, _) in self.jobs.items() if fire_at <= self.clock()]
        for key in due:
            self.fire(key)
        return len(due)


@pytest.fixture
def settings() -> Settings:
    """Default business rules with an in-memory database."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        business_timezone="Asia/Tokyo",
        business_hours_start=11,
        business_hours_end=22,
        closed_weekday=1,
        slot_capacity=4,
        max_guest_count=4,
        reminder_hour=10,
        session_ttl_seconds=1800,
        shop_name="Test Shop",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def calendar(settings, clock) -> BusinessCalendar:
    return BusinessCalendar(settings, clock=clock)


@pytest.fixture
def db_engine(settings):
    """
    Fresh in-memory SQLite database per test, shared by all threads.
    """
    engine = create_db_engine(settings.database_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def job_runner(clock) -> ManualJobRunner:
    return ManualJobRunner(clock)


@pytest.fixture
def reminders(session_factory, gateway, job_runner, settings, calendar) -> ReminderScheduler:
    return ReminderScheduler(session_factory, gateway, job_runner, settings=settings, calendar=calendar)


@pytest.fixture
def ledger(session_factory, settings, calendar, reminders) -> ReservationLedger:
    return ReservationLedger(session_factory, settings=settings, calendar=calendar, reminder_scheduler=reminders)


@pytest.fixture
def make_slot(session_factory):
    """
    Insert a slot and return its id.

    Usage: make_slot(MONDAY, 18, capacity=4, available=4)
    """

    def _make(day: date, hour: int, capacity: int = 4, available: Optional[int] = None) -> int:
        with unit_of_work(session_factory) as session:
            slot = TimeSlot(
                slot_date=day,
                start_time=time(hour),
                end_time=time(hour + 1),
                capacity=capacity,
                available=capacity if available is None else available,
            )
            session.add(slot)
            session.flush()
            return slot.id

    return _make


@pytest.fixture
def slot_available(session_factory):
    """Read a slot's current available count straight from the database."""

    def _read(slot_id: int) -> int:
        with unit_of_work(session_factory) as session:
            return session.get(TimeSlot, slot_id).available

    return _read


@pytest.fixture
def delivery_failure() -> DeliveryError:
    return DeliveryError("channel rejected the message", recipient="U1", retryable=False)
