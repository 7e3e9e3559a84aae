"""
Tests for ReminderScheduler.

Tests cover:
- Timer registration and the too-late no-op
- Delivery re-checks at fire time (cancelled, moved)
- At most one sent reminder when timer and sweep both deliver
- Failed deliveries and stale claims are retried by the sweep
- Marking a reminder sent survives transient store failures
"""
from contextlib import contextmanager
from datetime import datetime, time, timedelta

import pytest
from loguru import logger
from sqlalchemy import select

import scheduling.reminder_scheduler as reminder_scheduler
from error_handling.exceptions import PersistenceError
from models.database import NotificationLog, unit_of_work, utcnow
from scheduling.reminder_scheduler import REMINDER, ReminderJob, ReminderScheduler

from conftest import MONDAY, SUNDAY, TOKYO, WEDNESDAY


def book(ledger, user="U1", day=MONDAY, hour=18, guests=2, name="Alice"):
    return ledger.create_reservation(user, name, day, time(hour), guests)


def log_statuses(session_factory, reservation_id):
    with unit_of_work(session_factory) as session:
        return session.execute(
            select(NotificationLog.status)
            .where(NotificationLog.reservation_id == reservation_id)
            .order_by(NotificationLog.id)
        ).scalars().all()


def add_claim(session_factory, reservation_id, created_at=None):
    with unit_of_work(session_factory) as session:
        session.add(NotificationLog(
            reservation_id=reservation_id,
            notification_type=REMINDER,
            status="pending",
            created_at=created_at or utcnow(),
        ))


class TestSchedule:
    """Test timer registration."""

    def test_schedule_registers_day_before(self, ledger, reminders, make_slot, job_runner):
        make_slot(MONDAY, 18)
        reservation = book(ledger)

        fire_at = reminders.schedule(reservation)

        assert fire_at == datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO)
        assert job_runner.pending() == [reservation.id]

    def test_schedule_too_late_is_noop(self, ledger, reminders, make_slot, job_runner, clock):
        make_slot(SUNDAY, 18)
        clock.set(datetime(2024, 6, 8, 11, 0, tzinfo=TOKYO))

        reservation = book(ledger, day=SUNDAY)

        assert reminders.schedule(reservation) is None
        assert job_runner.pending() == []

    def test_shutdown_discards_timers(self, ledger, reminders, make_slot, job_runner):
        make_slot(MONDAY, 18)
        book(ledger)

        reminders.shutdown()

        assert job_runner.was_shut_down
        assert job_runner.pending() == []


class TestDeliver:
    """Test delivery at fire time."""

    def test_timer_delivers_reminder(self, ledger, make_slot, job_runner, gateway, session_factory, clock):
        make_slot(MONDAY, 18)
        reservation = book(ledger, name="Alice")
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        assert job_runner.run_due() == 1

        assert len(gateway.pushed) == 1
        recipient, text = gateway.pushed[0]
        assert recipient == "U1"
        assert "Alice" in text
        assert reservation.short_id in text
        assert "Guests: 2" in text
        assert log_statuses(session_factory, reservation.id) == ["sent"]

    def test_second_delivery_is_noop(self, ledger, reminders, make_slot, gateway, session_factory):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        job = ReminderJob(reservation.id, datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO), MONDAY)

        assert reminders.deliver(job) is True
        assert reminders.deliver(job) is False

        assert len(gateway.pushed) == 1
        assert log_statuses(session_factory, reservation.id) == ["sent"]

    def test_cancelled_before_firing_is_skipped(self, ledger, make_slot, job_runner, gateway, session_factory):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        _, fire = job_runner.jobs[reservation.id]

        ledger.cancel_reservation(reservation.id)
        fire()

        assert gateway.pushed == []
        assert log_statuses(session_factory, reservation.id) == []

    def test_moved_reservation_skips_stale_job(self, ledger, make_slot, job_runner, gateway):
        make_slot(MONDAY, 18)
        make_slot(WEDNESDAY, 18)
        reservation = book(ledger)
        _, stale_fire = job_runner.jobs[reservation.id]

        ledger.update_reservation(reservation.id, new_date=WEDNESDAY)
        stale_fire()

        assert gateway.pushed == []
        assert reservation.id in job_runner.jobs

    def test_failed_delivery_is_logged(self, ledger, reminders, make_slot, gateway, session_factory, delivery_failure):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        gateway.fail_with = delivery_failure

        delivered = reminders.deliver(ReminderJob(reservation.id, datetime.now(TOKYO), MONDAY))

        assert delivered is False
        assert log_statuses(session_factory, reservation.id) == ["failed"]
        with unit_of_work(session_factory) as session:
            log = session.execute(select(NotificationLog)).scalar_one()
            assert "rejected" in log.error_message


class TestFinishFailures:
    """Test marking a delivered reminder as sent when the store is flaky."""

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(ReminderScheduler._finish.retry, "sleep", lambda seconds: None)

    @pytest.fixture
    def failing_finish(self, monkeypatch):
        """Fail the next ``failures["left"]`` finish_reminder units of work."""
        failures = {"left": 0}
        real_unit_of_work = reminder_scheduler.unit_of_work

        @contextmanager
        def flaky_unit_of_work(session_factory, operation="unit_of_work"):
            if operation == "finish_reminder" and failures["left"]:
                failures["left"] -= 1
                raise PersistenceError("database is locked", operation=operation)
            with real_unit_of_work(session_factory, operation) as session:
                yield session

        monkeypatch.setattr(reminder_scheduler, "unit_of_work", flaky_unit_of_work)
        return failures

    @pytest.fixture
    def critical_logs(self):
        records = []
        sink_id = logger.add(lambda message: records.append(message.record["message"]), level="CRITICAL")
        yield records
        logger.remove(sink_id)

    def test_transient_failure_retried(self, ledger, reminders, make_slot, gateway, session_factory, failing_finish):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        failing_finish["left"] = 2

        assert reminders.deliver(ReminderJob(reservation.id, datetime.now(TOKYO), MONDAY)) is True

        assert failing_finish["left"] == 0
        assert log_statuses(session_factory, reservation.id) == ["sent"]

    def test_unrecorded_send_is_critical(
        self, ledger, reminders, make_slot, gateway, session_factory, failing_finish, critical_logs
    ):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        failing_finish["left"] = 3

        assert reminders.deliver(ReminderJob(reservation.id, datetime.now(TOKYO), MONDAY)) is True

        assert len(gateway.pushed) == 1
        assert log_statuses(session_factory, reservation.id) == ["pending"]
        assert len(critical_logs) == 1
        assert reservation.id in critical_logs[0]


class TestRecoverySweep:
    """Test the durable backstop."""

    def test_sweep_delivers_lost_timer_once(self, ledger, reminders, make_slot, job_runner, gateway, clock):
        make_slot(MONDAY, 18)
        book(ledger)
        job_runner.shutdown()
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        assert reminders.run_recovery_sweep() == 1
        assert reminders.run_recovery_sweep() == 0
        assert len(gateway.pushed) == 1

    def test_timer_and_sweep_send_once(self, ledger, reminders, make_slot, job_runner, gateway, session_factory, clock):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        job_runner.run_due()
        reminders.run_recovery_sweep()

        assert len(gateway.pushed) == 1
        assert log_statuses(session_factory, reservation.id) == ["sent"]

    def test_sweep_respects_inflight_claim(self, ledger, reminders, make_slot, gateway, session_factory, clock):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        add_claim(session_factory, reservation.id)
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        assert reminders.run_recovery_sweep() == 0
        assert gateway.pushed == []
        assert log_statuses(session_factory, reservation.id) == ["pending"]

    def test_sweep_releases_stale_claim(self, ledger, reminders, make_slot, gateway, session_factory, clock):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        add_claim(session_factory, reservation.id, created_at=utcnow() - timedelta(hours=1))
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        assert reminders.run_recovery_sweep() == 1
        assert log_statuses(session_factory, reservation.id) == ["failed", "sent"]

    def test_sweep_retries_failed_delivery(self, ledger, reminders, make_slot, job_runner, gateway, session_factory, clock, delivery_failure):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))
        gateway.fail_with = delivery_failure
        job_runner.run_due()

        gateway.fail_with = None
        assert reminders.run_recovery_sweep() == 1
        assert log_statuses(session_factory, reservation.id) == ["failed", "sent"]

    def test_sweep_skips_cancelled(self, ledger, reminders, make_slot, gateway, clock):
        make_slot(MONDAY, 18)
        reservation = book(ledger)
        ledger.cancel_reservation(reservation.id)
        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))

        assert reminders.run_recovery_sweep() == 0
        assert gateway.pushed == []

    def test_sweep_ignores_later_dates(self, ledger, reminders, make_slot, gateway):
        make_slot(WEDNESDAY, 18)
        book(ledger, day=WEDNESDAY)

        assert reminders.run_recovery_sweep() == 0

    def test_update_past_fire_time_then_next_day_sweep(self, ledger, reminders, make_slot, job_runner, gateway, clock):
        """Moving into a date whose reminder time passed registers nothing; the next sweep delivers."""
        make_slot(WEDNESDAY, 18)
        make_slot(SUNDAY, 18)
        clock.set(datetime(2024, 6, 8, 11, 0, tzinfo=TOKYO))
        reservation = book(ledger, day=WEDNESDAY)
        assert reservation.id in job_runner.jobs

        ledger.update_reservation(reservation.id, new_date=SUNDAY)
        assert job_runner.pending() == []

        clock.set(datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO))
        assert reminders.run_recovery_sweep() == 1
        assert reminders.run_recovery_sweep() == 0
        assert len(gateway.pushed) == 1
