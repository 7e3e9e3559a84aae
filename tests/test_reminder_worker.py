"""
Tests for the background jobs: timers, recurring tasks and the reminder worker.
"""
import threading
from datetime import datetime, time, timedelta, timezone

from conversation.session_store import InMemorySessionStore
from scheduling.job_runner import RecurringTask, ThreadTimerRunner
from scheduling.reminder_worker import ReminderWorker, next_daily_run

from conftest import SUNDAY, TOKYO


class TestNextDailyRun:
    """Test daily run computation."""

    def test_later_today(self, calendar):
        now = datetime(2024, 6, 8, 9, 0, tzinfo=TOKYO)
        assert next_daily_run(calendar, 10, now) == datetime(2024, 6, 8, 10, 0, tzinfo=TOKYO)

    def test_exactly_at_hour_moves_to_tomorrow(self, calendar):
        now = datetime(2024, 6, 8, 10, 0, tzinfo=TOKYO)
        assert next_daily_run(calendar, 10, now) == datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO)

    def test_uses_business_timezone(self, calendar):
        # 2024-06-08 02:00 UTC is 11:00 in Tokyo
        now = datetime(2024, 6, 8, 2, 0, tzinfo=timezone.utc)
        assert next_daily_run(calendar, 10, now) == datetime(2024, 6, 9, 10, 0, tzinfo=TOKYO)


class TestThreadTimerRunner:
    """Test the in-process timer registry."""

    def test_due_job_runs(self):
        runner = ThreadTimerRunner()
        fired = threading.Event()

        runner.schedule("r1", datetime.now(timezone.utc), fired.set)

        assert fired.wait(timeout=2)
        runner.shutdown()

    def test_cancel_pending_job(self):
        runner = ThreadTimerRunner()
        runner.schedule("r1", datetime.now(timezone.utc) + timedelta(hours=1), lambda: None)

        assert runner.pending() == ["r1"]
        assert runner.cancel("r1") is True
        assert runner.cancel("r1") is False
        assert runner.pending() == []

    def test_reschedule_replaces_job(self):
        runner = ThreadTimerRunner()
        later = datetime.now(timezone.utc) + timedelta(hours=1)

        runner.schedule("r1", later, lambda: None)
        runner.schedule("r1", later + timedelta(hours=1), lambda: None)

        assert runner.pending() == ["r1"]
        runner.shutdown()
        assert runner.pending() == []

    def test_failing_job_is_contained(self):
        runner = ThreadTimerRunner()
        done = threading.Event()

        def boom():
            done.set()
            raise RuntimeError("job failed")

        runner.schedule("r1", datetime.now(timezone.utc), boom)

        assert done.wait(timeout=2)
        runner.shutdown()


class TestRecurringTask:
    """Test the recurring background loop."""

    def test_runs_repeatedly_until_stopped(self):
        calls = []
        ran_twice = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 2:
                ran_twice.set()

        task = RecurringTask.every("tick", tick, 0.01)
        task.start()

        assert ran_twice.wait(timeout=2)
        task.stop()
        assert not task.running

    def test_failing_run_keeps_task_alive(self):
        calls = []
        recovered = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run fails")
            recovered.set()

        task = RecurringTask.every("flaky", flaky, 0.01)
        task.start()

        assert recovered.wait(timeout=2)
        task.stop()


class TestReminderWorker:
    """Test worker start/stop behaviour."""

    def test_start_and_stop(self, reminders, job_runner, clock):
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        worker = ReminderWorker(reminders, session_store=store, run_on_start=False)

        worker.start()
        assert worker.sweep_task.running
        assert worker.cleanup_task.running

        worker.stop()
        assert not worker.sweep_task.running
        assert not worker.cleanup_task.running
        assert job_runner.was_shut_down

    def test_catch_up_sweep_after_reminder_hour(self, ledger, reminders, make_slot, job_runner, gateway, clock):
        make_slot(SUNDAY, 18)
        ledger.create_reservation("U1", "Alice", SUNDAY, time(18), 2)
        # Simulate a restart that lost the timer after its fire time
        job_runner.shutdown()
        clock.set(datetime(2024, 6, 8, 11, 0, tzinfo=TOKYO))

        worker = ReminderWorker(reminders)
        worker.start()
        worker.stop()

        assert len(gateway.pushed) == 1

    def test_no_catch_up_before_reminder_hour(self, ledger, reminders, make_slot, job_runner, gateway):
        make_slot(SUNDAY, 18)
        ledger.create_reservation("U1", "Alice", SUNDAY, time(18), 2)
        job_runner.shutdown()

        worker = ReminderWorker(reminders)
        worker.start()
        worker.stop()

        assert gateway.pushed == []
