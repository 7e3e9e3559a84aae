"""
Background worker running the daily reminder sweep and session cleanup.
"""
from datetime import datetime, time, timedelta
from typing import Optional

from loguru import logger

from conversation.session_store import SessionStore
from services.business_calendar import BusinessCalendar

from .job_runner import RecurringTask
from .reminder_scheduler import ReminderScheduler


def next_daily_run(calendar: BusinessCalendar, hour: int, now: datetime) -> datetime:
    """Next occurrence of ``hour``:00 in the business timezone strictly after ``now``."""
    local_now = now.astimezone(calendar.tz)
    candidate = calendar.combine(local_now.date(), time(hour))
    if candidate <= local_now:
        candidate = calendar.combine(local_now.date() + timedelta(days=1), time(hour))
    return candidate


class ReminderWorker:
    """
    Owns the recurring tasks around reminders.

    - the recovery sweep, daily at the reminder hour (business timezone)
    - the purge of expired booking sessions, at a fixed interval
    """

    def __init__(
        self,
        scheduler: ReminderScheduler,
        session_store: Optional[SessionStore] = None,
        cleanup_interval_seconds: Optional[int] = None,
        run_on_start: bool = True,
    ):
        self.scheduler = scheduler
        self.calendar = scheduler.calendar
        self.reminder_hour = scheduler.settings.reminder_hour
        self.run_on_start = run_on_start

        self.sweep_task = RecurringTask(
            "reminder-sweep",
            scheduler.run_recovery_sweep,
            lambda now: next_daily_run(self.calendar, self.reminder_hour, now),
            clock=self.calendar.now,
        )

        self.cleanup_task = None
        if session_store is not None:
            interval = cleanup_interval_seconds or scheduler.settings.session_cleanup_interval_seconds
            self.cleanup_task = RecurringTask.every(
                "session-cleanup",
                session_store.purge_expired,
                interval,
                clock=self.calendar.now,
            )

    def start(self) -> None:
        """
        Start the recurring tasks.

        When started after today's reminder hour, one sweep runs right away
        so reminders lost with the previous process go out without waiting
        for tomorrow.
        """
        if self.run_on_start and self.calendar.now().hour >= self.reminder_hour:
            logger.info("Running catch-up reminder sweep on start")
            self.sweep_task.run_once()

        self.sweep_task.start()
        if self.cleanup_task is not None:
            self.cleanup_task.start()
        logger.info(f"Reminder worker started, daily sweep at {self.reminder_hour:02d}:00 {self.calendar.tz}")

    def stop(self) -> None:
        """Stop the recurring tasks and discard pending reminder timers."""
        self.sweep_task.stop()
        if self.cleanup_task is not None:
            self.cleanup_task.stop()
        self.scheduler.shutdown()
        logger.info("Reminder worker stopped")
