"""
Scheduling package - deferred reminders and recurring background tasks.
"""
from .job_runner import JobRunner, ThreadTimerRunner, RecurringTask
from .reminder_scheduler import ReminderJob, ReminderScheduler, REMINDER
from .reminder_worker import ReminderWorker, next_daily_run

__all__ = [
    "JobRunner",
    "ThreadTimerRunner",
    "RecurringTask",
    "ReminderJob",
    "ReminderScheduler",
    "REMINDER",
    "ReminderWorker",
    "next_daily_run",
]
