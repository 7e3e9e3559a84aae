"""
Deferred and recurring job execution.

JobRunner is a keyed registry of one-shot jobs; ThreadTimerRunner backs it
with ``threading.Timer`` objects, which do not survive a process restart.
RecurringTask runs a callable on a background thread at computed times
(daily sweeps, session cleanup).
"""
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from error_handling.handlers import log_error

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner(ABC):
    """Keyed one-shot job registry. Scheduling a key again replaces the old job."""

    @abstractmethod
    def schedule(self, key: str, fire_at: datetime, fn: Callable[[], None]) -> None:
        """Run ``fn`` once at ``fire_at`` (aware datetime)."""

    @abstractmethod
    def cancel(self, key: str) -> bool:
        """Discard a pending job; True if one was pending."""

    @abstractmethod
    def pending(self) -> List[str]:
        """Keys of the jobs that have not fired yet."""

    @abstractmethod
    def shutdown(self) -> None:
        """Discard every pending job."""


class ThreadTimerRunner(JobRunner):
    """
    In-process runner with one daemon timer thread per pending job.

    Attributes:
        clock: Returns the current aware datetime
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or _utc_now
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: str, fire_at: datetime, fn: Callable[[], None]) -> None:
        delay = max(0.0, (fire_at - self.clock()).total_seconds())
        timer = threading.Timer(delay, self._run, args=(key, fn))
        timer.daemon = True
        timer.name = f"job-{key}"

        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()
        logger.debug(f"Job {key} scheduled in {delay:.0f}s")

    def _run(self, key: str, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._timers.get(key) is threading.current_thread():
                del self._timers[key]
        try:
            fn()
        except Exception as e:
            # Worker thread boundary: nothing above us to report to
            log_error(e, {"operation": "run_job", "job": key})

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info(f"Job runner stopped, {len(timers)} pending jobs discarded")


class RecurringTask:
    """
    Runs ``fn`` on a background thread each time ``next_run`` says so.

    ``next_run(now)`` returns the next aware datetime at which to run.
    A failing run is logged and the task keeps going.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], object],
        next_run: Callable[[datetime], datetime],
        clock: Optional[Clock] = None,
    ):
        self.name = name
        self.fn = fn
        self.next_run = next_run
        self.clock = clock or _utc_now
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def every(cls, name: str, fn: Callable[[], object], interval_seconds: float, clock: Optional[Clock] = None):
        step = timedelta(seconds=interval_seconds)
        return cls(name, fn, lambda now: now + step, clock)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        logger.info(f"Recurring task '{self.name}' started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info(f"Recurring task '{self.name}' stopped")

    def run_once(self) -> None:
        try:
            self.fn()
        except Exception as e:
            log_error(e, {"operation": "recurring_task", "task": self.name})

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = self.clock()
            fire_at = self.next_run(now)
            wait_seconds = max(0.0, (fire_at - now).total_seconds())
            logger.debug(f"Task '{self.name}' next run at {fire_at.isoformat()}")
            if self._stop.wait(wait_seconds):
                break
            self.run_once()
