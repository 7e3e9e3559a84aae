"""
ReminderScheduler - one reminder per confirmed reservation, at most once.

Two producers race to deliver each reminder:
- an in-memory timer registered when the reservation is committed
- the daily recovery sweep, which re-derives what is still owed from the
  database after a restart lost the timers

NotificationLog is the single source of truth. Before sending, a delivery
claims the reservation by inserting a ``pending`` row; the partial unique
index on (reservation, type) for ``pending``/``sent`` rows lets only one
claim win. The winner marks its row ``sent`` or ``failed``; a ``failed``
row releases the claim so a later sweep can try again.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import Settings, get_settings
from error_handling.exceptions import PersistenceError
from error_handling.logging_config import log_notification_event
from models.database import NotificationLog, Reservation, unit_of_work, utcnow
from notifications import messages
from notifications.gateway import MessagingGateway, send_direct_with_retry
from services.business_calendar import BusinessCalendar

from .job_runner import JobRunner

REMINDER = "reminder"


@dataclass(frozen=True)
class ReminderJob:
    """A pending reminder: which reservation, for which visit date, and when."""

    reservation_id: str
    fire_at: datetime
    reservation_date: Optional[date] = None


@dataclass(frozen=True)
class _Claim:
    log_id: int
    recipient: str
    text: str


class ReminderScheduler:
    """
    Schedules, delivers and recovers day-before reminders.

    Attributes:
        session_factory: sessionmaker bound to the reservation database
        gateway: Messaging gateway reminders are pushed through
        job_runner: Registry of in-memory one-shot jobs
        calendar: Business calendar (timezone, reminder hour, clock)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: MessagingGateway,
        job_runner: JobRunner,
        settings: Optional[Settings] = None,
        calendar: Optional[BusinessCalendar] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.job_runner = job_runner
        self.settings = settings or get_settings()
        self.calendar = calendar or BusinessCalendar(self.settings)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def schedule(self, reservation: Reservation) -> Optional[datetime]:
        """
        Register the in-memory reminder for a reservation.

        The reminder fires the day before the visit at the reminder hour.
        If that moment has already passed nothing is registered; an earlier
        job for the same reservation is dropped either way.

        Returns:
            The fire time, or None when no timer was registered
        """
        fire_at = self.calendar.reminder_fire_at(reservation.reservation_date)

        if fire_at <= self.calendar.now():
            self.job_runner.cancel(reservation.id)
            logger.debug(f"Reminder time {fire_at.isoformat()} already passed for {reservation.id}")
            return None

        job = ReminderJob(reservation.id, fire_at, reservation.reservation_date)
        self.job_runner.schedule(reservation.id, fire_at, lambda: self.deliver(job))
        log_notification_event(
            "SCHEDULED",
            reservation_id=reservation.id,
            details={"fire_at": fire_at.isoformat()},
        )
        return fire_at

    def unschedule(self, reservation_id: str) -> bool:
        return self.job_runner.cancel(reservation_id)

    def shutdown(self) -> None:
        """Discard pending timers; the next sweep covers anything still owed."""
        self.job_runner.shutdown()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, job: ReminderJob) -> bool:
        """
        Send one reminder if it is still owed and not claimed elsewhere.

        The reservation is re-read at fire time: a reservation cancelled,
        completed or moved to another date since the job was registered is
        skipped.

        Returns:
            True if this call sent the reminder
        """
        try:
            claim = self._claim(job)
        except IntegrityError:
            log_notification_event("SKIPPED", reservation_id=job.reservation_id, details={"reason": "already claimed"})
            return False

        if claim is None:
            return False

        try:
            send_direct_with_retry(self.gateway, claim.recipient, claim.text)
        except Exception as e:
            self._finish(claim.log_id, "failed", str(e))
            log_notification_event("FAILED", reservation_id=job.reservation_id, details={"error": str(e)})
            return False

        try:
            self._finish(claim.log_id, "sent")
        except PersistenceError as e:
            # The pending claim will expire and a later sweep may send a second reminder
            logger.critical(
                f"Reminder for {job.reservation_id} was sent but claim {claim.log_id} "
                f"could not be marked sent: {e.message}"
            )
        log_notification_event("SENT", reservation_id=job.reservation_id)
        return True

    def _claim(self, job: ReminderJob) -> Optional[_Claim]:
        """
        Check the reservation and insert the ``pending`` claim row.

        Raises:
            IntegrityError: another delivery holds or completed the claim
        """
        with unit_of_work(self.session_factory, "claim_reminder") as session:
            reservation = session.get(Reservation, job.reservation_id)

            if reservation is None or reservation.status != "confirmed":
                log_notification_event(
                    "SKIPPED",
                    reservation_id=job.reservation_id,
                    details={"reason": "not confirmed"},
                )
                return None

            if job.reservation_date is not None and reservation.reservation_date != job.reservation_date:
                log_notification_event(
                    "SKIPPED",
                    reservation_id=job.reservation_id,
                    details={"reason": "moved", "now": str(reservation.reservation_date)},
                )
                return None

            log = NotificationLog(
                reservation_id=reservation.id,
                notification_type=REMINDER,
                status="pending",
            )
            session.add(log)
            session.flush()

            return _Claim(
                log_id=log.id,
                recipient=reservation.user.external_id,
                text=messages.reminder_message(reservation, reservation.user.display_name),
            )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(PersistenceError),
        reraise=True,
    )
    def _finish(self, log_id: int, status: str, error_message: Optional[str] = None) -> None:
        with unit_of_work(self.session_factory, "finish_reminder") as session:
            session.execute(
                update(NotificationLog)
                .where(NotificationLog.id == log_id)
                .values(status=status, error_message=error_message, updated_at=utcnow())
            )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def release_stale_claims(self) -> int:
        """
        Mark ``pending`` claims older than the claim timeout as failed.

        A delivery that died between claiming and finishing would otherwise
        block its reminder forever.
        """
        cutoff = utcnow() - timedelta(seconds=self.settings.reminder_claim_timeout_seconds)
        with unit_of_work(self.session_factory, "release_stale_claims") as session:
            result = session.execute(
                update(NotificationLog)
                .where(
                    NotificationLog.status == "pending",
                    NotificationLog.notification_type == REMINDER,
                    NotificationLog.created_at < cutoff,
                )
                .values(status="failed", error_message="claim expired", updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount

        if released:
            logger.warning(f"Released {released} stale reminder claims")
        return released

    def find_unsent(self) -> list:
        """
        Confirmed reservations still owed a reminder.

        Covers tomorrow's visits plus today's visits that have not started,
        so a reservation whose reminder moment passed before a timer could
        be registered is still reminded.
        """
        now = self.calendar.now()
        today, current_time = now.date(), now.time().replace(tzinfo=None)
        tomorrow = today + timedelta(days=1)

        already_sent = exists().where(
            NotificationLog.reservation_id == Reservation.id,
            NotificationLog.notification_type == REMINDER,
            NotificationLog.status == "sent",
        )

        with unit_of_work(self.session_factory, "find_unsent_reminders") as session:
            rows = session.execute(
                select(Reservation.id, Reservation.reservation_date)
                .where(
                    Reservation.status == "confirmed",
                    or_(
                        Reservation.reservation_date == tomorrow,
                        and_(Reservation.reservation_date == today, Reservation.start_time > current_time),
                    ),
                    ~already_sent,
                )
                .order_by(Reservation.reservation_date, Reservation.start_time)
            ).all()

        return [ReminderJob(row.id, now, row.reservation_date) for row in rows]

    def run_recovery_sweep(self) -> int:
        """
        Deliver every reminder that is owed but has no ``sent`` log row.

        Returns:
            Number of reminders sent by this sweep
        """
        self.release_stale_claims()
        jobs = self.find_unsent()
        logger.info(f"Reminder sweep found {len(jobs)} reservations without a sent reminder")

        sent = 0
        for job in jobs:
            try:
                if self.deliver(job):
                    sent += 1
            except Exception as e:
                # One broken reservation must not stop the rest of the sweep
                log_notification_event("FAILED", reservation_id=job.reservation_id, details={"error": str(e)})

        logger.info(f"Reminder sweep sent {sent} of {len(jobs)} reminders")
        return sent
