"""
Main entry point for the slot reservation bot.

Wires the database, ledger, dialogue and reminder worker together and runs
a console channel: each input line is an inbound event from one local user.
Lines containing ``action=`` are postbacks in query-string form, e.g.

    action=select_date&date=2024-06-12

anything else is a text message.
"""
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import parse_qsl

from dotenv import load_dotenv
from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from config import Settings, get_settings
from conversation import ConversationSession, EventDispatcher, InMemorySessionStore
from error_handling.logging_config import configure_logging
from models.database import create_session_factory, create_tables, init_db_with_retry
from models.schemas import InboundEvent
from notifications.gateway import ConsoleGateway, MessagingGateway
from scheduling import ReminderScheduler, ReminderWorker, ThreadTimerRunner
from services import BusinessCalendar, ReservationLedger, generate_time_slots

CONSOLE_USER = "console-user"


@dataclass
class Application:
    """All long-lived components of one running process."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    calendar: BusinessCalendar
    ledger: ReservationLedger
    reminders: ReminderScheduler
    sessions: InMemorySessionStore
    conversation: ConversationSession
    dispatcher: EventDispatcher
    worker: ReminderWorker

    def start(self) -> None:
        created = generate_time_slots(self.session_factory, settings=self.settings, calendar=self.calendar)
        logger.info(f"Slot provisioning created {created} slots")
        self.worker.start()

    def shutdown(self) -> None:
        self.worker.stop()
        self.engine.dispose()
        logger.info("Application shut down")


def build_application(
    settings: Optional[Settings] = None,
    gateway: Optional[MessagingGateway] = None,
    faq_responder: Optional[Callable[[str], Optional[str]]] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Application:
    """
    Create and connect every component.

    Args:
        settings: Application settings (defaults to global settings)
        gateway: Messaging gateway (defaults to ConsoleGateway)
        faq_responder: Optional free-text question answerer
        clock: Optional aware-datetime clock shared by every component

    Raises:
        OperationalError: If the database stays unreachable
    """
    settings = settings or get_settings()
    gateway = gateway or ConsoleGateway()

    engine = init_db_with_retry(settings.database_url)
    create_tables(engine)
    session_factory = create_session_factory(engine)

    calendar = BusinessCalendar(settings, clock=clock)
    reminders = ReminderScheduler(
        session_factory,
        gateway,
        ThreadTimerRunner(clock=calendar.now),
        settings=settings,
        calendar=calendar,
    )
    ledger = ReservationLedger(session_factory, settings=settings, calendar=calendar, reminder_scheduler=reminders)
    sessions = InMemorySessionStore(settings.session_ttl_seconds, clock=calendar.now)
    conversation = ConversationSession(sessions, ledger)
    dispatcher = EventDispatcher(conversation, gateway, faq_responder=faq_responder)
    worker = ReminderWorker(reminders, session_store=sessions)

    return Application(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        calendar=calendar,
        ledger=ledger,
        reminders=reminders,
        sessions=sessions,
        conversation=conversation,
        dispatcher=dispatcher,
        worker=worker,
    )


def parse_console_line(line: str, user_identity: str = CONSOLE_USER) -> InboundEvent:
    line = line.strip()
    if "action=" in line:
        return InboundEvent(user_identity=user_identity, kind="postback", payload=dict(parse_qsl(line)))
    return InboundEvent(user_identity=user_identity, kind="text", payload=line)


def _raise_keyboard_interrupt(signum, frame):
    raise KeyboardInterrupt


def main() -> int:
    """
    Main entry point for the reservation bot.
    """
    load_dotenv()
    settings = get_settings()
    configure_logging(
        log_level=settings.log_level,
        log_to_file=settings.log_to_file,
        log_dir=settings.log_dir,
    )

    logger.info("=" * 60)
    logger.info(f"{settings.shop_name} reservation bot")
    logger.info("=" * 60)

    signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)

    try:
        app = build_application(settings)
    except OperationalError as e:
        logger.error(f"Database unavailable: {e}")
        return 2

    try:
        app.start()
        app.dispatcher.handle(InboundEvent(user_identity=CONSOLE_USER, kind="follow"))
        for line in sys.stdin:
            if line.strip():
                app.dispatcher.handle(parse_console_line(line))
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
        return 130
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
