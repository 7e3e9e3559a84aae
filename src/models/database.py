"""
SQLAlchemy database models and session management for the reservation bot.
"""
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from loguru import logger
from sqlalchemy import (
    create_engine,
    event,
    text,
    Column,
    Integer,
    String,
    Text,
    Date,
    Time,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, relationship, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from error_handling.exceptions import BookingSystemError, PersistenceError

# Create declarative base
Base = declarative_base()

# Database engine and session factory (initialized by init_db)
engine: Engine | None = None
SessionLocal: sessionmaker | None = None

RESERVATION_STATUSES = ("confirmed", "cancelled", "completed")
NOTIFICATION_STATUSES = ("sent", "failed", "pending")


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_reservation_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    A channel user, keyed by the messaging channel's own identity.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    reservations = relationship("Reservation", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, external_id='{self.external_id}', display_name='{self.display_name}')>"


class TimeSlot(Base):
    """
    TimeSlot model representing a bookable hour with capacity tracking.

    ``available`` is only ever changed through SlotAllocator's conditional
    updates.
    """
    __tablename__ = "time_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    capacity = Column(Integer, nullable=False)
    available = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("slot_date", "start_time", name="uq_time_slot_date_start"),
        CheckConstraint("capacity >= 1", name="ck_time_slot_capacity_positive"),
        CheckConstraint(
            "available >= 0 AND available <= capacity",
            name="ck_time_slot_available_range",
        ),
        Index("ix_time_slot_date", "slot_date"),
    )

    def is_available(self, guest_count: int) -> bool:
        """
        Check if the slot can admit the requested number of guests.

        Args:
            guest_count: Number of guests

        Returns:
            True if there's enough remaining capacity
        """
        return self.available >= guest_count

    def __repr__(self) -> str:
        return (
            f"<TimeSlot(id={self.id}, slot_date={self.slot_date}, start_time={self.start_time}, "
            f"capacity={self.capacity}, available={self.available})>"
        )


class Reservation(Base):
    """
    Reservation model. Rows are never deleted; cancellation flips the status.
    """
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=_new_reservation_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reservation_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    guest_count = Column(Integer, nullable=False)
    status = Column(
        Enum(*RESERVATION_STATUSES, name="reservation_status"),
        nullable=False,
        default="confirmed",
    )
    special_requests = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="reservations")

    __table_args__ = (
        CheckConstraint("guest_count >= 1", name="ck_reservation_guest_count"),
        # One confirmed reservation per user and start time
        Index(
            "uq_reservation_confirmed_user_slot",
            "user_id",
            "reservation_date",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
        Index("ix_reservation_date_status", "reservation_date", "status"),
    )

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, user_id={self.user_id}, date={self.reservation_date}, "
            f"start_time={self.start_time}, guest_count={self.guest_count}, status='{self.status}')>"
        )


class NotificationLog(Base):
    """
    Append-only record of notification attempts.

    A ``pending`` row is a delivery claim; at most one ``pending`` or ``sent``
    row may exist per reservation and notification type.
    """
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=False)
    notification_type = Column(String(32), nullable=False)
    status = Column(
        Enum(*NOTIFICATION_STATUSES, name="notification_status"),
        nullable=False,
    )
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_notification_claim",
            "reservation_id",
            "notification_type",
            unique=True,
            sqlite_where=text("status IN ('pending', 'sent')"),
            postgresql_where=text("status IN ('pending', 'sent')"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(id={self.id}, reservation_id={self.reservation_id}, "
            f"type='{self.notification_type}', status='{self.status}')>"
        )


def _enable_sqlite_savepoints(sqlite_engine: Engine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself so pysqlite honours SAVEPOINT.

    Without this pysqlite defers BEGIN and releases savepoints implicitly.
    """

    @event.listens_for(sqlite_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine with pool settings suited to the backend.

    In-memory SQLite gets a single shared connection so that worker threads
    (timers, sweeps) see the same database as the request path.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_engine(database_url, echo=False, **kwargs)
        _enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
    )


def create_session_factory(bind: Engine) -> sessionmaker:
    """Session factory used by every unit of work."""
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(database_url: str | None = None) -> Engine:
    """
    Initialize database engine and session factory.

    Args:
        database_url: Optional database connection string. Defaults to the
                     configured DATABASE_URL.

    Returns:
        SQLAlchemy Engine instance
    """
    global engine, SessionLocal

    if database_url is None:
        from config import get_settings
        database_url = get_settings().database_url

    engine = create_db_engine(database_url)
    SessionLocal = create_session_factory(engine)

    return engine


@retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)
def init_db_with_retry(database_url: Optional[str] = None) -> Engine:
    """
    Initialize database and verify the connection, retrying while the
    database is still starting up.

    Raises:
        OperationalError: If the database stays unreachable
    """
    db_engine = init_db(database_url)
    with db_engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Database initialized successfully")
    return db_engine


def create_tables(bind: Engine | None = None) -> None:
    """
    Create all tables in the database.

    Raises:
        RuntimeError: If database engine is not initialized
    """
    target = bind or engine
    if target is None:
        raise RuntimeError("Database engine not initialized. Call init_db() first.")

    Base.metadata.create_all(bind=target)


@contextmanager
def unit_of_work(session_factory: sessionmaker, operation: str = "unit_of_work") -> Generator[Session, None, None]:
    """
    Atomic unit of work: commit on success, roll back on any error.

    Store failures (lost connection, lock timeouts) surface as
    PersistenceError; integrity violations and domain errors propagate
    unchanged so callers can map them.

    Args:
        session_factory: sessionmaker to open the session from
        operation: Name used in logs and PersistenceError context

    Yields:
        SQLAlchemy Session instance
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except (BookingSystemError, IntegrityError):
        session.rollback()
        raise
    except (OperationalError, DBAPIError) as e:
        session.rollback()
        logger.error(f"Database failure during {operation}: {e}")
        raise PersistenceError(
            f"Database operation '{operation}' failed: {e}",
            operation=operation,
            original_error=e,
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions on the global session factory.

    Example:
        with get_db_session() as session:
            slot = session.query(TimeSlot).first()

    Raises:
        RuntimeError: If session factory is not initialized
    """
    if SessionLocal is None:
        raise RuntimeError("Session factory not initialized. Call init_db() first.")

    with unit_of_work(SessionLocal, operation="get_db_session") as session:
        yield session
