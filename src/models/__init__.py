"""
Models package - SQLAlchemy ORM models and Pydantic schemas.
"""
from .database import (
    Base,
    User,
    TimeSlot,
    Reservation,
    NotificationLog,
    init_db,
    init_db_with_retry,
    create_tables,
    create_db_engine,
    create_session_factory,
    unit_of_work,
    get_db_session,
    utcnow,
)

from .schemas import (
    TimeSlotInfo,
    InboundEvent,
)

__all__ = [
    # Database models
    "Base",
    "User",
    "TimeSlot",
    "Reservation",
    "NotificationLog",
    # Database utilities
    "init_db",
    "init_db_with_retry",
    "create_tables",
    "create_db_engine",
    "create_session_factory",
    "unit_of_work",
    "get_db_session",
    "utcnow",
    # Pydantic schemas
    "TimeSlotInfo",
    "InboundEvent",
]
