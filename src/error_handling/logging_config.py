"""
Logging setup for the reservation bot.

loguru writes to stderr and, optionally, to dated files under ``log_dir``:
- the general application log
- an errors-only log
- audit logs for reservations and reminders, selected by the ``category``
  bound on each record

Events are logged as one pipe-separated line, e.g.
``BOOKING CREATED | user=U1 | reservation_id=... | details={...}``.
"""
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

FORMATS = {
    "simple": "<level>{level: <8}</level> | <level>{message}</level>",
    "detailed": (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    ),
}

# file name prefix -> category kept in that file
AUDIT_SINKS = {
    "bookings": "BOOKING",
    "reminders": "NOTIFICATION",
}


def _category_filter(category: str):
    return lambda record: record["extra"].get("category") == category


def configure_logging(
    log_level: str = "INFO",
    log_to_file: bool = True,
    log_dir: str = "logs",
    rotation: str = "100 MB",
    retention: str = "30 days",
    format_type: str = "detailed"
) -> None:
    """
    Replace loguru's default handler with the bot's sinks.

    Args:
        log_level: Minimum level for the console and application log
        log_to_file: Also write the file sinks
        log_dir: Directory for log files (created if missing)
        rotation: Rotation policy of the application and error logs
        retention: Retention of the application and error logs
        format_type: "simple" or "detailed"
    """
    fmt = FORMATS.get(format_type, FORMATS["detailed"])

    logger.remove()
    logger.add(sys.stderr, format=fmt, level=log_level, colorize=True, backtrace=True, diagnose=False)

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_options = {"format": fmt, "compression": "zip", "enqueue": True}

        logger.add(
            log_path / "reservation_bot_{time:YYYY-MM-DD}.log",
            level=log_level,
            rotation=rotation,
            retention=retention,
            **file_options,
        )
        logger.add(
            log_path / "errors_{time:YYYY-MM-DD}.log",
            level="ERROR",
            rotation=rotation,
            retention=retention,
            **file_options,
        )
        # Audit logs outlive the application log
        for prefix, category in AUDIT_SINKS.items():
            logger.add(
                log_path / f"{prefix}_{{time:YYYY-MM-DD}}.log",
                level="INFO",
                rotation="1 day",
                retention="1 year",
                filter=_category_filter(category),
                **file_options,
            )

    logger.info(f"Logging configured: level={log_level}, files={log_to_file}, format={format_type}")


def _log_event(category: str, event_type: str, level: str = "INFO", **fields: Any) -> None:
    parts = [f"{category} {event_type}"]
    parts.extend(f"{key}={value}" for key, value in fields.items())
    logger.bind(category=category).log(level, " | ".join(parts))


def log_booking_event(
    event_type: str,
    user_id: Optional[str] = None,
    reservation_id: Optional[Any] = None,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """
    Audit a reservation change: CREATED, UPDATED or CANCELLED.
    """
    _log_event("BOOKING", event_type, user=user_id, reservation_id=reservation_id, details=details or {})


def log_conversation_event(
    event_type: str,
    user_id: Optional[str] = None,
    state: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> None:
    _log_event("CONVERSATION", event_type, user=user_id, state=state, details=details or {})


def log_notification_event(
    event_type: str,
    reservation_id: Optional[Any] = None,
    notification_type: str = "reminder",
    details: Optional[Dict[str, Any]] = None
) -> None:
    """
    Audit a reminder step: SCHEDULED, SENT, SKIPPED or FAILED.

    FAILED is logged as a warning; the sweep retries it.
    """
    level = "WARNING" if event_type == "FAILED" else "INFO"
    _log_event(
        "NOTIFICATION",
        event_type,
        level,
        type=notification_type,
        reservation_id=reservation_id,
        details=details or {},
    )


def log_error_with_context(
    error: Exception,
    context: Dict[str, Any],
    severity: str = "ERROR"
) -> None:
    """
    Log an exception together with the operation context it happened in.

    ERROR and CRITICAL records carry the traceback.

    Args:
        error: The exception
        context: Operation name and identifiers (user, reservation, slot)
        severity: WARNING, ERROR or CRITICAL
    """
    bound = logger.bind(category="ERROR", **context)
    message = f"{type(error).__name__}: {error} | context={context}"

    if severity in ("ERROR", "CRITICAL"):
        bound.opt(exception=error).log(severity, message)
    else:
        bound.log(severity, message)
