"""
Centralized error handling utilities for the reservation bot.

This module provides utilities for:
- Error logging with a severity chosen from the error category
- Turning any exception into a message that can be shown to the user
"""
from typing import Any, Dict, Optional

from loguru import logger

from .exceptions import (
    BookingSystemError,
    CapacityError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from .logging_config import log_error_with_context

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."


def severity_for(error: Exception) -> str:
    """
    Pick the log severity for an error.

    Business rule violations are expected outcomes and only warrant WARNING;
    store failures are ERROR; broken capacity accounting is CRITICAL.
    """
    if isinstance(error, ConsistencyError):
        return "CRITICAL"
    if isinstance(error, (ValidationError, CapacityError, ConflictError, NotFoundError)):
        return "WARNING"
    return "ERROR"


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Log an error with context at the severity its category calls for.

    Args:
        error: Exception that occurred
        context: Extra key/value pairs (user, reservation, state)
    """
    context = dict(context or {})
    if isinstance(error, BookingSystemError):
        context.setdefault("error_context", error.context)
    log_error_with_context(error, context, severity=severity_for(error))


def user_message_for(error: Exception) -> str:
    """
    Return the text to show the user for an error.

    Args:
        error: Any exception raised while handling a user request

    Returns:
        The error's own user message for known errors, a generic text otherwise
    """
    if isinstance(error, BookingSystemError):
        return error.user_message
    logger.debug(f"No user message for {type(error).__name__}, using generic text")
    return GENERIC_ERROR_MESSAGE
