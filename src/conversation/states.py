"""
Booking session state definitions.

This module defines the states of the booking dialogue and which moves
between them are allowed.
"""

from enum import Enum
from typing import Dict, FrozenSet


class SessionState(str, Enum):
    """
    Enum representing the states of a booking session.

    The dialogue normally flows:
    selecting_date -> selecting_time -> confirming -> (session deleted)

    A "back"/"restart" action returns to selecting_date. EDITING is the entry
    state of a flow that modifies an existing reservation; it continues
    through selecting_time and confirming like a new booking.
    """

    SELECTING_DATE = "selecting_date"
    """Waiting for the user to pick a date."""

    SELECTING_TIME = "selecting_time"
    """Date chosen; waiting for a start time."""

    CONFIRMING = "confirming"
    """Date and time chosen; collecting guest count and special requests."""

    EDITING = "editing"
    """Modifying an existing reservation; waiting for the new date."""

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value

    def can_transition_to(self, target: "SessionState") -> bool:
        # Staying put is always allowed (re-picking a date, adding requests)
        return target == self or target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.SELECTING_DATE: frozenset({SessionState.SELECTING_TIME}),
    SessionState.EDITING: frozenset({SessionState.SELECTING_TIME}),
    SessionState.SELECTING_TIME: frozenset({
        SessionState.CONFIRMING,
        SessionState.SELECTING_DATE,
        SessionState.EDITING,
    }),
    SessionState.CONFIRMING: frozenset({
        SessionState.SELECTING_TIME,
        SessionState.SELECTING_DATE,
        SessionState.EDITING,
    }),
}
