"""
Booking session model holding the in-progress reservation draft.
"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .states import SessionState


class BookingSession(BaseModel):
    """
    Per-user booking session.

    Draft fields are filled in as the dialogue moves forward; a restart
    clears them without changing the session's identity.

    Attributes:
        user_id: External channel identity of the owner (the session key)
        state: Current dialogue state
        selected_date: Chosen visit date
        selected_time: Chosen start time
        guest_count: Chosen number of guests
        special_requests: Free text given while confirming
        reservation_id: Reservation being modified (editing flow only)
        expires_at: Absolute, timezone-aware expiry
    """

    user_id: str = Field(..., min_length=1)
    state: SessionState = SessionState.SELECTING_DATE
    selected_date: Optional[date] = None
    selected_time: Optional[time] = None
    guest_count: Optional[int] = Field(default=None, ge=1)
    special_requests: Optional[str] = None
    reservation_id: Optional[str] = None
    expires_at: datetime

    @field_validator("special_requests")
    @classmethod
    def blank_requests_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def is_editing(self) -> bool:
        return self.reservation_id is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_complete(self) -> bool:
        """Whether the draft holds everything a booking needs."""
        return (
            self.selected_date is not None
            and self.selected_time is not None
            and self.guest_count is not None
        )

    def missing_fields(self) -> list:
        missing = []
        if self.selected_date is None:
            missing.append("selected_date")
        if self.selected_time is None:
            missing.append("selected_time")
        if self.guest_count is None:
            missing.append("guest_count")
        return missing
