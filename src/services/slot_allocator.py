"""
SlotAllocator - atomic capacity accounting for time slots.

Every change to ``TimeSlot.available`` goes through one conditional UPDATE
statement, so the database row itself is the compare-and-swap primitive and
no application lock is needed:

    reserve:  available = available - qty   WHERE available >= qty
    release:  available = min(capacity, available + qty)
"""
from datetime import date, time
from typing import Optional

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from models.database import TimeSlot


class SlotAllocator:
    """
    Owns the per-slot capacity counters.

    The allocator works inside the caller's session so its updates commit or
    roll back together with the rest of the unit of work.
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session of the current unit of work
        """
        self.session = session

    def find_slot(self, slot_date: date, start_time: time) -> Optional[TimeSlot]:
        """Return the slot for a date and start time, or None."""
        return self.session.execute(
            select(TimeSlot).where(
                TimeSlot.slot_date == slot_date,
                TimeSlot.start_time == start_time,
            )
        ).scalar_one_or_none()

    def reserve(self, slot_id: int, qty: int) -> bool:
        """
        Take ``qty`` seats from the slot if at least that many remain.

        Args:
            slot_id: Slot primary key
            qty: Number of guests to admit

        Returns:
            True if the decrement happened, False if capacity was insufficient
            (or the slot does not exist)
        """
        if qty < 1:
            raise ValueError("qty must be at least 1")

        result = self.session.execute(
            update(TimeSlot)
            .where(TimeSlot.id == slot_id, TimeSlot.available >= qty)
            .values(available=TimeSlot.available - qty)
            .execution_options(synchronize_session=False)
        )
        reserved = result.rowcount > 0
        self._expire(slot_id)

        if reserved:
            logger.debug(f"Reserved {qty} seats on slot {slot_id}")
        else:
            logger.info(f"Reserve of {qty} seats on slot {slot_id} rejected: insufficient capacity")
        return reserved

    def release(self, slot_id: int, qty: int) -> bool:
        """
        Return ``qty`` seats to the slot, never exceeding its capacity.

        The clamp makes a repeated release (e.g. a retried compensation)
        harmless.

        Returns:
            True if the slot exists and was updated
        """
        if qty < 1:
            raise ValueError("qty must be at least 1")

        result = self.session.execute(
            update(TimeSlot)
            .where(TimeSlot.id == slot_id)
            .values(
                available=case(
                    (TimeSlot.available + qty > TimeSlot.capacity, TimeSlot.capacity),
                    else_=TimeSlot.available + qty,
                )
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount > 0
        self._expire(slot_id)

        if released:
            logger.debug(f"Released {qty} seats on slot {slot_id}")
        else:
            logger.warning(f"Release of {qty} seats on slot {slot_id} matched no row")
        return released

    def is_available(self, slot_date: date, start_time: time, qty: int) -> bool:
        """
        Read-only capacity check.

        A hint only: a concurrent reserve may take the seats before this
        caller's own reserve runs, so ``reserve`` stays authoritative.
        """
        available = self.session.execute(
            select(TimeSlot.available).where(
                TimeSlot.slot_date == slot_date,
                TimeSlot.start_time == start_time,
            )
        ).scalar_one_or_none()

        if available is None:
            return False
        return available >= qty

    def remaining(self, slot_id: int) -> Optional[int]:
        """Current available count straight from the database."""
        return self.session.execute(
            select(TimeSlot.available).where(TimeSlot.id == slot_id)
        ).scalar_one_or_none()

    def _expire(self, slot_id: int) -> None:
        # Drop any cached TimeSlot so later reads see the updated counter
        for obj in list(self.session.identity_map.values()):
            if isinstance(obj, TimeSlot) and obj.id == slot_id:
                self.session.expire(obj)
