"""
Services package - Booking rules, capacity accounting and the reservation ledger.
"""
from .business_calendar import BusinessCalendar
from .slot_allocator import SlotAllocator
from .reservation_ledger import ReservationLedger
from .slot_provisioning import generate_time_slots, slot_start_times
from .users import find_or_create_user, find_user

__all__ = [
    "BusinessCalendar",
    "SlotAllocator",
    "ReservationLedger",
    "generate_time_slots",
    "slot_start_times",
    "find_or_create_user",
    "find_user",
]
