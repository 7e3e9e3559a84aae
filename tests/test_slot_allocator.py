"""
Tests for SlotAllocator.

Tests cover:
- Conditional reserve never underflows
- Release clamps at capacity
- Availability checks are read-only
- Arbitrary reserve/release sequences keep 0 <= available <= capacity
"""
import random
from datetime import time

import pytest

from models.database import unit_of_work
from services.slot_allocator import SlotAllocator

from conftest import MONDAY


class TestReserve:
    """Test the conditional decrement."""

    def test_reserve_decrements_when_enough_seats(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18)

        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).reserve(slot_id, 3) is True

        assert slot_available(slot_id) == 1

    def test_reserve_rejects_when_insufficient(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18, available=1)

        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).reserve(slot_id, 2) is False

        assert slot_available(slot_id) == 1

    def test_reserve_exact_remaining(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18, available=2)

        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).reserve(slot_id, 2) is True

        assert slot_available(slot_id) == 0

    def test_reserve_unknown_slot(self, session_factory):
        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).reserve(9999, 1) is False

    def test_reserve_rejects_non_positive_quantity(self, session_factory, make_slot):
        slot_id = make_slot(MONDAY, 18)

        with unit_of_work(session_factory) as session:
            with pytest.raises(ValueError):
                SlotAllocator(session).reserve(slot_id, 0)

    def test_cached_slot_sees_new_counter(self, session_factory, make_slot):
        make_slot(MONDAY, 18)

        with unit_of_work(session_factory) as session:
            allocator = SlotAllocator(session)
            slot = allocator.find_slot(MONDAY, time(18))
            assert slot.available == 4

            allocator.reserve(slot.id, 3)
            assert slot.available == 1


class TestRelease:
    """Test the clamped increment."""

    def test_release_returns_seats(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18, available=1)

        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).release(slot_id, 2) is True

        assert slot_available(slot_id) == 3

    def test_release_clamps_to_capacity(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18, available=3)

        with unit_of_work(session_factory) as session:
            allocator = SlotAllocator(session)
            allocator.release(slot_id, 3)
            # A retried compensation must not inflate the slot either
            allocator.release(slot_id, 3)

        assert slot_available(slot_id) == 4

    def test_release_unknown_slot(self, session_factory):
        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).release(9999, 1) is False


class TestAvailability:
    """Test read-only availability helpers."""

    def test_is_available(self, session_factory, make_slot):
        make_slot(MONDAY, 18, available=2)

        with unit_of_work(session_factory) as session:
            allocator = SlotAllocator(session)
            assert allocator.is_available(MONDAY, time(18), 2) is True
            assert allocator.is_available(MONDAY, time(18), 3) is False

    def test_is_available_missing_slot(self, session_factory):
        with unit_of_work(session_factory) as session:
            assert SlotAllocator(session).is_available(MONDAY, time(18), 1) is False

    def test_is_available_does_not_mutate(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18)

        with unit_of_work(session_factory) as session:
            SlotAllocator(session).is_available(MONDAY, time(18), 4)

        assert slot_available(slot_id) == 4


class TestInterleavings:
    """available stays within [0, capacity] for any reserve/release sequence."""

    @pytest.mark.parametrize("seed", range(5))
    def test_random_sequence_keeps_bounds(self, session_factory, make_slot, seed):
        capacity = 4
        slot_id = make_slot(MONDAY, 18, capacity=capacity)
        rng = random.Random(seed)
        expected = capacity

        with unit_of_work(session_factory) as session:
            allocator = SlotAllocator(session)

            for _ in range(60):
                qty = rng.randint(1, 3)
                if rng.random() < 0.6:
                    ok = allocator.reserve(slot_id, qty)
                    assert ok == (expected >= qty)
                    if ok:
                        expected -= qty
                else:
                    allocator.release(slot_id, qty)
                    expected = min(capacity, expected + qty)

                observed = allocator.remaining(slot_id)
                assert 0 <= observed <= capacity
                assert observed == expected

    def test_competing_reservers_never_overbook(self, session_factory, make_slot, slot_available):
        slot_id = make_slot(MONDAY, 18, capacity=4)

        with unit_of_work(session_factory) as session:
            allocator = SlotAllocator(session)
            results = [allocator.reserve(slot_id, 3), allocator.reserve(slot_id, 2)]

        assert results == [True, False]
        assert slot_available(slot_id) == 1
