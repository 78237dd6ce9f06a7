#!/usr/bin/env python3
"""
Slot Registry Unit Tests
"""

import unittest

from lotkeeper.domain.aggregates import LotState
from lotkeeper.domain.registry import SlotRegistry
from lotkeeper.domain.errors import (
    LotConflictError, SlotNotFoundError, SlotUnavailableError,
    AlreadyInactiveError, OccupiedConflictError, InvalidAmountError, InvalidInputError
)


class TestSlotRegistry(unittest.TestCase):
    """Unit tests for slot creation, removal and occupancy"""

    def setUp(self):
        """Set up a registry over a fresh state"""
        self.state = LotState()
        self.registry = SlotRegistry(self.state)

    def test_initialize_creates_numbered_slots(self):
        slots = self.registry.initialize(3)
        self.assertEqual([s.number for s in slots], [1, 2, 3])
        self.assertTrue(all(s.is_free for s in slots))
        self.assertEqual(sorted(self.state.slots), [1, 2, 3])
        self.assertEqual(self.state.clear_events()[0].event_type, "lot.created")

    def test_initialize_rejects_non_positive(self):
        with self.assertRaises(InvalidInputError):
            self.registry.initialize(0)

    def test_initialize_replaces_free_slots(self):
        self.registry.initialize(5)
        self.registry.initialize(2)
        self.assertEqual(sorted(self.state.slots), [1, 2])

    def test_initialize_refused_while_occupied(self):
        self.registry.initialize(3)
        self.registry.occupy(2)
        with self.assertRaises(LotConflictError):
            self.registry.initialize(4)
        self.assertEqual(len(self.state.slots), 3)

    def test_add_slots_continues_numbering(self):
        self.registry.initialize(2)
        added = self.registry.add_slots(3)
        self.assertEqual([s.number for s in added], [3, 4, 5])

    def test_add_slots_skips_numbers_of_inactive_slots(self):
        """Test that removed slot numbers are never reused"""
        self.registry.initialize(3)
        self.registry.remove_slot(3)
        added = self.registry.add_slots(1)
        self.assertEqual(added[0].number, 4)

    def test_add_slots_on_empty_lot_starts_at_one(self):
        added = self.registry.add_slots(2)
        self.assertEqual([s.number for s in added], [1, 2])

    def test_add_slots_rejects_non_positive(self):
        with self.assertRaises(InvalidAmountError):
            self.registry.add_slots(0)

    def test_remove_slot_errors(self):
        self.registry.initialize(3)

        with self.assertRaises(SlotNotFoundError):
            self.registry.remove_slot(9)

        self.registry.occupy(1)
        with self.assertRaises(OccupiedConflictError):
            self.registry.remove_slot(1)

        self.registry.remove_slot(2)
        with self.assertRaises(AlreadyInactiveError):
            self.registry.remove_slot(2)

    def test_removed_slot_leaves_snapshot(self):
        self.registry.initialize(3)
        self.registry.remove_slot(2)
        self.assertEqual([s.number for s in self.registry.snapshot()], [1, 3])
        self.assertIsNotNone(self.registry.get(2))
        self.assertFalse(self.registry.get(2).active)

    def test_occupy_and_release(self):
        self.registry.initialize(2)
        self.registry.occupy(1)
        self.assertTrue(self.registry.has_occupied())
        self.assertEqual([s.number for s in self.registry.available_snapshot()], [2])

        with self.assertRaises(SlotUnavailableError):
            self.registry.occupy(1)

        self.registry.release(1)
        self.assertFalse(self.registry.has_occupied())

    def test_occupy_unknown_slot(self):
        with self.assertRaises(SlotNotFoundError):
            self.registry.occupy(1)


class TestFindFreeRun(unittest.TestCase):
    """Unit tests for the consecutive free slot search"""

    def setUp(self):
        self.state = LotState()
        self.registry = SlotRegistry(self.state)
        self.registry.initialize(6)

    def test_gap_breaks_run(self):
        """Free slots [1, 2, 4, 5, 6] hold a run of 3 only at 4..6"""
        self.registry.occupy(3)
        self.assertEqual(self.registry.find_free_run(3), [4, 5, 6])
        self.assertIsNone(self.registry.find_free_run(4))

    def test_first_run_wins(self):
        self.assertEqual(self.registry.find_free_run(2), [1, 2])

    def test_inactive_slot_breaks_run(self):
        self.registry.remove_slot(2)
        self.assertEqual(self.registry.find_free_run(2), [3, 4])

    def test_single_slot_run(self):
        self.registry.occupy(1)
        self.assertEqual(self.registry.find_free_run(1), [2])

    def test_invalid_counts(self):
        self.assertIsNone(self.registry.find_free_run(0))
        self.assertIsNone(self.registry.find_free_run(7))


if __name__ == '__main__':
    unittest.main()
