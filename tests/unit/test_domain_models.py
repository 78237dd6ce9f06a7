#!/usr/bin/env python3
"""
Domain Layer Unit Tests

Tests for slots, vehicle records, domain events and the LotState aggregate.
"""

import unittest
from datetime import datetime, timedelta

from lotkeeper.domain.models import (
    Slot, VehicleRecord, VehicleSize, RecordStatus,
    VehicleLeftEvent, VehicleParkedEvent, slots_for, generate_slots
)
from lotkeeper.domain.aggregates import LotState
from lotkeeper.domain.errors import CorruptStateError


class TestVehicleSize(unittest.TestCase):
    """Unit tests for the VehicleSize enum"""

    def test_slots_required(self):
        """Test slot counts per size"""
        self.assertEqual(slots_for(VehicleSize.SMALL), 1)
        self.assertEqual(slots_for(VehicleSize.MEDIUM), 2)
        self.assertEqual(slots_for(VehicleSize.LARGE), 3)

    def test_string_form_is_storage_value(self):
        self.assertEqual(str(VehicleSize.MEDIUM), "medium")
        self.assertIs(VehicleSize("large"), VehicleSize.LARGE)


class TestSlot(unittest.TestCase):
    """Unit tests for the Slot entity"""

    def test_new_slot_is_free(self):
        slot = Slot(number=1)
        self.assertTrue(slot.available)
        self.assertTrue(slot.active)
        self.assertTrue(slot.is_free)

    def test_slot_number_must_be_positive(self):
        with self.assertRaises(ValueError):
            Slot(number=0)

    def test_occupy_and_release(self):
        """Test occupancy flips and timestamps"""
        slot = Slot(number=3, updated_at=datetime.now() - timedelta(hours=1))
        before = slot.updated_at

        slot.occupy()
        self.assertFalse(slot.available)
        self.assertFalse(slot.is_free)
        self.assertGreater(slot.updated_at, before)

        slot.release()
        self.assertTrue(slot.available)

    def test_deactivate_occupied_slot_fails(self):
        slot = Slot(number=2)
        slot.occupy()
        with self.assertRaises(ValueError):
            slot.deactivate()
        self.assertTrue(slot.active)

    def test_dict_uses_storage_field_names(self):
        slot = Slot(number=7, available=False)
        data = slot.to_dict()
        self.assertEqual(data["slot_number"], 7)
        self.assertFalse(data["slot_available"])
        self.assertTrue(data["active"])
        self.assertIn("update_date", data)

        restored = Slot.from_dict(data)
        self.assertEqual(restored.number, 7)
        self.assertFalse(restored.available)
        self.assertEqual(restored.updated_at, slot.updated_at)

    def test_generate_slots_is_sequential(self):
        slots = generate_slots(4, 3)
        self.assertEqual([s.number for s in slots], [4, 5, 6])
        self.assertTrue(all(s.is_free for s in slots))


class TestVehicleRecord(unittest.TestCase):
    """Unit tests for the VehicleRecord entity"""

    def test_new_record_is_unset(self):
        record = VehicleRecord(plate="AB-1", size=VehicleSize.SMALL)
        self.assertEqual(record.status, RecordStatus.UNSET)
        self.assertIsNone(record.slot_number)
        self.assertTrue(record.is_unassigned)
        self.assertFalse(record.is_parked)
        self.assertEqual(record.created_at, record.updated_at)

    def test_lifecycle(self):
        """Test unset -> parked -> left, keeping the slot number"""
        record = VehicleRecord(plate="AB-1", size=VehicleSize.SMALL)

        record.park_at(4)
        self.assertEqual(record.status, RecordStatus.PARKED)
        self.assertEqual(record.slot_number, 4)

        record.leave()
        self.assertEqual(record.status, RecordStatus.LEFT)
        self.assertEqual(record.slot_number, 4)
        self.assertFalse(record.is_unassigned)

    def test_cannot_park_twice(self):
        record = VehicleRecord(plate="AB-1", size=VehicleSize.SMALL)
        record.park_at(1)
        with self.assertRaises(ValueError):
            record.park_at(2)

    def test_cannot_leave_unparked(self):
        record = VehicleRecord(plate="AB-1", size=VehicleSize.SMALL)
        with self.assertRaises(ValueError):
            record.leave()

    def test_invalid_combinations_rejected(self):
        with self.assertRaises(ValueError):
            VehicleRecord(plate="", size=VehicleSize.SMALL)
        with self.assertRaises(ValueError):
            VehicleRecord(plate="AB-1", size=VehicleSize.SMALL, slot_number=2)
        with self.assertRaises(ValueError):
            VehicleRecord(plate="AB-1", size=VehicleSize.SMALL, status=RecordStatus.PARKED)

    def test_dict_uses_storage_field_names(self):
        record = VehicleRecord(plate="XY-9", size=VehicleSize.LARGE)
        record.park_at(5)
        data = record.to_dict()
        self.assertEqual(data["plate_number"], "XY-9")
        self.assertEqual(data["car_size"], "large")
        self.assertEqual(data["status"], "parked")

        restored = VehicleRecord.from_dict(data)
        self.assertEqual(restored, record)
        self.assertEqual(restored.slot_number, 5)
        self.assertEqual(restored.size, VehicleSize.LARGE)


class TestDomainEvents(unittest.TestCase):
    """Unit tests for domain event serialization"""

    def test_event_envelope(self):
        event = VehicleParkedEvent("AB-1", 2, "rec-1")
        data = event.to_dict()
        self.assertEqual(data["event_type"], "vehicle.parked")
        self.assertEqual(data["data"], {"plate": "AB-1", "slot_number": 2, "record_id": "rec-1"})
        self.assertIn("event_id", data)

    def test_left_event_reports_duration(self):
        since = datetime.now() - timedelta(minutes=30)
        event = VehicleLeftEvent("AB-1", 2, "rec-1", parked_since=since)
        self.assertAlmostEqual(event.payload()["duration_minutes"], 30, delta=1)

        self.assertNotIn("duration_minutes", VehicleLeftEvent("AB-1", 2, "rec-1").payload())


class TestLotState(unittest.TestCase):
    """Unit tests for the LotState aggregate"""

    def _parked_state(self):
        slots = generate_slots(1, 3)
        record = VehicleRecord(plate="AB-1", size=VehicleSize.SMALL)
        record.park_at(2)
        slots[1].occupy()
        return LotState(slots=slots, records=[record])

    def test_empty_state(self):
        state = LotState()
        self.assertEqual(state.slots, {})
        self.assertEqual(state.records, [])
        self.assertEqual(state.version, 1)
        self.assertFalse(state.has_changes)
        state.verify_consistency()

    def test_duplicate_slot_numbers_rejected(self):
        with self.assertRaises(CorruptStateError):
            LotState(slots=[Slot(number=1), Slot(number=1)])

    def test_record_event_leaves_version_to_commit(self):
        state = LotState()
        state.record_event(VehicleParkedEvent("AB-1", 1, "r"))
        self.assertEqual(state.version, 1)
        self.assertTrue(state.has_changes)

        self.assertEqual(state.advance_version(), 2)
        self.assertEqual(state.version, 2)

        events = state.clear_events()
        self.assertEqual(len(events), 1)
        self.assertFalse(state.has_changes)

    def test_consistent_state_passes(self):
        self._parked_state().verify_consistency()

    def test_occupied_slot_without_record_is_corrupt(self):
        state = LotState(slots=generate_slots(1, 2))
        state.slots[1].occupy()
        with self.assertRaises(CorruptStateError):
            state.verify_consistency()

    def test_parked_record_on_available_slot_is_corrupt(self):
        state = self._parked_state()
        state.slots[2].release()
        with self.assertRaises(CorruptStateError):
            state.verify_consistency()

    def test_parked_record_on_missing_slot_is_corrupt(self):
        state = self._parked_state()
        del state.slots[2]
        with self.assertRaises(CorruptStateError):
            state.verify_consistency()

    def test_two_parked_records_on_one_slot_are_corrupt(self):
        state = self._parked_state()
        other = VehicleRecord(plate="CD-2", size=VehicleSize.SMALL)
        other.park_at(2)
        state.records.append(other)
        with self.assertRaises(CorruptStateError):
            state.verify_consistency()

    def test_clone_is_independent(self):
        """Test that a clone does not share entities with the original"""
        state = self._parked_state()
        copy = state.clone()

        copy.slots[1].occupy()
        copy.records[0].leave()

        self.assertTrue(state.slots[1].available)
        self.assertEqual(state.records[0].status, RecordStatus.PARKED)
        self.assertEqual(copy.id, state.id)

    def test_restore_from_replaces_content(self):
        state = self._parked_state()
        snapshot = state.clone()

        state.slots[2].release()
        state.records[0].leave()
        state.record_event(VehicleParkedEvent("AB-1", 2, "r"))

        state.restore_from(snapshot)
        self.assertFalse(state.slots[2].available)
        self.assertEqual(state.records[0].status, RecordStatus.PARKED)
        self.assertEqual(state.version, snapshot.version)
        self.assertFalse(state.has_changes)

    def test_from_dict_wraps_decoding_errors(self):
        with self.assertRaises(CorruptStateError):
            LotState.from_dict({"parking_area": [{"slot_number": 1}]})
        with self.assertRaises(CorruptStateError):
            LotState.from_dict({"car_register": [{"plate_number": "A", "car_size": "huge"}]})


if __name__ == '__main__':
    unittest.main()
