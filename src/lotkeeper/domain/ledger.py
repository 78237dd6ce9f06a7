# File: src/lotkeeper/domain/ledger.py
"""
Vehicle Ledger

Owns the vehicle records of a LotState. A registration creates one record
per slot unit the vehicle needs; records then move unset -> parked -> left
independently of each other.
"""

from typing import List, Optional
import logging

from .aggregates import LotState
from .models import VehicleRecord, VehicleSize, RecordStatus, VehicleRegisteredEvent, slots_for
from .errors import AlreadyRegisteredError, NoFreeRecordError, NotParkedError


class VehicleLedger:
    """Record operations over an injected LotState"""

    def __init__(self, state: LotState):
        self.state = state
        self._logger = logging.getLogger(self.__class__.__name__)

    def register(self, plate: str, size: VehicleSize) -> List[VehicleRecord]:
        """
        Create slots_for(size) unset records for a new plate
        Raises: AlreadyRegisteredError if the plate has any record at all
        """
        if self.records_for(plate):
            raise AlreadyRegisteredError()

        records = [VehicleRecord(plate=plate, size=size) for _ in range(slots_for(size))]
        self.state.records.extend(records)
        self.state.record_event(VehicleRegisteredEvent(plate, size, [r.id for r in records]))
        self._logger.info(f"Registered {plate} ({size}) with {len(records)} record(s)")
        return records

    def records_for(self, plate: str) -> List[VehicleRecord]:
        return [r for r in self.state.records if r.plate == plate]

    def all_records(self) -> List[VehicleRecord]:
        return list(self.state.records)

    def first_unassigned(self, plate: str) -> Optional[VehicleRecord]:
        return next((r for r in self.records_for(plate) if r.is_unassigned), None)

    def parked_at(self, plate: str, slot_number: int) -> Optional[VehicleRecord]:
        return next(
            (r for r in self.records_for(plate) if r.slot_number == slot_number and r.is_parked),
            None
        )

    def assign_slot(self, plate: str, slot_number: int) -> VehicleRecord:
        """
        Bind the first slot-less record of the plate to slot_number
        Raises: NoFreeRecordError when every record already carries a slot
        """
        record = self.first_unassigned(plate)
        if record is None:
            raise NoFreeRecordError()

        record.park_at(slot_number)
        self._logger.debug(f"Record {record.id} of {plate} parked at slot {slot_number}")
        return record

    def release_slot(self, plate: str, slot_number: int) -> VehicleRecord:
        """
        Mark the plate's parked record at slot_number as left
        Raises: NotParkedError if no parked record matches
        """
        record = self.parked_at(plate, slot_number)
        if record is None:
            raise NotParkedError()

        record.leave()
        self._logger.debug(f"Record {record.id} of {plate} left slot {slot_number}")
        return record

    def by_size(self, size: VehicleSize) -> List[VehicleRecord]:
        """One representative parked record per distinct plate of this size"""
        seen = {}
        for record in self.state.records:
            if record.size == size and record.status == RecordStatus.PARKED:
                seen.setdefault(record.plate, record)
        return list(seen.values())

    def parked_slots_by_size(self, size: VehicleSize) -> List[int]:
        return [
            r.slot_number for r in self.state.records
            if r.size == size and r.status == RecordStatus.PARKED and r.slot_number is not None
        ]
