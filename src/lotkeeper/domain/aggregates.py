# File: src/lotkeeper/domain/aggregates.py
"""
Aggregate Root for the Lot Allocation Engine

LotState is the single state holder for a parking lot: the slot set and the
vehicle ledger records. The slot registry and the vehicle ledger both operate
on an injected LotState; only the allocation coordinator owns one.

Key Concepts:
- The aggregate root enforces cross-entity consistency
- Domain events are collected on the root and drained after commit
- The whole aggregate serializes to one document
"""

from typing import List, Optional, Dict, Any
from collections import Counter
import logging

from .models import Entity, Slot, VehicleRecord, RecordStatus, DomainEvent
from .errors import CorruptStateError


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        """Get current aggregate version"""
        return self._version

    def _increment_version(self) -> None:
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to the list of changes"""
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        return len(self._changes) > 0


# ============================================================================
# LOT STATE AGGREGATE
# ============================================================================

class LotState(AggregateRoot):
    """
    Aggregate Root: slots plus vehicle records of one lot

    Slots are keyed by number and include inactive ones, since slot numbers
    are never reused. Records keep insertion order.
    """

    def __init__(
        self,
        slots: Optional[List[Slot]] = None,
        records: Optional[List[VehicleRecord]] = None,
        version: int = 1,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.slots: Dict[int, Slot] = {}
        for slot in slots or []:
            if slot.number in self.slots:
                raise CorruptStateError(f"Duplicate slot number {slot.number}")
            self.slots[slot.number] = slot
        self.records: List[VehicleRecord] = list(records or [])
        self._version = version

    def record_event(self, event: DomainEvent) -> None:
        """Register a state change; published once the change is committed"""
        self._add_domain_event(event)

    def advance_version(self) -> int:
        """Bump the version once per committed change"""
        self._increment_version()
        return self.version

    def restore_from(self, other: 'LotState') -> None:
        """Replace this state in place with another state's content"""
        self._id = other.id
        self.slots = other.slots
        self.records = other.records
        self._version = other.version
        self._changes = []

    def clone(self) -> 'LotState':
        """Deep copy via the serialized form; pending events are not copied"""
        return LotState.from_dict(self.to_dict())

    def verify_consistency(self) -> None:
        """
        Check that slot occupancy and parked records agree

        Every occupied active slot must have exactly one parked record, and
        every parked record must point at an existing occupied slot.
        Raises: CorruptStateError on the first mismatch found
        """
        parked = Counter(r.slot_number for r in self.records if r.status == RecordStatus.PARKED)

        for number, count in parked.items():
            slot = self.slots.get(number)
            if slot is None:
                raise CorruptStateError(f"Parked record points at missing slot {number}")
            if slot.available:
                raise CorruptStateError(f"Slot {number} is available but has a parked record")
            if count > 1:
                raise CorruptStateError(f"Slot {number} has {count} parked records")

        for slot in self.slots.values():
            if not slot.available and not slot.active:
                raise CorruptStateError(f"Inactive slot {slot.number} is marked occupied")
            if not slot.available and slot.number not in parked:
                raise CorruptStateError(f"Slot {slot.number} is occupied but no record is parked there")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "parking_area": [s.to_dict() for s in sorted(self.slots.values(), key=lambda s: s.number)],
            "car_register": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LotState':
        try:
            return cls(
                id=data.get("id"),
                version=int(data.get("version", 1)),
                slots=[Slot.from_dict(s) for s in data.get("parking_area", [])],
                records=[VehicleRecord.from_dict(r) for r in data.get("car_register", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptStateError(f"Cannot decode lot state: {e}") from e

    def __repr__(self) -> str:
        return f"LotState(slots={len(self.slots)}, records={len(self.records)}, version={self.version})"
