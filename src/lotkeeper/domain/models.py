# File: src/lotkeeper/domain/models.py
"""
Domain Models for the Lot Allocation Engine

This module contains:
1. Enums: vehicle sizes and record lifecycle states
2. Entities: Slot and VehicleRecord
3. Domain Events: things that happened to the lot

Entities carry their own state transitions; cross-entity rules live in the
registry, the ledger and the allocation coordinator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid
from enum import Enum


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleSize(Enum):
    """
    Enumeration of vehicle sizes
    Each size claims a fixed number of slots at registration
    """
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    def __str__(self) -> str:
        return self.value


SLOTS_PER_SIZE = {
    VehicleSize.SMALL: 1,
    VehicleSize.MEDIUM: 2,
    VehicleSize.LARGE: 3,
}


class RecordStatus(Enum):
    """
    Lifecycle of a single vehicle record
    unset -> parked -> left, never backwards
    """
    UNSET = "unset"
    PARKED = "parked"
    LEFT = "left"


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for domain entities with an opaque identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


@dataclass
class Slot:
    """
    Entity: a numbered parking space
    Identity is the slot number, which is never reused inside one lot
    """
    number: int
    available: bool = True
    active: bool = True
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.number <= 0:
            raise ValueError("Slot number must be positive")

    @property
    def is_free(self) -> bool:
        """Active and not occupied"""
        return self.active and self.available

    def occupy(self) -> None:
        self.available = False
        self.updated_at = datetime.now()

    def release(self) -> None:
        self.available = True
        self.updated_at = datetime.now()

    def deactivate(self) -> None:
        """Soft delete; callers must check availability first"""
        if not self.available:
            raise ValueError(f"Slot {self.number} is occupied and cannot be deactivated")
        self.active = False
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "slot_number": self.number,
            "slot_available": self.available,
            "active": self.active,
            "update_date": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Slot':
        updated_at = data.get("update_date")
        return cls(
            number=int(data["slot_number"]),
            available=bool(data["slot_available"]),
            active=bool(data["active"]),
            updated_at=_parse_timestamp(updated_at),
        )

    def __str__(self) -> str:
        if not self.active:
            state = "inactive"
        else:
            state = "available" if self.available else "occupied"
        return f"Slot {self.number} - {state}"


class VehicleRecord(Entity):
    """
    Entity: one slot claim of a registered vehicle

    A vehicle of size N owns N records sharing its plate. Each record binds to
    at most one slot over its whole life; the slot number is kept after the
    vehicle leaves so the record doubles as history.
    """

    def __init__(
        self,
        plate: str,
        size: VehicleSize,
        slot_number: Optional[int] = None,
        status: RecordStatus = RecordStatus.UNSET,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.plate = plate
        self.size = size
        self.slot_number = slot_number
        self.status = status
        self.created_at = created_at or datetime.now()
        self.updated_at = updated_at or self.created_at
        self._validate()

    def _validate(self) -> None:
        if not self.plate:
            raise ValueError("Plate cannot be empty")
        if self.status == RecordStatus.UNSET and self.slot_number is not None:
            raise ValueError("An unset record cannot carry a slot number")
        if self.status != RecordStatus.UNSET and self.slot_number is None:
            raise ValueError(f"A {self.status.value} record must carry a slot number")

    @property
    def is_unassigned(self) -> bool:
        return self.slot_number is None

    @property
    def is_parked(self) -> bool:
        return self.status == RecordStatus.PARKED

    def park_at(self, slot_number: int) -> None:
        """unset -> parked"""
        if self.slot_number is not None:
            raise ValueError(f"Record {self.id} is already bound to slot {self.slot_number}")
        self.slot_number = slot_number
        self.status = RecordStatus.PARKED
        self.updated_at = datetime.now()

    def leave(self) -> None:
        """parked -> left; slot number is retained"""
        if self.status != RecordStatus.PARKED:
            raise ValueError(f"Record {self.id} is not parked")
        self.status = RecordStatus.LEFT
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "plate_number": self.plate,
            "car_size": self.size.value,
            "slot_number": self.slot_number,
            "status": self.status.value,
            "create_date": self.created_at.isoformat(),
            "update_date": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VehicleRecord':
        slot_number = data.get("slot_number")
        return cls(
            id=data.get("id"),
            plate=data["plate_number"],
            size=VehicleSize(data["car_size"]),
            slot_number=int(slot_number) if slot_number is not None else None,
            status=RecordStatus(data.get("status") or RecordStatus.UNSET.value),
            created_at=_parse_timestamp(data.get("create_date")),
            updated_at=_parse_timestamp(data.get("update_date")),
        )

    def __str__(self) -> str:
        where = f"slot {self.slot_number}" if self.slot_number is not None else "no slot"
        return f"{self.plate} [{self.size}] {self.status.value} ({where})"


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the lot
    """

    event_type = "lot.event"

    def __init__(self):
        self.event_id = str(uuid.uuid4())
        self.timestamp = datetime.now()
        self.version = "1.0"

    @abstractmethod
    def payload(self) -> Dict[str, Any]:
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": self.payload(),
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class LotCreatedEvent(DomainEvent):
    """Event raised when the slot set is replaced by a fresh lot"""

    event_type = "lot.created"

    def __init__(self, total_slots: int):
        super().__init__()
        self.total_slots = total_slots

    def payload(self) -> Dict[str, Any]:
        return {"total_slots": self.total_slots}


class VehicleRegisteredEvent(DomainEvent):
    event_type = "vehicle.registered"

    def __init__(self, plate: str, size: VehicleSize, record_ids: List[str]):
        super().__init__()
        self.plate = plate
        self.size = size
        self.record_ids = record_ids

    def payload(self) -> Dict[str, Any]:
        return {"plate": self.plate, "size": self.size.value, "record_ids": list(self.record_ids)}


class VehicleParkedEvent(DomainEvent):
    """Event raised when a vehicle record is bound to a slot"""

    event_type = "vehicle.parked"

    def __init__(self, plate: str, slot_number: int, record_id: str):
        super().__init__()
        self.plate = plate
        self.slot_number = slot_number
        self.record_id = record_id

    def payload(self) -> Dict[str, Any]:
        return {"plate": self.plate, "slot_number": self.slot_number, "record_id": self.record_id}


class VehicleLeftEvent(DomainEvent):
    """Event raised when a vehicle releases a slot"""

    event_type = "vehicle.left"

    def __init__(self, plate: str, slot_number: int, record_id: str, parked_since: Optional[datetime] = None):
        super().__init__()
        self.plate = plate
        self.slot_number = slot_number
        self.record_id = record_id
        self.parked_since = parked_since

    def payload(self) -> Dict[str, Any]:
        data = {"plate": self.plate, "slot_number": self.slot_number, "record_id": self.record_id}
        if self.parked_since is not None:
            data["duration_minutes"] = (self.timestamp - self.parked_since).total_seconds() / 60
        return data


class SlotsAddedEvent(DomainEvent):
    event_type = "slots.added"

    def __init__(self, slot_numbers: List[int]):
        super().__init__()
        self.slot_numbers = slot_numbers

    def payload(self) -> Dict[str, Any]:
        return {"slot_numbers": list(self.slot_numbers), "count": len(self.slot_numbers)}


class SlotRemovedEvent(DomainEvent):
    event_type = "slot.removed"

    def __init__(self, slot_number: int):
        super().__init__()
        self.slot_number = slot_number

    def payload(self) -> Dict[str, Any]:
        return {"slot_number": self.slot_number}


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def slots_for(size: VehicleSize) -> int:
    """Required slot count for a vehicle size"""
    return SLOTS_PER_SIZE[size]


def generate_slots(start: int, count: int) -> List[Slot]:
    """
    Generate a list of fresh slots with sequential numbers
    Used both for lot initialization and for appending slots
    """
    now = datetime.now()
    return [Slot(number=start + i, updated_at=now) for i in range(count)]


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return datetime.now()
