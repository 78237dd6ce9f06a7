# File: src/lotkeeper/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Lot Allocation Engine

This module defines DTOs for data transfer between layers:
1. Input DTOs - validated primitive requests handed to the coordinator
2. Output DTOs - domain results shaped for callers
3. OperationResult - the tagged success/error envelope every operation returns

DTO Principles:
- Validation at creation (presence and range checks live here, not in the core)
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from typing import Annotated
from datetime import datetime
from enum import Enum
import json
from pydantic import BaseModel, Field, ValidationError, BeforeValidator
from pydantic import ConfigDict

from ..domain.models import Slot, VehicleRecord
from ..domain.errors import (
    ParkingDomainError, InvalidInputError, InvalidSizeError, InvalidAmountError
)


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(mode="json", **kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        data = json.loads(json_str)
        return cls(**data)


# ============================================================================
# ENUM DTOs
# ============================================================================

class VehicleSizeDTO(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class RecordStatusDTO(str, Enum):
    UNSET = "unset"
    PARKED = "parked"
    LEFT = "left"


def _normalize_size(value: Any) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _normalize_plate(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("plateNumber is required")
    return value


Plate = Annotated[str, BeforeValidator(_normalize_plate)]
Size = Annotated[VehicleSizeDTO, BeforeValidator(_normalize_size)]


# ============================================================================
# REQUEST DTOs
# ============================================================================

class CreateLotRequest(BaseDTO):
    total_slots: int = Field(..., ge=1, strict=True, description="Number of slots in the new lot")


class RegisterVehicleRequest(BaseDTO):
    plate: Plate = Field(..., description="Vehicle plate number")
    size: Size


class SlotRequest(BaseDTO):
    """Plate plus target slot, used for both park and leave"""
    plate: Plate
    slot_number: int = Field(..., ge=1, strict=True)


class ContiguousParkRequest(BaseDTO):
    plate: Plate


class SizeQuery(BaseDTO):
    size: Size


class AddSlotsRequest(BaseDTO):
    amount: int = Field(..., ge=1, strict=True)


class RemoveSlotRequest(BaseDTO):
    slot_number: int = Field(..., ge=1, strict=True)


class PlateQuery(BaseDTO):
    plate: Plate


class RunQuery(BaseDTO):
    count: int = Field(..., ge=1, strict=True)


# ============================================================================
# RESPONSE DTOs
# ============================================================================

class SlotDTO(BaseDTO):
    number: int
    available: bool
    active: bool
    updated_at: datetime

    @classmethod
    def from_entity(cls, slot: Slot) -> 'SlotDTO':
        return cls.model_validate(slot)


class VehicleRecordDTO(BaseDTO):
    id: str
    plate: str
    size: Size
    slot_number: Optional[int] = None
    status: RecordStatusDTO
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, record: VehicleRecord) -> 'VehicleRecordDTO':
        return cls(
            id=record.id,
            plate=record.plate,
            size=record.size.value,
            slot_number=record.slot_number,
            status=record.status.value,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class SlotBatchDTO(BaseDTO):
    slots: List[SlotDTO]
    count: int


class VehicleRecordsDTO(BaseDTO):
    records: List[VehicleRecordDTO]
    count: int


class LotStatusDTO(BaseDTO):
    total_slots: int
    available_count: int
    occupied_count: int
    available_numbers: List[int]


class PlatesBySizeDTO(BaseDTO):
    size: Size
    plates: List[str]
    count: int


class SlotsBySizeDTO(BaseDTO):
    size: Size
    slots: List[int]
    count: int


class FreeRunDTO(BaseDTO):
    count: int
    slot_numbers: Optional[List[int]] = None


class RemovedSlotDTO(BaseDTO):
    slot_number: int


# ============================================================================
# RESULT ENVELOPE
# ============================================================================

class OperationResult(BaseDTO):
    """
    Tagged result of one coordinator operation

    Exactly one of ``value`` (on success) or ``error_code`` (on a domain
    error) is meaningful.
    """
    success: bool
    value: Optional[Any] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = None, message: Optional[str] = None) -> 'OperationResult':
        return cls(success=True, value=value, message=message)

    @classmethod
    def fail(cls, error: ParkingDomainError) -> 'OperationResult':
        return cls(success=False, error_code=error.code, message=error.message)


# ============================================================================
# VALIDATION ERROR MAPPING
# ============================================================================

def domain_error_from_validation(exc: ValidationError) -> ParkingDomainError:
    """
    Map a pydantic ValidationError to the matching domain error
    The first failing field decides the error type
    """
    errors = exc.errors()
    if not errors:
        return InvalidInputError()

    first = errors[0]
    field = first["loc"][0] if first.get("loc") else None
    message = first.get("msg", "Invalid input")
    if field == "size":
        return InvalidSizeError()
    if field == "amount":
        return InvalidAmountError()
    return InvalidInputError(f"{field}: {message}" if field else message)
