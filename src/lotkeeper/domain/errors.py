# File: src/lotkeeper/domain/errors.py
"""
Domain and infrastructure errors

Domain errors are expected outcomes of a known precondition violation. Each
carries a stable ``code`` that outer layers map to a caller-visible failure.
Infrastructure errors are genuine faults and are never converted into a
domain result.
"""

from typing import Optional


# ============================================================================
# DOMAIN ERRORS
# ============================================================================

class ParkingDomainError(Exception):
    """Base exception for expected domain outcomes"""

    code = "DOMAIN_ERROR"
    default_message = "Domain rule violated"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidInputError(ParkingDomainError):
    code = "INVALID_INPUT"
    default_message = "Invalid input"


class InvalidSizeError(InvalidInputError):
    code = "INVALID_SIZE"
    default_message = "carSize must be small, medium, or large"


class InvalidAmountError(InvalidInputError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a positive integer"


class LotConflictError(ParkingDomainError):
    code = "LOT_CONFLICT"
    default_message = ("Cannot create new parking lot: there are occupied slots. "
                       "Please empty all slots first.")


class SlotNotFoundError(ParkingDomainError):
    code = "SLOT_NOT_FOUND"
    default_message = "Slot not found"


class SlotUnavailableError(ParkingDomainError):
    code = "SLOT_UNAVAILABLE"
    default_message = "Slot is not available"


class AlreadyInactiveError(ParkingDomainError):
    code = "ALREADY_INACTIVE"
    default_message = "Slot already deleted"


class OccupiedConflictError(ParkingDomainError):
    code = "OCCUPIED_CONFLICT"
    default_message = "Cannot delete occupied slot"


class AlreadyRegisteredError(ParkingDomainError):
    code = "ALREADY_REGISTERED"
    default_message = "Car already registered"


class NotRegisteredError(ParkingDomainError):
    code = "NOT_REGISTERED"
    default_message = "Car not registered"


class NoFreeRecordError(ParkingDomainError):
    """Raised by the ledger when every record of a plate already has a slot"""
    code = "NO_UNPARKED_RECORD"
    default_message = "No unparked record for this car"


class NoUnparkedRecordError(NoFreeRecordError):
    """Coordinator-level form of NoFreeRecordError"""
    pass


class DuplicateParkAttemptError(ParkingDomainError):
    code = "DUPLICATE_PARK_ATTEMPT"
    default_message = "Car is already parked at this slot"


class RecordNotFoundError(ParkingDomainError):
    code = "RECORD_NOT_FOUND"
    default_message = "Car record not found at this slot"


class NotParkedError(ParkingDomainError):
    """Raised by the ledger when no parked record matches a slot"""
    code = "NOT_CURRENTLY_PARKED"
    default_message = "Car is not currently parked"


class NotCurrentlyParkedError(NotParkedError):
    pass


class LotFullError(ParkingDomainError):
    code = "LOT_FULL"
    default_message = "Parking lot full"


class NoConsecutiveSlotsError(ParkingDomainError):
    code = "NO_CONSECUTIVE_SLOTS"
    default_message = "No consecutive slots available"

    @classmethod
    def for_vehicle(cls, slots_needed: int, size: str) -> 'NoConsecutiveSlotsError':
        return cls(f"No {slots_needed} consecutive slots available for {size} car")


# ============================================================================
# INFRASTRUCTURE ERRORS
# ============================================================================

class InfrastructureError(Exception):
    """Base exception for storage and transport faults"""
    pass


class PersistenceError(InfrastructureError):
    """The store could not be read or written"""
    pass


class CorruptStateError(PersistenceError):
    """Stored state cannot be decoded or violates slot/ledger consistency"""
    pass


class StaleStateError(PersistenceError):
    """The stored state moved past the version this writer loaded"""

    def __init__(self, expected_version: Optional[int], stored_version: Optional[int]):
        super().__init__(
            f"Lot state changed concurrently: expected version {expected_version}, found {stored_version}"
        )
        self.expected_version = expected_version
        self.stored_version = stored_version
