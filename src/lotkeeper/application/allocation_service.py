# File: src/lotkeeper/application/allocation_service.py
"""
Allocation Coordinator Application Service

This module implements the application service layer of the lot allocation
engine. It orchestrates the slot registry and the vehicle ledger and enforces
the invariants that span both.

Responsibilities:
1. Execute the use cases (create lot, register, park, leave, slot admin, queries)
2. Apply each mutation as one unit: slot flip, ledger update and store write
3. Turn domain errors into tagged OperationResults
4. Publish domain events once a change is committed

Key Principles:
- Single serialization point: one re-entrant lock guards the state
- Dependency Injection for the store and the event bus
- Infrastructure faults propagate untouched
"""

from typing import Any, Callable, Optional, Type
from contextlib import contextmanager
import logging
import threading

from pydantic import ValidationError

from ..config import Settings
from ..domain.aggregates import LotState
from ..domain.models import VehicleSize, VehicleParkedEvent, VehicleLeftEvent
from ..domain.registry import SlotRegistry
from ..domain.ledger import VehicleLedger
from ..domain.errors import (
    ParkingDomainError, InfrastructureError, StaleStateError,
    LotConflictError, NotRegisteredError, NoFreeRecordError, NoUnparkedRecordError,
    SlotNotFoundError, SlotUnavailableError, DuplicateParkAttemptError,
    RecordNotFoundError, NotCurrentlyParkedError, LotFullError, NoConsecutiveSlotsError
)
from ..infrastructure.repositories import StateStore, InMemoryStateStore, StateStoreFactory
from ..infrastructure.messaging import EventBus, create_event_bus
from .dtos import (
    BaseDTO, OperationResult, domain_error_from_validation,
    CreateLotRequest, RegisterVehicleRequest, SlotRequest, ContiguousParkRequest,
    SizeQuery, AddSlotsRequest, RemoveSlotRequest, PlateQuery, RunQuery,
    SlotDTO, VehicleRecordDTO, SlotBatchDTO, VehicleRecordsDTO, LotStatusDTO,
    PlatesBySizeDTO, SlotsBySizeDTO, FreeRunDTO, RemovedSlotDTO
)


MESSAGES = {
    "create_lot": "Parking lot created successfully",
    "register_vehicle": "Car registered",
    "park_vehicle": "Car parked successfully",
    "park_vehicle_contiguous": "Car parked successfully",
    "leave_vehicle": "Car left successfully",
    "add_slots": "Empty slot(s) added successfully",
    "remove_slot": "Empty slot deleted successfully",
}

# A save that lost a concurrent update is re-run against the reloaded state
MAX_COMMIT_ATTEMPTS = 3


# ============================================================================
# ALLOCATION COORDINATOR
# ============================================================================

class AllocationCoordinator:
    """
    Main application service for slot allocation

    Owns the LotState and hands it to the SlotRegistry and the VehicleLedger.
    Every public operation returns an OperationResult; only infrastructure
    faults escape as exceptions.
    """

    def __init__(self, store: Optional[StateStore] = None, event_bus: Optional[EventBus] = None):
        """
        Initialize the coordinator

        Args:
            store: State store to load from and save to. Defaults to in-memory.
            event_bus: Bus receiving committed domain events.
        Raises:
            CorruptStateError if the stored state is inconsistent
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store or InMemoryStateStore()
        self.event_bus = event_bus or EventBus()
        self._lock = threading.RLock()

        self.state: LotState = self.store.load()
        self.registry = SlotRegistry(self.state)
        self.ledger = VehicleLedger(self.state)

        self.logger.info(f"AllocationCoordinator initialized with {self.store.__class__.__name__}: {self.state!r}")

    # ------------------------------------------------------------------
    # Lot administration
    # ------------------------------------------------------------------

    def create_lot(self, total_slots: int) -> OperationResult:
        """Replace the slot set; refused while any slot is occupied"""
        def operation():
            if self.registry.has_occupied():
                raise LotConflictError()
            request = self._validate(CreateLotRequest, total_slots=total_slots)
            slots = self.registry.initialize(request.total_slots)
            return self._slot_batch(slots)

        return self._run("create_lot", operation)

    def add_slots(self, amount: int) -> OperationResult:
        def operation():
            request = self._validate(AddSlotsRequest, amount=amount)
            return self._slot_batch(self.registry.add_slots(request.amount))

        return self._run("add_slots", operation)

    def remove_slot(self, slot_number: int) -> OperationResult:
        def operation():
            request = self._validate(RemoveSlotRequest, slot_number=slot_number)
            slot = self.registry.remove_slot(request.slot_number)
            return RemovedSlotDTO(slot_number=slot.number)

        return self._run("remove_slot", operation)

    # ------------------------------------------------------------------
    # Vehicle lifecycle
    # ------------------------------------------------------------------

    def register_vehicle(self, plate: str, size: Any) -> OperationResult:
        def operation():
            request = self._validate(RegisterVehicleRequest, plate=plate, size=size)
            records = self.ledger.register(request.plate, VehicleSize(request.size))
            return self._record_batch(records)

        return self._run("register_vehicle", operation)

    def park_vehicle(self, plate: str, slot_number: int) -> OperationResult:
        """
        Park one unset record of the plate at a caller-chosen slot

        Use Case: Vehicle Entry
        1. Plate must be registered and still own an unset record
        2. Slot must exist, be active and be available
        3. The plate must not already be parked at that slot
        4. Occupy the slot, then bind the record; undo the slot if binding fails
        """
        def operation():
            request = self._validate(SlotRequest, plate=plate, slot_number=slot_number)
            plate_ = request.plate
            number = request.slot_number

            if not self.ledger.records_for(plate_):
                raise NotRegisteredError()
            if self.ledger.first_unassigned(plate_) is None:
                raise NoUnparkedRecordError()

            slot = self.registry.get(number)
            if slot is None or not slot.active:
                raise SlotNotFoundError()
            if not slot.available:
                raise SlotUnavailableError()
            # Only reachable when the slot is marked free while a parked record
            # still points at it; a consistent state fails on availability first.
            if self.ledger.parked_at(plate_, number) is not None:
                raise DuplicateParkAttemptError()

            return VehicleRecordDTO.from_entity(self._occupy_and_assign(plate_, number))

        return self._run("park_vehicle", operation)

    def park_vehicle_contiguous(self, plate: str) -> OperationResult:
        """
        Park every unset record of the plate in one run of consecutive slots

        The run is the first one found scanning slot numbers upwards.
        """
        def operation():
            request = self._validate(ContiguousParkRequest, plate=plate)
            records = self.ledger.records_for(request.plate)
            if not records:
                raise NotRegisteredError()

            pending = [r for r in records if r.is_unassigned]
            if not pending:
                raise NoUnparkedRecordError()
            if not self.registry.available_snapshot():
                raise LotFullError()

            run = self.registry.find_free_run(len(pending))
            if run is None:
                raise NoConsecutiveSlotsError.for_vehicle(len(pending), pending[0].size.value)

            parked = [self._occupy_and_assign(request.plate, number) for number in run]
            return self._record_batch(parked)

        return self._run("park_vehicle_contiguous", operation)

    def leave_vehicle(self, plate: str, slot_number: int) -> OperationResult:
        """
        Release the plate's parked record at a slot

        Use Case: Vehicle Exit
        1. Plate must be registered
        2. Some record of the plate must reference the slot
        3. One of those records must still be parked
        4. Release the slot, then mark the record as left
        """
        def operation():
            request = self._validate(SlotRequest, plate=plate, slot_number=slot_number)
            plate_ = request.plate
            number = request.slot_number

            records = self.ledger.records_for(plate_)
            if not records:
                raise NotRegisteredError("Car not found")
            if not any(r.slot_number == number for r in records):
                raise RecordNotFoundError()
            parked = self.ledger.parked_at(plate_, number)
            if parked is None:
                raise NotCurrentlyParkedError()

            parked_since = parked.updated_at
            self.registry.release(number)
            record = self.ledger.release_slot(plate_, number)
            self.state.record_event(VehicleLeftEvent(plate_, number, record.id, parked_since))
            return VehicleRecordDTO.from_entity(record)

        return self._run("leave_vehicle", operation)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self) -> OperationResult:
        def operation():
            slots = self.registry.snapshot()
            available = [s.number for s in slots if s.available]
            return LotStatusDTO(
                total_slots=len(slots),
                available_count=len(available),
                occupied_count=len(slots) - len(available),
                available_numbers=available,
            )

        return self._run("get_status", operation, mutating=False)

    def plates_by_size(self, size: Any) -> OperationResult:
        def operation():
            request = self._validate(SizeQuery, size=size)
            plates = [r.plate for r in self.ledger.by_size(VehicleSize(request.size))]
            return PlatesBySizeDTO(size=request.size, plates=plates, count=len(plates))

        return self._run("plates_by_size", operation, mutating=False)

    def slots_by_size(self, size: Any) -> OperationResult:
        def operation():
            request = self._validate(SizeQuery, size=size)
            slots = self.ledger.parked_slots_by_size(VehicleSize(request.size))
            return SlotsBySizeDTO(size=request.size, slots=slots, count=len(slots))

        return self._run("slots_by_size", operation, mutating=False)

    def get_vehicle(self, plate: str) -> OperationResult:
        def operation():
            request = self._validate(PlateQuery, plate=plate)
            records = self.ledger.records_for(request.plate)
            if not records:
                raise NotRegisteredError()
            return self._record_batch(records)

        return self._run("get_vehicle", operation, mutating=False)

    def list_vehicles(self) -> OperationResult:
        return self._run("list_vehicles", lambda: self._record_batch(self.ledger.all_records()), mutating=False)

    def find_free_run(self, count: int) -> OperationResult:
        def operation():
            request = self._validate(RunQuery, count=count)
            return FreeRunDTO(count=request.count, slot_numbers=self.registry.find_free_run(request.count))

        return self._run("find_free_run", operation, mutating=False)

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _occupy_and_assign(self, plate: str, number: int):
        self.registry.occupy(number)
        try:
            record = self.ledger.assign_slot(plate, number)
        except NoFreeRecordError:
            self.registry.release(number)
            raise NoUnparkedRecordError()
        self.state.record_event(VehicleParkedEvent(plate, number, record.id))
        return record

    def _run(self, operation: str, func: Callable[[], Any], mutating: bool = True) -> OperationResult:
        with self._lock:
            try:
                value = self._commit(operation, func) if mutating else func()
            except ParkingDomainError as e:
                self.logger.info(f"{operation} rejected: {e.code} - {e.message}")
                return OperationResult.fail(e)
            except InfrastructureError as e:
                self.logger.error(f"{operation} failed: {e}", exc_info=True)
                raise

        self.logger.debug(f"{operation} succeeded")
        return OperationResult.ok(value, MESSAGES.get(operation))

    def _commit(self, operation: str, func: Callable[[], Any]) -> Any:
        """
        Run a mutation and save it, re-running it after a lost update

        Another writer sharing the store may commit between our load and our
        save. The store then refuses the save; the stored state is reloaded
        and the mutation evaluated again, so it can succeed or fail against
        what was actually committed.
        """
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            try:
                with self._transaction():
                    return func()
            except StaleStateError as e:
                if attempt == MAX_COMMIT_ATTEMPTS:
                    raise
                self.logger.warning(f"{operation} hit a concurrent update ({e}); reloading, attempt {attempt}")
                self.reload()

    def reload(self) -> None:
        """Replace the in-memory state with what the store currently holds"""
        with self._lock:
            self.state.restore_from(self.store.load())

    @contextmanager
    def _transaction(self):
        """
        Apply a mutation as one unit

        The state is snapshotted first; on any failure, including a failed
        or stale store write, the snapshot is put back. The save names the
        version the mutation started from. Events go out only after the
        store accepted the new state.
        """
        snapshot = self.state.clone()
        try:
            yield
            self.state.advance_version()
            self.store.save(self.state, expected_version=snapshot.version)
        except BaseException:
            self.state.restore_from(snapshot)
            raise
        self.event_bus.publish_all(self.state.clear_events())

    @staticmethod
    def _validate(dto_class: Type[BaseDTO], **fields) -> Any:
        try:
            return dto_class(**fields)
        except ValidationError as e:
            raise domain_error_from_validation(e) from e

    @staticmethod
    def _slot_batch(slots) -> SlotBatchDTO:
        return SlotBatchDTO(slots=[SlotDTO.from_entity(s) for s in slots], count=len(slots))

    @staticmethod
    def _record_batch(records) -> VehicleRecordsDTO:
        return VehicleRecordsDTO(records=[VehicleRecordDTO.from_entity(r) for r in records], count=len(records))


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class AllocationCoordinatorFactory:
    """Factory for creating coordinators"""

    @staticmethod
    def create_default_service() -> AllocationCoordinator:
        """In-memory coordinator with a plain event bus"""
        return AllocationCoordinator()

    @staticmethod
    def create_from_settings(settings: Settings) -> AllocationCoordinator:
        store = StateStoreFactory.create(settings)
        bus = create_event_bus(settings.redis_url, settings.event_channel)
        return AllocationCoordinator(store=store, event_bus=bus)
