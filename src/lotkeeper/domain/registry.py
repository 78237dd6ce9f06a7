# File: src/lotkeeper/domain/registry.py
"""
Slot Registry

Owns the slot set of a LotState: creation, soft deletion, occupancy flips and
the search for runs of consecutive free slots.
"""

from typing import List, Optional
import logging

from .aggregates import LotState
from .models import Slot, generate_slots, LotCreatedEvent, SlotsAddedEvent, SlotRemovedEvent
from .errors import (
    LotConflictError, SlotNotFoundError, SlotUnavailableError,
    AlreadyInactiveError, OccupiedConflictError, InvalidAmountError,
    InvalidInputError
)


class SlotRegistry:
    """Slot operations over an injected LotState"""

    def __init__(self, state: LotState):
        self.state = state
        self._logger = logging.getLogger(self.__class__.__name__)

    def initialize(self, total_slots: int) -> List[Slot]:
        """
        Replace the whole slot set with slots 1..total_slots
        Raises: LotConflictError if any slot is currently occupied
        """
        if self.has_occupied():
            raise LotConflictError()
        if total_slots < 1:
            raise InvalidInputError("totalSlots must be a positive integer")

        slots = generate_slots(1, total_slots)
        self.state.slots = {slot.number: slot for slot in slots}
        self.state.record_event(LotCreatedEvent(total_slots))
        self._logger.info(f"Initialized lot with {total_slots} slots")
        return slots

    def add_slots(self, amount: int) -> List[Slot]:
        """Append slots after the highest number ever used, inactive slots included"""
        if amount < 1:
            raise InvalidAmountError()

        start = max(self.state.slots, default=0) + 1
        slots = generate_slots(start, amount)
        for slot in slots:
            self.state.slots[slot.number] = slot
        self.state.record_event(SlotsAddedEvent([s.number for s in slots]))
        self._logger.info(f"Added {amount} slot(s) starting at {start}")
        return slots

    def remove_slot(self, number: int) -> Slot:
        slot = self.get(number)
        if slot is None:
            raise SlotNotFoundError()
        if not slot.active:
            raise AlreadyInactiveError()
        if not slot.available:
            raise OccupiedConflictError()

        slot.deactivate()
        self.state.record_event(SlotRemovedEvent(number))
        self._logger.info(f"Deactivated slot {number}")
        return slot

    def find_free_run(self, count: int) -> Optional[List[int]]:
        """
        First run of `count` consecutive slot numbers that are all active and
        available, scanning in ascending order. Gaps left by inactive or
        occupied slots break a run.
        """
        if count < 1:
            return None

        free = [slot.number for slot in self.available_snapshot()]
        for i in range(len(free) - count + 1):
            window = free[i:i + count]
            if window[-1] - window[0] == count - 1:
                return window
        return None

    def occupy(self, number: int) -> Slot:
        slot = self._require(number)
        if not slot.available:
            raise SlotUnavailableError()
        slot.occupy()
        self._logger.debug(f"Slot {number} occupied")
        return slot

    def release(self, number: int) -> Slot:
        slot = self._require(number)
        slot.release()
        self._logger.debug(f"Slot {number} released")
        return slot

    def get(self, number: int) -> Optional[Slot]:
        """Slot by number, active or not"""
        return self.state.slots.get(number)

    def has_occupied(self) -> bool:
        return any(s.active and not s.available for s in self.state.slots.values())

    def snapshot(self) -> List[Slot]:
        """All active slots in ascending order"""
        return sorted((s for s in self.state.slots.values() if s.active), key=lambda s: s.number)

    def available_snapshot(self) -> List[Slot]:
        return [s for s in self.snapshot() if s.is_free]

    def _require(self, number: int) -> Slot:
        slot = self.get(number)
        if slot is None:
            raise SlotNotFoundError(f"Slot {number} not found")
        return slot
