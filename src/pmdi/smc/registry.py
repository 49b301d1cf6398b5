"""
===============================================================================
REGISTRY — Reference-Counted Cluster Slots
===============================================================================

Per-dataset arena of cluster models shared between particles.

Every particle maps each of its N labels to a slot id. A slot's reference count
is the number of (particle, label) pairs pointing at it, so for P particles the
counts of one dataset always sum to P·N.

Copy-on-write:
    When `receivers` (particle, label) pairs are about to receive an
    observation in slot s:
        refcount(s) == receivers  →  mutate s in place
        refcount(s) >  receivers  →  clone s, move `receivers` references to
                                     the clone, mutate the clone
    Particles therefore never observe each other's additions, and a cluster
    is only duplicated when particle histories actually diverge.

Slots whose count drops to zero are freed and their ids reused. The number of
live slots can never exceed N·P + 1 (every live slot is referenced, plus the
shared empty slot while seeding); exceeding it signals a bookkeeping bug.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from ..clusters.base import ClusterModel


class RegistryError(RuntimeError):
    """Internal bookkeeping invariant violated."""


@dataclass
class ClusterSlot:
    """A cluster model and the number of (particle, label) pairs using it."""
    model: ClusterModel
    refcount: int = 0


class ClusterRegistry:
    """
    Arena of cluster slots for one dataset.

    Args:
        factory: Zero-argument callable returning a fresh empty cluster model
        capacity: Maximum number of simultaneously live slots
    """

    def __init__(self, factory: Callable[[], ClusterModel], capacity: int):
        if capacity < 1:
            raise ValueError(f"Registry capacity must be positive, got {capacity}")
        self.factory = factory
        self.capacity = capacity
        self._slots: List[Optional[ClusterSlot]] = []
        self._free: List[int] = []
        self._n_live = 0

    # -------------------------------------------------------------------------
    # Slot lifecycle
    # -------------------------------------------------------------------------

    def _store(self, slot: ClusterSlot) -> int:
        if self._n_live >= self.capacity:
            raise RegistryError(
                f"Registry exhausted: {self._n_live} live slots, capacity {self.capacity}"
            )
        self._n_live += 1
        if self._free:
            slot_id = self._free.pop()
            self._slots[slot_id] = slot
            return slot_id
        self._slots.append(slot)
        return len(self._slots) - 1

    def _get(self, slot_id: int) -> ClusterSlot:
        if slot_id < 0 or slot_id >= len(self._slots) or self._slots[slot_id] is None:
            raise RegistryError(f"Slot {slot_id} is not live")
        return self._slots[slot_id]

    def create_empty(self, refcount: int = 0) -> int:
        """Allocate a slot holding an empty cluster."""
        return self._store(ClusterSlot(self.factory(), refcount))

    def clone(self, slot_id: int, refcount: int = 0) -> int:
        """Allocate a slot holding a deep copy of another slot's cluster."""
        source = self._get(slot_id)
        return self._store(ClusterSlot(source.model.copy(), refcount))

    def acquire(self, slot_id: int, n: int = 1) -> None:
        self._get(slot_id).refcount += n

    def release(self, slot_id: int, n: int = 1) -> None:
        """Drop references; a slot reaching zero is freed."""
        slot = self._get(slot_id)
        slot.refcount -= n
        if slot.refcount < 0:
            raise RegistryError(f"Slot {slot_id} reference count went negative")
        if slot.refcount == 0:
            self._slots[slot_id] = None
            self._free.append(slot_id)
            self._n_live -= 1

    def refcount(self, slot_id: int) -> int:
        return self._get(slot_id).refcount

    # -------------------------------------------------------------------------
    # Cluster operations
    # -------------------------------------------------------------------------

    def add(self, slot_id: int, observation: np.ndarray, mask: np.ndarray) -> None:
        """Add an observation to a slot in place (no copy-on-write check)."""
        self._get(slot_id).model.add(observation, mask)

    def write(self, slot_id: int, receivers: int, observation: np.ndarray, mask: np.ndarray) -> int:
        """
        Copy-on-write add of an observation for `receivers` references.

        Returns:
            Id of the slot now holding the observation (slot_id when mutated
            in place, a fresh id when cloned)
        """
        slot = self._get(slot_id)
        if receivers > slot.refcount:
            raise RegistryError(
                f"{receivers} receivers for slot {slot_id} with only {slot.refcount} references"
            )
        if receivers == slot.refcount:
            slot.model.add(observation, mask)
            return slot_id

        new_id = self.clone(slot_id, refcount=receivers)
        self.release(slot_id, receivers)
        self._slots[new_id].model.add(observation, mask)
        return new_id

    def log_predictive(self, slot_id: int, observation: np.ndarray, mask: np.ndarray) -> float:
        return self._get(slot_id).model.log_predictive(observation, mask)

    def log_marginal(self, slot_id: int) -> float:
        return self._get(slot_id).model.log_marginal()

    def model(self, slot_id: int) -> ClusterModel:
        return self._get(slot_id).model

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def live_slots(self) -> List[int]:
        return [i for i, slot in enumerate(self._slots) if slot is not None]

    def total_references(self) -> int:
        return sum(slot.refcount for slot in self._slots if slot is not None)

    def __len__(self) -> int:
        return self._n_live

    @property
    def size(self) -> int:
        """Length of the id space (live and free ids)."""
        return len(self._slots)

    def compact(self, mapping: np.ndarray) -> np.ndarray:
        """
        Renumber the slots reachable from `mapping` contiguously from 0.

        Slots are kept in ascending id order, reference counts are recounted
        from the mapping and unreachable slots are discarded.

        Args:
            mapping: Integer array of slot ids (any shape)

        Returns:
            Array of the same shape with renumbered slot ids
        """
        ids, inverse, counts = np.unique(mapping, return_inverse=True, return_counts=True)
        if len(ids) > self.capacity:
            raise RegistryError(f"{len(ids)} reachable slots exceed capacity {self.capacity}")
        self._slots = [ClusterSlot(self._get(int(i)).model, int(c)) for i, c in zip(ids, counts)]
        self._free = []
        self._n_live = len(self._slots)
        return inverse.reshape(mapping.shape)
