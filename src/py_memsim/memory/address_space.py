"""Address space — the flat physical byte range every store carves up.

Physical memory is modelled as the half-open range ``[0, total)``.  The
first ``os_reserved`` bytes always belong to the operating system; the
rest is **user space**, the only part any allocator may hand out.

A **partition** is a contiguous span of that range.  Every backing
store keeps its partitions in a list that obeys the same invariants:

    1. Ordered by address.
    2. Contiguous — each partition starts where the previous one ends.
    3. Non-overlapping, and the sizes sum to exactly ``total``.

``AddressSpace.validate()`` checks all three, and the tests run it
after every operation.

Design choices:
    - **Frozen partitions.**  A store never edits a partition in place;
      it replaces the list slot with ``dataclasses.replace(...)``.  That
      makes snapshots safe to hand out: nobody can mutate the layout
      through a record they were given.
    - **Owners are tags, not objects.**  A partition records *who* owns
      it (an ``Owner`` keyed by memory id), never a reference to a
      process object.  Freeing a process means scanning for its key.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

# Memory ids start at 1; 0 is reserved for sentinel owners.
SYSTEM_MEMORY_ID = 0


@dataclass(frozen=True)
class Owner:
    """Back-reference from a region or frame to the process that holds it.

    Attributes:
        memory_id: The owning process's allocation key.
        name: Display name of the owner (e.g. "P2 (Word) #1").
        segment: Segment held in this region, if the store is segmented.

    """

    memory_id: int
    name: str
    segment: str | None = None

    @property
    def is_system(self) -> bool:
        """Return True for sentinel owners (OS, fragments)."""
        return self.memory_id == SYSTEM_MEMORY_ID


OS_OWNER = Owner(memory_id=SYSTEM_MEMORY_ID, name="Operating System")
FRAGMENT_OWNER = Owner(memory_id=SYSTEM_MEMORY_ID, name="Internal Fragmentation")
UNUSABLE_OWNER = Owner(memory_id=SYSTEM_MEMORY_ID, name="Unpartitioned")


@dataclass(frozen=True)
class Partition:
    """A contiguous span of physical memory, free or occupied.

    Attributes:
        address: Start address in bytes.
        size: Length in bytes (always positive).
        owner: Who holds the span, or None if it is free.
        requested: Bytes the owner actually asked for, when known.

    """

    address: int
    size: int
    owner: Owner | None = None
    requested: int | None = None

    @property
    def free(self) -> bool:
        """Return True if the partition is available for allocation."""
        return self.owner is None

    @property
    def end(self) -> int:
        """Return the first address past this partition."""
        return self.address + self.size

    @property
    def internal_fragmentation(self) -> int:
        """Return bytes held by the owner but never requested."""
        if self.requested is None:
            return 0
        return self.size - self.requested

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this partition."""
        return {
            "address": self.address,
            "size": self.size,
            "free": self.free,
            "owner": None if self.owner is None else self.owner.name,
            "memory_id": None if self.owner is None else self.owner.memory_id,
            "segment": None if self.owner is None else self.owner.segment,
            "requested": self.requested,
        }


def owned_by(partition: Partition, memory_id: int) -> bool:
    """Return True if *partition* is held by the process keyed *memory_id*."""
    owner = partition.owner
    return owner is not None and not owner.is_system and owner.memory_id == memory_id


class LayoutError(AssertionError):
    """Raised by ``AddressSpace.validate`` when a layout breaks an invariant."""


class AddressSpace:
    """The physical range ``[0, total)`` with a leading OS region."""

    def __init__(self, *, total: int, os_reserved: int) -> None:
        """Create an address space.

        Args:
            total: Total physical memory in bytes.
            os_reserved: Bytes reserved for the operating system at address 0.

        Raises:
            ValueError: If the OS region does not leave any user space.

        """
        if os_reserved <= 0 or total <= os_reserved:
            msg = f"OS region ({os_reserved} B) must be positive and smaller than memory ({total} B)"
            raise ValueError(msg)
        self._total = total
        self._os_reserved = os_reserved

    @property
    def total(self) -> int:
        """Return total physical memory in bytes."""
        return self._total

    @property
    def os_reserved(self) -> int:
        """Return the size of the OS region in bytes."""
        return self._os_reserved

    @property
    def user_start(self) -> int:
        """Return the first user-space address."""
        return self._os_reserved

    @property
    def user_size(self) -> int:
        """Return the number of bytes available to processes."""
        return self._total - self._os_reserved

    def os_partition(self) -> Partition:
        """Return the partition occupied by the operating system."""
        return Partition(address=0, size=self._os_reserved, owner=OS_OWNER)

    def initial_layout(self) -> list[Partition]:
        """Return the root layout: OS region plus one free user region."""
        return [
            self.os_partition(),
            Partition(address=self.user_start, size=self.user_size),
        ]

    def idle_layout(self) -> list[Partition]:
        """Return the layout of an engine whose store could not be built.

        User space is held by a sentinel owner so nothing can be placed
        there, but the layout still covers the whole address space.
        """
        return [
            self.os_partition(),
            Partition(address=self.user_start, size=self.user_size, owner=UNUSABLE_OWNER),
        ]

    def validate(self, partitions: Sequence[Partition]) -> None:
        """Check that *partitions* tile the address space exactly.

        Raises:
            LayoutError: If the layout has a gap, an overlap, a
                non-positive size, or does not sum to ``total``.

        """
        expected = 0
        for partition in partitions:
            if partition.size <= 0:
                msg = f"Partition at {partition.address} has non-positive size {partition.size}"
                raise LayoutError(msg)
            if partition.address != expected:
                msg = f"Partition at {partition.address} should start at {expected}"
                raise LayoutError(msg)
            expected = partition.end
        if expected != self._total:
            msg = f"Partitions cover {expected} B of {self._total} B"
            raise LayoutError(msg)
