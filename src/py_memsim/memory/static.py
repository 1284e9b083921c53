"""Static partitioning — user space cut up once, at boot.

The oldest multiprogramming schemes (IBM OS/360 MFT) divided memory
into partitions when the system started and never changed them.  A
process is loaded into a whole partition even if it needs only part of
it; the unused tail is **internal fragmentation** and stays wasted
until the process exits.

Two flavours:

- **Fixed** — every partition has the same size.  The size must divide
  user space exactly, otherwise the layout is rejected.
- **Variable** — the operator lists the partition sizes; whatever user
  space is left over becomes one extra partition at the end.

Nothing is ever split, merged or moved after construction.
"""

from collections.abc import Sequence
from dataclasses import replace

from py_memsim.errors import InsufficientMemoryError, InvalidPartitionSizeError
from py_memsim.memory.address_space import AddressSpace, Owner, Partition, owned_by
from py_memsim.memory.fit import FitPolicy, select_fit


class StaticPartitioner:
    """A store of partitions fixed at construction time."""

    def __init__(self, space: AddressSpace, sizes: Sequence[int]) -> None:
        """Lay out user space as the given partition sizes, in order.

        Prefer the ``fixed`` and ``variable`` constructors.

        Args:
            space: The address space to partition.
            sizes: Partition sizes in address order; a remainder is
                appended as one extra partition.

        Raises:
            InvalidPartitionSizeError: If a size is non-positive or the
                sizes exceed user space.

        """
        if any(size <= 0 for size in sizes):
            msg = f"Partition sizes must be positive: {list(sizes)}"
            raise InvalidPartitionSizeError(msg)
        if sum(sizes) > space.user_size:
            msg = f"Partitions total {sum(sizes)} B but user space is {space.user_size} B"
            raise InvalidPartitionSizeError(msg)

        self._space = space
        self._partitions: list[Partition] = [space.os_partition()]
        address = space.user_start
        for size in sizes:
            self._partitions.append(Partition(address=address, size=size))
            address += size
        remainder = space.total - address
        if remainder > 0:
            self._partitions.append(Partition(address=address, size=remainder))

    @classmethod
    def fixed(cls, space: AddressSpace, partition_size: int) -> "StaticPartitioner":
        """Divide user space into equal partitions of *partition_size*.

        Raises:
            InvalidPartitionSizeError: If the size is non-positive or does
                not evenly divide user space.

        """
        if partition_size <= 0 or space.user_size % partition_size != 0:
            msg = (
                f"Partition size {partition_size} B does not evenly divide "
                f"user space of {space.user_size} B"
            )
            raise InvalidPartitionSizeError(msg)
        count = space.user_size // partition_size
        return cls(space, [partition_size] * count)

    @classmethod
    def variable(cls, space: AddressSpace, sizes: Sequence[int]) -> "StaticPartitioner":
        """Lay out caller-chosen partition sizes, remainder appended."""
        return cls(space, list(sizes))

    @property
    def partitions(self) -> list[Partition]:
        """Return the layout, OS region first."""
        return list(self._partitions)

    @property
    def free_bytes(self) -> int:
        """Return the total size of free partitions."""
        return sum(p.size for p in self._partitions if p.free)

    def allocate(self, owner: Owner, size: int, policy: FitPolicy) -> Partition:
        """Load a process into one whole free partition.

        Args:
            owner: The tag to record on the partition.
            size: Bytes the process needs.
            policy: Fit rule used to choose the partition.

        Returns:
            The occupied partition.

        Raises:
            InsufficientMemoryError: If no free partition is large enough.
            InvalidRequestError: If *size* is not positive.

        """
        index = select_fit(self._partitions, size, policy)
        if index is None:
            msg = f"No free partition can hold {size} B for {owner.name}"
            raise InsufficientMemoryError(msg)
        placed = replace(self._partitions[index], owner=owner, requested=size)
        self._partitions[index] = placed
        return placed

    def free(self, memory_id: int) -> int:
        """Release every partition held by *memory_id*.

        Returns:
            The number of bytes released (0 for an unknown id).

        """
        released = 0
        for index, partition in enumerate(self._partitions):
            if owned_by(partition, memory_id):
                self._partitions[index] = replace(partition, owner=None, requested=None)
                released += partition.size
        return released

    def regions_for(self, memory_id: int) -> list[Partition]:
        """Return the partitions held by *memory_id*."""
        return [p for p in self._partitions if owned_by(p, memory_id)]
