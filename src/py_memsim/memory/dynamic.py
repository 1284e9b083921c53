"""Dynamic partitioning — partitions created on demand.

Instead of fixing partitions at boot (see ``static.py``), a dynamic
store starts with one big free region and carves exactly what each
process asks for:

    [ OS | free 15 MiB                                   ]
    [ OS | A 3 MiB | free 12 MiB                          ]
    [ OS | A 3 MiB | B 2 MiB | free 10 MiB                ]

Three operations keep the layout healthy:

- **Split** — on allocation, the chosen free region becomes an
  occupied head of exactly the requested size plus a free tail.  If
  the tail would be tiny (not larger than ``split_threshold``) it is
  handed to the process instead; a sliver nobody can use is worse
  than a little internal fragmentation.
- **Coalesce** — on free, adjacent free regions are merged so the
  layout never holds two free neighbours.
- **Compact** — on request, every occupied region slides down towards
  the OS in its original order and all free space collects into one
  region at the top.  This is the only cure for **external
  fragmentation** (enough free bytes in total, but no single region
  big enough).

Why an ordered list rather than a linked list?
    A real kernel threads free blocks through a doubly-linked list so
    a split or merge is O(1) given the node.  Here the layout is a
    Python list of immutable ``Partition`` records and every splice is
    an index operation.  Neighbours are ``i - 1`` and ``i + 1``; there
    are no node references to keep consistent.

The split and coalesce steps are module-level functions over a plain
list so the segmentation allocator can replay them on a scratch copy.
"""

from dataclasses import replace

from py_memsim.errors import InsufficientMemoryError
from py_memsim.memory.address_space import AddressSpace, Owner, Partition, owned_by
from py_memsim.memory.fit import FitPolicy, select_fit


def split_at(
    layout: list[Partition],
    index: int,
    owner: Owner,
    size: int,
    *,
    threshold: int = 0,
) -> Partition:
    """Occupy the free region at *index* with *size* bytes, splitting off the rest.

    The remainder becomes a new free region right after the occupied
    head, unless it is not larger than *threshold*, in which case the
    whole region is consumed.

    Args:
        layout: The layout to modify in place.
        index: Index of a free region at least *size* bytes long.
        owner: The tag to record on the occupied head.
        size: Bytes requested.
        threshold: Largest remainder that is not worth splitting off.

    Returns:
        The occupied partition.

    """
    region = layout[index]
    remainder = region.size - size
    if remainder > threshold:
        head = Partition(address=region.address, size=size, owner=owner, requested=size)
        tail = Partition(address=region.address + size, size=remainder)
        layout[index : index + 1] = [head, tail]
        return head
    whole = replace(region, owner=owner, requested=size)
    layout[index] = whole
    return whole


def coalesce(layout: list[Partition]) -> int:
    """Merge every run of adjacent free regions in place.

    Returns:
        The number of merges performed.

    """
    merges = 0
    index = 0
    while index < len(layout) - 1:
        current, following = layout[index], layout[index + 1]
        if current.free and following.free:
            layout[index : index + 2] = [replace(current, size=current.size + following.size)]
            merges += 1
        else:
            index += 1
    return merges


class DynamicPartitioner:
    """A store of variable-size partitions that split, merge and compact."""

    def __init__(self, space: AddressSpace, *, split_threshold: int = 0) -> None:
        """Create a store holding the OS region and one free user region.

        Args:
            space: The address space to manage.
            split_threshold: Remainders this small are not split off.

        """
        self._space = space
        self._split_threshold = split_threshold
        self._partitions: list[Partition] = space.initial_layout()

    @property
    def partitions(self) -> list[Partition]:
        """Return the layout, OS region first."""
        return list(self._partitions)

    @property
    def split_threshold(self) -> int:
        """Return the largest remainder that is not split off."""
        return self._split_threshold

    @property
    def free_bytes(self) -> int:
        """Return the total size of free regions."""
        return sum(p.size for p in self._partitions if p.free)

    @property
    def largest_free(self) -> int:
        """Return the size of the largest free region (0 if none)."""
        return max((p.size for p in self._partitions if p.free), default=0)

    def allocate(self, owner: Owner, size: int, policy: FitPolicy) -> Partition:
        """Place *size* bytes in a free region chosen by *policy*.

        Raises:
            InsufficientMemoryError: If no single free region is large
                enough, even when the free total would be.
            InvalidRequestError: If *size* is not positive.

        """
        index = select_fit(self._partitions, size, policy)
        if index is None:
            msg = (
                f"No free region can hold {size} B for {owner.name} "
                f"(largest free: {self.largest_free} B)"
            )
            raise InsufficientMemoryError(msg)
        return self.place(index, owner, size)

    def place(self, index: int, owner: Owner, size: int) -> Partition:
        """Occupy the free region at *index*, honouring the split threshold."""
        return split_at(self._partitions, index, owner, size, threshold=self._split_threshold)

    def free(self, memory_id: int) -> int:
        """Release every region held by *memory_id* and coalesce.

        Freeing an unknown id is a no-op.

        Returns:
            The number of bytes released.

        """
        released = 0
        for index, partition in enumerate(self._partitions):
            if owned_by(partition, memory_id):
                self._partitions[index] = replace(partition, owner=None, requested=None)
                released += partition.size
        if released:
            coalesce(self._partitions)
        return released

    def regions_for(self, memory_id: int) -> list[Partition]:
        """Return the regions held by *memory_id*, in address order."""
        return [p for p in self._partitions if owned_by(p, memory_id)]

    def compact(self) -> int:
        """Slide occupied regions down and gather free space at the top.

        Occupied regions keep their relative order, size and owner;
        only their addresses change.  Running it twice is the same as
        running it once.

        Returns:
            The number of regions whose address changed.

        """
        os_region = self._partitions[0]
        compacted = [os_region]
        address = os_region.end
        free_total = 0
        moved = 0
        for partition in self._partitions[1:]:
            if partition.free:
                free_total += partition.size
                continue
            if partition.address != address:
                moved += 1
            compacted.append(replace(partition, address=address))
            address += partition.size
        if free_total:
            compacted.append(Partition(address=address, size=free_total))
        self._partitions = compacted
        return moved
