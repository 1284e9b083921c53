"""Segmentation — one region per program section, all or nothing.

A segmented process is not one blob but a set of named sections
(``.text``, ``.data``, ``.bss``, ``.stack``, ``.heap``), each placed in
its own free region.  The sections need not be adjacent, which lets a
large program fit into a fragmented address space that could not hold
it in one piece.

The catch is atomicity.  If ``.text`` and ``.data`` fit but ``.heap``
does not, the process cannot run, and the regions already carved for
the first two must not leak.  Rather than allocate-then-roll-back, the
allocator works in two passes:

    1. **Plan** — ``plan_segments`` replays every fit and split against
       a scratch copy of the layout.  It is a pure function: it either
       returns the complete list of splits or raises, and the live
       layout is never touched.
    2. **Commit** — only a complete plan is applied to the live layout,
       split by split, in the same order.  Because the plan was built
       with the same split rule on an identical copy, every recorded
       index points at the same free region in the live layout.

Sections of size 0 are skipped entirely.  Freeing a process releases
every region tagged with its memory id and coalesces, exactly as in
the dynamic store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from py_memsim.errors import InsufficientMemoryError, InvalidRequestError
from py_memsim.memory.address_space import AddressSpace, Owner, Partition
from py_memsim.memory.dynamic import DynamicPartitioner, split_at
from py_memsim.memory.fit import FitPolicy, select_fit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from py_memsim.process.templates import Segment

# Stand-in owner for regions claimed on the scratch copy.
_PLANNED = Owner(memory_id=-1, name="planned")


@dataclass(frozen=True)
class PlannedSplit:
    """One step of a segmentation plan: put *segment* at layout *index*."""

    index: int
    segment: str
    size: int


def plan_segments(
    layout: Sequence[Partition],
    segments: Sequence[Segment],
    policy: FitPolicy,
) -> list[PlannedSplit]:
    """Work out where every non-empty segment would go, without committing.

    Args:
        layout: The current layout (not modified).
        segments: The process's segments, in placement order.
        policy: Fit rule applied to each segment in turn.

    Returns:
        The splits to apply, in order.

    Raises:
        InsufficientMemoryError: If any segment finds no free region.

    """
    scratch = list(layout)
    plan: list[PlannedSplit] = []
    for segment in segments:
        if segment.size == 0:
            continue
        index = select_fit(scratch, segment.size, policy)
        if index is None:
            msg = f"No free region can hold segment {segment.name} ({segment.size} B)"
            raise InsufficientMemoryError(msg)
        split_at(scratch, index, _PLANNED, segment.size)
        plan.append(PlannedSplit(index=index, segment=segment.name, size=segment.size))
    return plan


class SegmentAllocator:
    """Place each segment of a process in its own region, atomically."""

    def __init__(self, space: AddressSpace) -> None:
        """Create a segmented store over *space*."""
        self._store = DynamicPartitioner(space, split_threshold=0)

    @property
    def partitions(self) -> list[Partition]:
        """Return the layout, OS region first."""
        return self._store.partitions

    @property
    def free_bytes(self) -> int:
        """Return the total size of free regions."""
        return self._store.free_bytes

    @property
    def largest_free(self) -> int:
        """Return the size of the largest free region."""
        return self._store.largest_free

    def allocate(
        self,
        memory_id: int,
        name: str,
        segments: Sequence[Segment],
        policy: FitPolicy,
    ) -> list[Partition]:
        """Allocate every non-empty segment or nothing at all.

        Args:
            memory_id: Allocation key of the process.
            name: Instance name recorded on each region.
            segments: The process's segments.
            policy: Fit rule.

        Returns:
            The occupied regions, one per non-empty segment, in segment order.

        Raises:
            InvalidRequestError: If every segment is empty.
            InsufficientMemoryError: If any segment cannot be placed; the
                layout is left unchanged.

        """
        if not any(segment.size > 0 for segment in segments):
            msg = f"{name} has no non-empty segments"
            raise InvalidRequestError(msg)
        plan = plan_segments(self._store.partitions, segments, policy)

        placed: list[Partition] = []
        for step in plan:
            target = self._store.partitions[step.index]
            if not target.free or target.size < step.size:
                msg = f"Plan diverged from layout at index {step.index} for {step.segment}"
                raise RuntimeError(msg)
            owner = Owner(memory_id=memory_id, name=name, segment=step.segment)
            placed.append(self._store.place(step.index, owner, step.size))
        return placed

    def free(self, memory_id: int) -> int:
        """Release every segment of *memory_id* and coalesce.

        Returns:
            The number of bytes released.

        """
        return self._store.free(memory_id)

    def regions_for(self, memory_id: int) -> list[Partition]:
        """Return the regions held by *memory_id*, in address order."""
        return self._store.regions_for(memory_id)
