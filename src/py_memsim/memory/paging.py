"""Paging — fixed-size frames and per-process page tables.

User space is divided into fixed-size **frames**.  A process's
segments are cut into pages of the same size, and each page is placed
in any free frame.  The frames a process receives need not be
adjacent; the **page table** records which frame holds which page of
which segment.

Why frames instead of variable-size regions?
    Fixed-size allocation eliminates **external fragmentation** — the
    situation where total free memory is sufficient but no single
    contiguous region is large enough.  Any free frame can hold any
    page, so a request fails only when there are not enough frames in
    total.  The price is internal fragmentation: the last page of each
    segment is usually only partly used.

Layout::

    [ OS | frame 0 | frame 1 | ... | frame N-1 | fragment ]

Frame ``i`` starts at ``os_reserved + i * page_size``.  If user space
is not a multiple of the page size, the bytes after the last whole
frame form a permanent fragment that is never allocated.

Allocation is all-or-nothing: the free-frame count is checked before
any frame is touched.  Frames are handed out lowest address first,
segment by segment, and logical page numbers restart at 0 in every
segment.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from py_memsim.errors import InsufficientMemoryError, InvalidRequestError
from py_memsim.memory.address_space import (
    FRAGMENT_OWNER,
    AddressSpace,
    Owner,
    Partition,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from py_memsim.process.templates import Segment


@dataclass(frozen=True)
class Frame:
    """One physical frame.

    Attributes:
        id: Frame number, counted from the start of user space.
        address: Physical start address.
        size: Frame size in bytes (the same for every frame).
        owner: The process holding the frame, or None if free.
        logical_page: Page number within the owner's segment.

    """

    id: int
    address: int
    size: int
    owner: Owner | None = None
    logical_page: int | None = None

    @property
    def free(self) -> bool:
        """Return True if the frame is unallocated."""
        return self.owner is None

    @property
    def segment(self) -> str | None:
        """Return the name of the segment stored in this frame."""
        return None if self.owner is None else self.owner.segment

    def to_partition(self) -> Partition:
        """Return the frame as a layout partition."""
        return Partition(address=self.address, size=self.size, owner=self.owner)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this frame."""
        return {
            "id": self.id,
            "address": self.address,
            "size": self.size,
            "free": self.free,
            "owner": None if self.owner is None else self.owner.name,
            "memory_id": None if self.owner is None else self.owner.memory_id,
            "segment": self.segment,
            "logical_page": self.logical_page,
        }


@dataclass(frozen=True)
class PageTableEntry:
    """Maps one (segment, logical page) of a process to a physical frame."""

    segment: str
    page: int
    frame_id: int

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this entry."""
        return {"segment": self.segment, "page": self.page, "frame_id": self.frame_id}


def pages_needed(segments: Sequence[Segment], page_size: int) -> int:
    """Return the total pages *segments* need at *page_size* bytes per page."""
    return sum(math.ceil(segment.size / page_size) for segment in segments)


class PageAllocator:
    """Manage physical frames and per-process page tables.

    The allocator owns two data structures:
    - The **frame table**, one ``Frame`` per page-sized slot of user space.
    - A **page table dict** mapping each memory id to its entries.
    """

    def __init__(self, space: AddressSpace, *, page_size: int) -> None:
        """Divide user space into frames of *page_size* bytes.

        Args:
            space: The address space to divide.
            page_size: Frame size in bytes.

        Raises:
            InvalidRequestError: If the page size is not positive or is
                larger than user space.

        """
        if page_size <= 0 or page_size > space.user_size:
            msg = f"Page size {page_size} B must be between 1 and {space.user_size} B"
            raise InvalidRequestError(msg)
        self._space = space
        self._page_size = page_size
        count = space.user_size // page_size
        self._frames: list[Frame] = [
            Frame(id=i, address=space.user_start + i * page_size, size=page_size)
            for i in range(count)
        ]
        leftover = space.user_size - count * page_size
        self._fragment: Partition | None = None
        if leftover > 0:
            self._fragment = Partition(
                address=space.user_start + count * page_size,
                size=leftover,
                owner=FRAGMENT_OWNER,
            )
        self._page_tables: defaultdict[int, list[PageTableEntry]] = defaultdict(list)

    @property
    def page_size(self) -> int:
        """Return the frame size in bytes."""
        return self._page_size

    @property
    def frames(self) -> list[Frame]:
        """Return the frame table in address order."""
        return list(self._frames)

    @property
    def total_frames(self) -> int:
        """Return the number of frames."""
        return len(self._frames)

    @property
    def free_frames(self) -> int:
        """Return the number of unallocated frames."""
        return sum(1 for frame in self._frames if frame.free)

    @property
    def free_bytes(self) -> int:
        """Return the bytes held by free frames."""
        return self.free_frames * self._page_size

    @property
    def fragment(self) -> Partition | None:
        """Return the never-allocatable tail past the last frame, if any."""
        return self._fragment

    @property
    def partitions(self) -> list[Partition]:
        """Return the full layout: OS region, every frame, then the fragment."""
        layout = [self._space.os_partition()]
        layout.extend(frame.to_partition() for frame in self._frames)
        if self._fragment is not None:
            layout.append(self._fragment)
        return layout

    def pages_for(self, memory_id: int) -> list[PageTableEntry]:
        """Return the page table of a process (empty if it holds no frames)."""
        return list(self._page_tables.get(memory_id, []))

    def frames_for(self, memory_id: int) -> list[Frame]:
        """Return the frames held by *memory_id*, in address order."""
        return [f for f in self._frames if f.owner is not None and f.owner.memory_id == memory_id]

    def allocate(
        self,
        memory_id: int,
        name: str,
        segments: Sequence[Segment],
    ) -> list[PageTableEntry]:
        """Allocate frames for every page of every segment.

        Args:
            memory_id: Allocation key of the process.
            name: Instance name recorded on each frame.
            segments: The process's segments; empty ones are skipped.

        Returns:
            The new page table entries, segment by segment.

        Raises:
            InvalidRequestError: If the process needs no pages at all.
            InsufficientMemoryError: If fewer frames are free than pages
                are needed; nothing is allocated.

        """
        needed = pages_needed(segments, self._page_size)
        if needed == 0:
            msg = f"{name} has no non-empty segments"
            raise InvalidRequestError(msg)
        free_indices = [i for i, frame in enumerate(self._frames) if frame.free]
        if needed > len(free_indices):
            msg = f"Cannot allocate {needed} frames for {name}: only {len(free_indices)} free"
            raise InsufficientMemoryError(msg)

        entries: list[PageTableEntry] = []
        slots = iter(free_indices)
        for segment in segments:
            owner = Owner(memory_id=memory_id, name=name, segment=segment.name)
            for page in range(math.ceil(segment.size / self._page_size)):
                index = next(slots)
                self._frames[index] = replace(self._frames[index], owner=owner, logical_page=page)
                entries.append(PageTableEntry(segment=segment.name, page=page, frame_id=index))

        self._page_tables[memory_id].extend(entries)
        return entries

    def free(self, memory_id: int) -> int:
        """Free every frame held by *memory_id* and drop its page table.

        Freeing an unknown id is a no-op.

        Returns:
            The number of bytes released.

        """
        released = 0
        for index, frame in enumerate(self._frames):
            if frame.owner is not None and frame.owner.memory_id == memory_id:
                self._frames[index] = replace(frame, owner=None, logical_page=None)
                released += frame.size
        self._page_tables.pop(memory_id, None)
        return released
