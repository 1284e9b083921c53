"""Tests for paging: frames, page tables and all-or-nothing allocation."""

import pytest

from py_memsim.errors import InsufficientMemoryError, InvalidRequestError
from py_memsim.memory.address_space import FRAGMENT_OWNER, AddressSpace
from py_memsim.memory.paging import PageAllocator, PageTableEntry, pages_needed
from py_memsim.process.templates import Segment
from py_memsim.units import KIB, MIB

TOTAL = 16 * MIB
OS_SIZE = 1 * MIB
PAGE = 64 * KIB
FRAME_COUNT = 240  # 15 MiB / 64 KiB
ODD_PAGE = 100 * KIB
ODD_FRAME_COUNT = 153  # 15360 KiB // 100 KiB
ODD_FRAGMENT = 60 * KIB  # 15360 KiB - 153 * 100 KiB


def _allocator(page_size: int = PAGE) -> PageAllocator:
    """Create a paged store over the default 16 MiB space."""
    return PageAllocator(AddressSpace(total=TOTAL, os_reserved=OS_SIZE), page_size=page_size)


class TestFrameTable:
    """Verify how user space is cut into frames."""

    def test_frame_count(self) -> None:
        """15 MiB of user space holds 240 frames of 64 KiB."""
        allocator = _allocator()
        assert allocator.total_frames == FRAME_COUNT
        assert allocator.free_frames == FRAME_COUNT
        assert allocator.fragment is None

    def test_frame_addresses(self) -> None:
        """Frame i starts at os_reserved + i * page_size."""
        frames = _allocator().frames
        assert frames[0].address == OS_SIZE
        assert frames[3].address == OS_SIZE + 3 * PAGE

    def test_leftover_becomes_fragment(self) -> None:
        """A page size that does not divide user space leaves a fragment."""
        allocator = _allocator(ODD_PAGE)
        assert allocator.total_frames == ODD_FRAME_COUNT
        assert allocator.fragment is not None
        assert allocator.fragment.size == ODD_FRAGMENT
        assert allocator.fragment.owner is FRAGMENT_OWNER

    def test_layout_covers_memory(self) -> None:
        """OS region, frames and fragment tile the address space."""
        space = AddressSpace(total=TOTAL, os_reserved=OS_SIZE)
        space.validate(PageAllocator(space, page_size=ODD_PAGE).partitions)

    def test_page_larger_than_user_space_rejected(self) -> None:
        """No frame can be bigger than user space."""
        with pytest.raises(InvalidRequestError):
            _allocator(TOTAL)


class TestAllocate:
    """Verify frame assignment and page tables."""

    def test_pages_go_to_lowest_frames(self) -> None:
        """Two .text pages and one .data page take frames 0, 1 and 2."""
        allocator = _allocator()
        entries = allocator.allocate(
            1, "P1 #1", [Segment(".text", 100 * KIB), Segment(".data", 10 * KIB)]
        )
        assert entries == [
            PageTableEntry(segment=".text", page=0, frame_id=0),
            PageTableEntry(segment=".text", page=1, frame_id=1),
            PageTableEntry(segment=".data", page=0, frame_id=2),
        ]
        assert allocator.free_frames == FRAME_COUNT - 3

    def test_frames_record_segment_and_page(self) -> None:
        """Each frame knows which segment page it holds."""
        allocator = _allocator()
        allocator.allocate(1, "P1 #1", [Segment(".text", 100 * KIB)])
        frame = allocator.frames[1]
        assert frame.segment == ".text"
        assert frame.logical_page == 1

    def test_freed_frames_are_reused(self) -> None:
        """A later process fills the holes left by an earlier one."""
        allocator = _allocator()
        allocator.allocate(1, "A", [Segment(".image", 2 * PAGE)])
        allocator.allocate(2, "B", [Segment(".image", PAGE)])
        allocator.free(1)
        entries = allocator.allocate(3, "C", [Segment(".image", 3 * PAGE)])
        assert [e.frame_id for e in entries] == [0, 1, 3]

    def test_not_enough_frames_allocates_nothing(self) -> None:
        """A request for more frames than are free changes nothing."""
        allocator = _allocator()
        before = allocator.frames
        with pytest.raises(InsufficientMemoryError, match="frames"):
            allocator.allocate(1, "huge", [Segment(".heap", (FRAME_COUNT + 1) * PAGE)])
        assert allocator.frames == before
        assert allocator.pages_for(1) == []

    def test_all_frames_can_be_used(self) -> None:
        """A process may take every frame."""
        allocator = _allocator()
        allocator.allocate(1, "all", [Segment(".heap", FRAME_COUNT * PAGE)])
        assert allocator.free_frames == 0

    def test_empty_process_rejected(self) -> None:
        """A process needing no pages is malformed."""
        with pytest.raises(InvalidRequestError):
            _allocator().allocate(1, "empty", [Segment(".bss", 0)])


class TestFree:
    """Verify releasing frames."""

    def test_free_drops_page_table(self) -> None:
        """Freeing returns every frame and forgets the page table."""
        allocator = _allocator()
        allocator.allocate(1, "A", [Segment(".text", 3 * PAGE)])
        assert allocator.free(1) == 3 * PAGE
        assert allocator.free_frames == FRAME_COUNT
        assert allocator.pages_for(1) == []
        assert allocator.frames_for(1) == []

    def test_free_unknown_is_noop(self) -> None:
        """Freeing an id with no frames releases nothing."""
        assert _allocator().free(7) == 0


class TestPagesNeeded:
    """Verify page counting."""

    def test_partial_pages_round_up(self) -> None:
        """Each segment rounds up to whole pages separately."""
        segments = [Segment(".text", PAGE + 1), Segment(".data", 1), Segment(".bss", 0)]
        assert pages_needed(segments, PAGE) == 3
