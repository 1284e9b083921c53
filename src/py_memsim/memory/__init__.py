"""Memory subsystem — the backing stores and the fit rules they share.

Re-exports public symbols so callers can write::

    from py_memsim.memory import DynamicPartitioner, FitPolicy
"""

from py_memsim.memory.address_space import (
    FRAGMENT_OWNER,
    OS_OWNER,
    UNUSABLE_OWNER,
    AddressSpace,
    LayoutError,
    Owner,
    Partition,
)
from py_memsim.memory.dynamic import DynamicPartitioner, coalesce, split_at
from py_memsim.memory.fit import FitPolicy, select_fit
from py_memsim.memory.paging import Frame, PageAllocator, PageTableEntry, pages_needed
from py_memsim.memory.segmentation import PlannedSplit, SegmentAllocator, plan_segments
from py_memsim.memory.static import StaticPartitioner

__all__ = [
    "FRAGMENT_OWNER",
    "OS_OWNER",
    "UNUSABLE_OWNER",
    "AddressSpace",
    "DynamicPartitioner",
    "FitPolicy",
    "Frame",
    "LayoutError",
    "Owner",
    "PageAllocator",
    "PageTableEntry",
    "Partition",
    "PlannedSplit",
    "SegmentAllocator",
    "StaticPartitioner",
    "coalesce",
    "pages_needed",
    "plan_segments",
    "select_fit",
    "split_at",
]
