"""Fit policies — choosing which free region receives a request.

When more than one free region is large enough, the allocator needs a
rule to pick one.  The three classic rules all scan regions in address
order and differ only in which qualifying region wins:

- **first-fit** — the first region that is big enough.  Fast, and it
  tends to leave large holes at the high end of memory.
- **best-fit** — the smallest region that is big enough.  Leaves the
  least slack per allocation but produces many tiny, useless holes.
- **worst-fit** — the largest region.  Keeps the leftover hole as big
  as possible, in the hope it stays useful.

Ties (two qualifying regions of the same size) always go to the region
found first, i.e. the one at the lower address.

``select_fit`` is a pure function: it never mutates the regions it is
given, so the segmentation allocator can run it once against a scratch
copy of the layout and again against the live layout and get the same
answer both times.
"""

from collections.abc import Sequence
from enum import StrEnum
from typing import Protocol

from py_memsim.errors import InvalidRequestError


class FitPolicy(StrEnum):
    """Rules for choosing among several qualifying free regions."""

    FIRST = "first-fit"
    BEST = "best-fit"
    WORST = "worst-fit"


class Region(Protocol):
    """Anything with a size and a free flag can be fitted."""

    @property
    def size(self) -> int:
        """Return the region size in bytes."""
        ...

    @property
    def free(self) -> bool:
        """Return True if the region can receive an allocation."""
        ...


def select_fit(regions: Sequence[Region], size: int, policy: FitPolicy) -> int | None:
    """Return the index of the region chosen for a request of *size* bytes.

    Args:
        regions: Candidate regions in address order.
        size: Requested size in bytes.
        policy: The fit rule to apply.

    Returns:
        The index of the chosen region, or None if nothing fits.

    Raises:
        InvalidRequestError: If *size* is zero or negative.

    """
    if size <= 0:
        msg = f"Requested size must be positive, got {size}"
        raise InvalidRequestError(msg)

    policy = FitPolicy(policy)
    chosen: int | None = None
    for index, region in enumerate(regions):
        if not region.free or region.size < size:
            continue
        if policy is FitPolicy.FIRST:
            return index
        if chosen is None:
            chosen = index
        elif policy is FitPolicy.BEST and region.size < regions[chosen].size:
            chosen = index
        elif policy is FitPolicy.WORST and region.size > regions[chosen].size:
            chosen = index
    return chosen
