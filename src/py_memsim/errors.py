"""Allocation errors shared by every backing store.

The engine distinguishes three ways a request can go wrong:

- **InvalidPartitionSizeError** — a static layout cannot be built
  (e.g. 15 MiB of user space cannot be cut into 4 MiB partitions).
- **InsufficientMemoryError** — no free region or frame set can hold
  the request right now.
- **InvalidRequestError** — the request itself is malformed: a zero or
  negative size, an unknown process, or an operation the active
  technique does not support (``compact()`` on a paged store).

All three derive from ``AllocationError`` so callers that only care
whether something failed can catch one type.  None of them is fatal:
allocators raise *before* touching any state, so the store is always
left exactly as it was.
"""


class AllocationError(Exception):
    """Base class for every memory-engine failure."""


class InvalidPartitionSizeError(AllocationError):
    """Raise when a static partition layout does not fit user space."""


class InsufficientMemoryError(AllocationError):
    """Raise when no free region or frame set can satisfy a request."""


class InvalidRequestError(AllocationError):
    """Raise when a request is malformed or unsupported by the backing store."""
