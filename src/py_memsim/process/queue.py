"""Waiting queue — processes that did not fit yet.

With static or dynamic partitioning a process that finds no suitable
region is not turned away; it waits.  Every time memory is freed the
queue is scanned from front to back and each waiting process gets one
more try against the new layout.

The scan is **strict FIFO with a full pass**: a large process at the
head that still does not fit does not stop a smaller one behind it
from being admitted.  Processes that fail again keep their relative
order, so the oldest request is always tried first next time.
"""

from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from py_memsim.process.templates import ProcessTemplate


@dataclass(frozen=True)
class WaitingEntry:
    """A queued request: which program, and how many bytes it needs."""

    template: ProcessTemplate
    requested_size: int

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this entry."""
        return {"template": self.template.name, "requested_size": self.requested_size}


class WaitingQueue:
    """FIFO of processes waiting for memory."""

    def __init__(self) -> None:
        """Create an empty queue."""
        self._entries: deque[WaitingEntry] = deque()

    def __len__(self) -> int:
        """Return the number of waiting processes."""
        return len(self._entries)

    def __iter__(self) -> Iterator[WaitingEntry]:
        """Iterate over waiting processes, oldest first."""
        return iter(list(self._entries))

    @property
    def entries(self) -> list[WaitingEntry]:
        """Return the waiting processes, oldest first."""
        return list(self._entries)

    def enqueue(self, entry: WaitingEntry) -> int:
        """Append *entry* to the back of the queue.

        Returns:
            The entry's 1-based position in the queue.

        """
        self._entries.append(entry)
        return len(self._entries)

    def drain(self, admit: Callable[[WaitingEntry], bool]) -> list[WaitingEntry]:
        """Retry every waiting process once, oldest first.

        Args:
            admit: Tries to allocate an entry; returns True on success.

        Returns:
            The entries that were admitted, in the order they were tried.

        """
        admitted: list[WaitingEntry] = []
        still_waiting: deque[WaitingEntry] = deque()
        while self._entries:
            entry = self._entries.popleft()
            if admit(entry):
                admitted.append(entry)
            else:
                still_waiting.append(entry)
        self._entries = still_waiting
        return admitted

    def clear(self) -> None:
        """Drop every waiting process."""
        self._entries.clear()
