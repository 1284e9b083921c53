"""Engine logging and audit trail.

Every decision the memory engine makes (placing, queueing or
rejecting a process, freeing a partition, compacting memory) is recorded as a
structured log entry.  Reading the log back tells the story of how the
address space reached its current shape, which is often more useful
than the final layout itself.

- **LogLevel** — severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry** — one record: level, message, the store or subsystem
  that produced it, and the process instance it concerns.
- **Logger** — an append-only buffer that can be read back whole, by
  severity, by source, or as the history of a single instance.

Design choices:
    - **IntEnum for levels** so a minimum-level query is a plain ``>=``.
    - **Entries carry an instance id** rather than a name, because names
      are display text while ids are what ``remove_process`` takes.  A
      process's whole life (launch, queueing, admission, free) can then
      be read back with ``for_instance()``.
    - **Queries return new lists** so callers can keep or mutate them
      without touching the buffer.
"""

from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """Severity of an engine event, lowest first."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """A single engine event.

    Attributes:
        level: The severity of this event.
        message: What happened, in words.
        source: The store or subsystem that reported it (e.g. "dynamic",
            "queue", "engine").
        instance_id: The process instance involved, if any.

    """

    level: LogLevel
    message: str
    source: str
    instance_id: int | None = None

    def __str__(self) -> str:
        """Format as ``[LEVEL] source: message``."""
        return f"[{self.level.name}] {self.source}: {self.message}"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this entry."""
        return {
            "level": self.level.name,
            "source": self.source,
            "message": self.message,
            "instance_id": self.instance_id,
        }


class Logger:
    """Append-only record of engine events."""

    def __init__(self) -> None:
        """Create an empty logger."""
        self._entries: list[LogEntry] = []

    def __len__(self) -> int:
        """Return the number of recorded entries."""
        return len(self._entries)

    @property
    def entries(self) -> list[LogEntry]:
        """Return all log entries in chronological order."""
        return list(self._entries)

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
        instance_id: int | None = None,
    ) -> None:
        """Record an event.

        Args:
            level: Severity of the event.
            message: What happened.
            source: Store or subsystem reporting it.
            instance_id: Process instance the event concerns.

        """
        self._entries.append(
            LogEntry(level=level, message=message, source=source, instance_id=instance_id)
        )

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
        instance_id: int | None = None,
    ) -> list[LogEntry]:
        """Return entries matching every given criterion, oldest first.

        Args:
            min_level: Keep entries at or above this level.
            source: Keep entries from this store or subsystem.
            instance_id: Keep entries about this process instance.

        """
        return [
            entry
            for entry in self._entries
            if (min_level is None or entry.level >= min_level)
            and (source is None or entry.source == source)
            and (instance_id is None or entry.instance_id == instance_id)
        ]

    def for_instance(self, instance_id: int) -> list[LogEntry]:
        """Return the history of one process instance.

        The trail survives the instance: after ``remove_process`` its
        launch and free events are still here until the log is cleared.
        """
        return self.filter(instance_id=instance_id)

    def clear(self) -> None:
        """Remove all log entries."""
        self._entries.clear()
