"""Process registry — which running instance owns which memory.

Launching a template produces a **process instance** with two ids:

- ``instance_id`` — the handle the user sees and passes to
  ``remove_process``.
- ``memory_id`` — the key stamped on every region or frame the
  instance holds.  Stores never see instances; they only see this key.

Both counters are monotonic and advance **only** when an allocation
succeeds.  A failed or queued attempt consumes no id, so the ids of
running instances have no gaps caused by failures.  The registry
therefore hands out ids in two steps: ``prepare()`` builds a candidate
instance carrying the *next* ids, and ``add()`` commits it once the
store has accepted the allocation.

Display names number the launches of each template ("P1 (Notepad) #1",
"#2"...).  The launch count only grows until ``clear()``, so a name is
never handed out twice even after earlier copies have exited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from py_memsim.errors import InvalidRequestError

if TYPE_CHECKING:
    from py_memsim.memory.paging import PageTableEntry
    from py_memsim.process.templates import ProcessTemplate, Segment


@dataclass
class ProcessInstance:
    """A template loaded into memory.

    Attributes:
        instance_id: User-facing handle.
        memory_id: Key recorded on the instance's regions or frames.
        template: The program this instance runs.
        name: Display name, e.g. "P2 (Word) #2".
        requested_size: Bytes requested from a single-region store.
        page_table: Page table entries, for paged instances.

    """

    instance_id: int
    memory_id: int
    template: ProcessTemplate
    name: str
    requested_size: int = 0
    page_table: list[PageTableEntry] = field(default_factory=list)

    @property
    def template_name(self) -> str:
        """Return the name of the template this instance was launched from."""
        return self.template.name

    @property
    def segments(self) -> tuple[Segment, ...]:
        """Return the instance's segments (those of its template)."""
        return self.template.segments

    def sorted_page_table(self) -> list[PageTableEntry]:
        """Return page table entries ordered by segment name, then page."""
        return sorted(self.page_table, key=lambda entry: (entry.segment, entry.page))

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this instance."""
        return {
            "instance_id": self.instance_id,
            "memory_id": self.memory_id,
            "name": self.name,
            "template": self.template_name,
            "segments": [segment.to_dict() for segment in self.segments],
            "requested_size": self.requested_size,
            "page_table": [entry.to_dict() for entry in self.sorted_page_table()],
        }


class ProcessRegistry:
    """Track running instances and hand out their ids."""

    def __init__(self) -> None:
        """Create an empty registry whose ids start at 1."""
        self._instances: dict[int, ProcessInstance] = {}
        self._next_instance_id = 1
        self._next_memory_id = 1
        self._launches: dict[str, int] = {}

    @property
    def next_instance_id(self) -> int:
        """Return the id the next committed instance will receive."""
        return self._next_instance_id

    @property
    def next_memory_id(self) -> int:
        """Return the memory id the next committed instance will receive."""
        return self._next_memory_id

    @property
    def instances(self) -> list[ProcessInstance]:
        """Return running instances in launch order."""
        return list(self._instances.values())

    def __len__(self) -> int:
        """Return the number of running instances."""
        return len(self._instances)

    def __contains__(self, instance_id: object) -> bool:
        """Return True if *instance_id* is running."""
        return instance_id in self._instances

    def instance_name(self, template: ProcessTemplate) -> str:
        """Return the display name a new instance of *template* would get."""
        return f"{template.name} #{self._launches.get(template.name, 0) + 1}"

    def prepare(self, template: ProcessTemplate, *, requested_size: int = 0) -> ProcessInstance:
        """Build an uncommitted instance carrying the next ids."""
        return ProcessInstance(
            instance_id=self._next_instance_id,
            memory_id=self._next_memory_id,
            template=template,
            name=self.instance_name(template),
            requested_size=requested_size,
        )

    def add(self, instance: ProcessInstance) -> ProcessInstance:
        """Commit a prepared instance and advance both counters.

        Raises:
            RuntimeError: If the instance was not prepared from the
                current counters (another instance was added in between).

        """
        if (instance.instance_id, instance.memory_id) != (
            self._next_instance_id,
            self._next_memory_id,
        ):
            msg = f"Instance {instance.instance_id} was not prepared from the current counters"
            raise RuntimeError(msg)
        self._instances[instance.instance_id] = instance
        self._launches[instance.template_name] = self._launches.get(instance.template_name, 0) + 1
        self._next_instance_id += 1
        self._next_memory_id += 1
        return instance

    def get(self, instance_id: int) -> ProcessInstance:
        """Return a running instance.

        Raises:
            InvalidRequestError: If no instance has that id.

        """
        instance = self._instances.get(instance_id)
        if instance is None:
            msg = f"No running process with instance id {instance_id}"
            raise InvalidRequestError(msg)
        return instance

    def remove(self, instance_id: int) -> ProcessInstance:
        """Unregister and return a running instance.

        Raises:
            InvalidRequestError: If no instance has that id.

        """
        instance = self.get(instance_id)
        del self._instances[instance_id]
        return instance

    def clear(self) -> None:
        """Forget every instance and restart the counters at 1."""
        self._instances.clear()
        self._launches.clear()
        self._next_instance_id = 1
        self._next_memory_id = 1
