"""The memory engine — one facade over five partitioning techniques.

The engine is the only component the outside world talks to.  It owns:

- exactly one **backing store**, chosen by the active technique;
- the **process registry** (running instances and their ids);
- the **waiting queue** (plain processes that did not fit yet);
- the **logger** (an audit trail of every decision);
- the **template catalogue** (programs that can be launched).

Technique → backing store::

    static-fixed     → StaticPartitioner.fixed
    static-variable  → StaticPartitioner.variable
    dynamic          → DynamicPartitioner
    segmentation     → SegmentAllocator
    paging           → PageAllocator

Every public operation runs to completion before returning, and every
failure is reported rather than fatal:

- A **plain** process (static or dynamic) that does not fit is queued
  and retried after every free — ``AddStatus.QUEUED``.
- A **segmented or paged** process that does not fit is rejected and
  nothing is allocated — ``AddStatus.REJECTED``.
- Malformed requests are rejected before any store is touched.

``initialize()`` tears everything down and rebuilds from scratch; in
flight processes do not survive a change of technique.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TypeAlias

from py_memsim.config import MIN_PAGE_SIZE, MemoryConfig, Technique
from py_memsim.errors import (
    InsufficientMemoryError,
    InvalidPartitionSizeError,
    InvalidRequestError,
)
from py_memsim.logging import Logger, LogLevel
from py_memsim.memory.address_space import AddressSpace, Owner, Partition
from py_memsim.memory.dynamic import DynamicPartitioner
from py_memsim.memory.fit import FitPolicy
from py_memsim.memory.paging import Frame, PageAllocator, PageTableEntry
from py_memsim.memory.segmentation import SegmentAllocator
from py_memsim.memory.static import StaticPartitioner
from py_memsim.process.queue import WaitingEntry, WaitingQueue
from py_memsim.process.registry import ProcessInstance, ProcessRegistry
from py_memsim.process.templates import BUILTIN_TEMPLATES, ProcessTemplate
from py_memsim.units import format_bytes

BackingStore: TypeAlias = StaticPartitioner | DynamicPartitioner | SegmentAllocator | PageAllocator

_SOURCES = {
    Technique.STATIC_FIXED: "static",
    Technique.STATIC_VARIABLE: "static",
    Technique.DYNAMIC: "dynamic",
    Technique.SEGMENTATION: "segmentation",
    Technique.PAGING: "paging",
}


class AddStatus(StrEnum):
    """Outcome of an ``add_process`` call."""

    ALLOCATED = "allocated"
    QUEUED = "queued"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AddResult:
    """What happened to a launch request.

    Attributes:
        status: Allocated, queued or rejected.
        instance_id: The new instance's handle, when allocated.
        reason: Why the request was queued or rejected.

    """

    status: AddStatus
    instance_id: int | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Return True if the process is now in memory."""
        return self.status is AddStatus.ALLOCATED


@dataclass(frozen=True)
class RemoveResult:
    """What happened when an instance was removed.

    Attributes:
        instance_id: The removed instance.
        released: Bytes returned to the store.
        admitted: Instance ids of waiting processes that now fit.
        compacted: Whether memory was compacted after the free.

    """

    instance_id: int
    released: int
    admitted: tuple[int, ...] = ()
    compacted: bool = False


@dataclass(frozen=True)
class CompactResult:
    """Outcome of a compaction: regions moved and processes admitted."""

    moved: int
    admitted: tuple[int, ...] = ()


@dataclass(frozen=True)
class FragmentationStats:
    """Free-space accounting for the current layout.

    Attributes:
        free_bytes: Bytes available for allocation.
        largest_free: Largest single free region (or frame run, for paging).
        free_regions: Number of free regions or frames.
        internal_fragmentation: Bytes held by processes but not requested.
        external_fragmentation: Free bytes outside the largest free
            region (0 for paging, where any frame can hold any page).
        unusable: Bytes no process can ever receive (fragment tail,
            unpartitioned user space).

    """

    free_bytes: int
    largest_free: int
    free_regions: int
    internal_fragmentation: int
    external_fragmentation: int
    unusable: int

    def to_dict(self) -> dict[str, int]:
        """Return a JSON-ready view of the statistics."""
        return {
            "free_bytes": self.free_bytes,
            "largest_free": self.largest_free,
            "free_regions": self.free_regions,
            "internal_fragmentation": self.internal_fragmentation,
            "external_fragmentation": self.external_fragmentation,
            "unusable": self.unusable,
        }


@dataclass(frozen=True)
class Snapshot:
    """A read-only picture of the engine for display.

    Every record is an immutable value or a private copy, so nothing
    reachable from a snapshot can change the engine.
    """

    technique: Technique
    config: MemoryConfig
    partitions: tuple[Partition, ...]
    frames: tuple[Frame, ...]
    page_tables: dict[int, tuple[PageTableEntry, ...]]
    processes: tuple[ProcessInstance, ...]
    waiting: tuple[WaitingEntry, ...]
    stats: FragmentationStats
    ready: bool

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of the whole snapshot."""
        return {
            "technique": str(self.technique),
            "ready": self.ready,
            "config": self.config.to_dict(),
            "partitions": [p.to_dict() for p in self.partitions],
            "frames": [f.to_dict() for f in self.frames],
            "page_tables": {
                str(instance_id): [entry.to_dict() for entry in entries]
                for instance_id, entries in self.page_tables.items()
            },
            "processes": [p.to_dict() for p in self.processes],
            "waiting": [w.to_dict() for w in self.waiting],
            "stats": self.stats.to_dict(),
        }


class MemoryEngine:
    """Simulate an OS memory manager under a chosen partitioning technique."""

    def __init__(
        self,
        technique: Technique | str = Technique.DYNAMIC,
        config: MemoryConfig | None = None,
        *,
        templates: Iterable[ProcessTemplate] = BUILTIN_TEMPLATES,
    ) -> None:
        """Create an engine and build its first backing store.

        Args:
            technique: The partitioning technique to start with.
            config: Tuning parameters (defaults to ``MemoryConfig()``).
            templates: The initial template catalogue.

        Raises:
            InvalidPartitionSizeError: If the starting static layout
                cannot be built.
            InvalidRequestError: If the technique or configuration is invalid.

        """
        self._logger = Logger()
        self._registry = ProcessRegistry()
        self._queue = WaitingQueue()
        self._templates: dict[str, ProcessTemplate] = {t.name: t for t in templates}
        self._technique: Technique
        self._config = MemoryConfig()
        self._space: AddressSpace
        self._store: BackingStore | None = None
        self.initialize(technique, config)

    # -- Properties ----------------------------------------------------------

    @property
    def technique(self) -> Technique:
        """Return the active partitioning technique."""
        return self._technique

    @property
    def config(self) -> MemoryConfig:
        """Return the active configuration (page size already clamped)."""
        return self._config

    @property
    def address_space(self) -> AddressSpace:
        """Return the address space the store was built on."""
        return self._space

    @property
    def store(self) -> BackingStore | None:
        """Return the active backing store, or None when idle."""
        return self._store

    @property
    def ready(self) -> bool:
        """Return True if a backing store is in place."""
        return self._store is not None

    @property
    def logger(self) -> Logger:
        """Return the engine's audit log."""
        return self._logger

    @property
    def processes(self) -> list[ProcessInstance]:
        """Return running instances in launch order."""
        return self._registry.instances

    @property
    def waiting(self) -> list[WaitingEntry]:
        """Return queued requests, oldest first."""
        return self._queue.entries

    @property
    def templates(self) -> list[ProcessTemplate]:
        """Return the template catalogue in registration order."""
        return list(self._templates.values())

    # -- Configuration -------------------------------------------------------

    def initialize(
        self,
        technique: Technique | str,
        config: MemoryConfig | None = None,
        *,
        clear_log: bool = False,
    ) -> None:
        """Tear down the current store and build a fresh one.

        Resets the registry (ids restart at 1) and empties the waiting
        queue.  Page sizes below ``MIN_PAGE_SIZE`` are raised to it.

        Args:
            technique: The partitioning technique to switch to.
            config: Tuning parameters (defaults to the current ones).
            clear_log: Also discard the audit log.

        Raises:
            InvalidRequestError: If the technique or configuration is
                invalid (the previous store is left untouched), or the
                page size exceeds user space (the engine is left idle).
            InvalidPartitionSizeError: If the static layout cannot be
                built; the engine is left idle (OS region only).

        """
        try:
            technique = Technique(technique)
        except ValueError as e:
            msg = f"Unknown technique '{technique}'"
            raise InvalidRequestError(msg) from e
        config = config or self._config
        config.validate()

        if clear_log:
            self._logger.clear()
        if technique is Technique.PAGING and config.page_size < MIN_PAGE_SIZE:
            self._logger.log(
                LogLevel.WARNING,
                f"Page size {format_bytes(config.page_size)} is below the minimum; "
                f"using {format_bytes(MIN_PAGE_SIZE)}",
                source="engine",
            )
            config = replace(config, page_size=MIN_PAGE_SIZE)

        self._registry.clear()
        self._queue.clear()
        self._technique = technique
        self._config = config
        self._space = AddressSpace(total=config.total_memory, os_reserved=config.os_reserved)
        self._store = None
        try:
            self._store = self._build_store()
        except (InvalidPartitionSizeError, InvalidRequestError) as e:
            self._logger.log(LogLevel.ERROR, f"Initialization failed: {e}", source="engine")
            raise
        self._logger.log(
            LogLevel.INFO,
            f"Initialized {technique} over {format_bytes(config.total_memory)} "
            f"({format_bytes(config.os_reserved)} reserved for the OS)",
            source="engine",
        )

    def _build_store(self) -> BackingStore:
        """Construct the backing store for the active technique."""
        config = self._config
        match self._technique:
            case Technique.STATIC_FIXED:
                return StaticPartitioner.fixed(self._space, config.fixed_partition_size)
            case Technique.STATIC_VARIABLE:
                return StaticPartitioner.variable(self._space, config.variable_partition_sizes)
            case Technique.DYNAMIC:
                return DynamicPartitioner(self._space, split_threshold=config.split_threshold)
            case Technique.SEGMENTATION:
                return SegmentAllocator(self._space)
            case Technique.PAGING:
                return PageAllocator(self._space, page_size=config.page_size)

    def set_fit_policy(self, policy: FitPolicy | str) -> None:
        """Switch the fit policy without rebuilding the store.

        Raises:
            InvalidRequestError: If the policy name is unknown.

        """
        try:
            policy = FitPolicy(policy)
        except ValueError as e:
            msg = f"Unknown fit policy '{policy}'"
            raise InvalidRequestError(msg) from e
        self._config = replace(self._config, fit_policy=policy)
        self._logger.log(LogLevel.INFO, f"Fit policy set to {policy}", source="engine")

    # -- Templates -----------------------------------------------------------

    def register_template(self, template: ProcessTemplate) -> None:
        """Add a program to the catalogue.

        Raises:
            InvalidRequestError: If a template with that name exists.

        """
        if template.name in self._templates:
            msg = f"Template '{template.name}' already exists"
            raise InvalidRequestError(msg)
        self._templates[template.name] = template
        self._logger.log(LogLevel.DEBUG, f"Registered template {template.name}", source="engine")

    def template(self, name: str) -> ProcessTemplate:
        """Return a catalogue template by name.

        Raises:
            InvalidRequestError: If no template has that name.

        """
        template = self._templates.get(name)
        if template is None:
            msg = f"Unknown process template '{name}'"
            raise InvalidRequestError(msg)
        return template

    # -- Process lifecycle ---------------------------------------------------

    def add_process(self, process: ProcessTemplate | str) -> AddResult:
        """Try to load a program into memory.

        Args:
            process: A template, or the name of a catalogue template.

        Returns:
            ``ALLOCATED`` with the new instance id; ``QUEUED`` when a
            plain process must wait; ``REJECTED`` with a reason otherwise.

        """
        try:
            template = self.template(process) if isinstance(process, str) else process
            if self._store is None:
                msg = "No backing store: initialize the engine first"
                raise InvalidRequestError(msg)
            if template.total_size <= 0:
                msg = f"{template.name} requests no memory"
                raise InvalidRequestError(msg)
        except InvalidRequestError as e:
            self._logger.log(LogLevel.WARNING, f"Rejected: {e}", source="engine")
            return AddResult(status=AddStatus.REJECTED, reason=str(e))

        if self._technique.queues_on_failure:
            requested = template.total_size + self._config.stack_heap_overhead
            try:
                instance = self._place_plain(template, requested)
            except InsufficientMemoryError as e:
                position = self._queue.enqueue(WaitingEntry(template=template, requested_size=requested))
                self._logger.log(
                    LogLevel.WARNING,
                    f"{template.name} queued at position {position}: {e}",
                    source="queue",
                )
                return AddResult(status=AddStatus.QUEUED, reason=str(e))
            return AddResult(status=AddStatus.ALLOCATED, instance_id=instance.instance_id)

        try:
            instance = self._place_segmented(template)
        except (InsufficientMemoryError, InvalidRequestError) as e:
            self._logger.log(LogLevel.WARNING, f"Rejected {template.name}: {e}", source=self._source)
            return AddResult(status=AddStatus.REJECTED, reason=str(e))
        return AddResult(status=AddStatus.ALLOCATED, instance_id=instance.instance_id)

    def add_batch(self, templates: Iterable[ProcessTemplate | str]) -> list[AddResult]:
        """Launch several programs in order, one ``add_process`` each."""
        return [self.add_process(template) for template in templates]

    def _place_plain(self, template: ProcessTemplate, requested: int) -> ProcessInstance:
        """Put a single-region process in the static or dynamic store."""
        store = self._store
        if not isinstance(store, StaticPartitioner | DynamicPartitioner):
            msg = f"{self._technique} does not place single-region processes"
            raise InvalidRequestError(msg)
        instance = self._registry.prepare(template, requested_size=requested)
        owner = Owner(memory_id=instance.memory_id, name=instance.name)
        placed = store.allocate(owner, requested, self._config.fit_policy)
        self._registry.add(instance)
        self._logger.log(
            LogLevel.INFO,
            f"Allocated {format_bytes(placed.size)} at {placed.address:#x} to {instance.name}",
            source=self._source,
            instance_id=instance.instance_id,
        )
        return instance

    def _place_segmented(self, template: ProcessTemplate) -> ProcessInstance:
        """Put every segment of a process in the segmented or paged store."""
        store = self._store
        instance = self._registry.prepare(template)
        if isinstance(store, SegmentAllocator):
            regions = store.allocate(
                instance.memory_id, instance.name, template.segments, self._config.fit_policy
            )
            detail = f"{len(regions)} segments"
        elif isinstance(store, PageAllocator):
            instance.page_table = store.allocate(instance.memory_id, instance.name, template.segments)
            detail = f"{len(instance.page_table)} frames"
        else:
            msg = f"{self._technique} does not place segmented processes"
            raise InvalidRequestError(msg)
        self._registry.add(instance)
        self._logger.log(
            LogLevel.INFO,
            f"Allocated {detail} to {instance.name}",
            source=self._source,
            instance_id=instance.instance_id,
        )
        return instance

    def remove_process(self, instance_id: int) -> RemoveResult:
        """Free an instance's memory, then retry the waiting queue.

        With compaction enabled and ``compact_on_free`` set, the dynamic
        store is compacted between the free and the queue retry.

        Raises:
            InvalidRequestError: If no instance has that id.

        """
        if self._store is None:
            msg = "No backing store: initialize the engine first"
            raise InvalidRequestError(msg)
        instance = self._registry.remove(instance_id)
        released = self._store.free(instance.memory_id)
        instance.page_table = []
        self._logger.log(
            LogLevel.INFO,
            f"Freed {format_bytes(released)} held by {instance.name}",
            source=self._source,
            instance_id=instance_id,
        )

        compacted = False
        if (
            isinstance(self._store, DynamicPartitioner)
            and self._config.compaction_enabled
            and self._config.compact_on_free
        ):
            self._compact_store(self._store)
            compacted = True

        admitted = self._drain_queue()
        return RemoveResult(
            instance_id=instance_id,
            released=released,
            admitted=admitted,
            compacted=compacted,
        )

    def _drain_queue(self) -> tuple[int, ...]:
        """Retry every waiting process once, oldest first."""
        admitted: list[int] = []

        def admit(entry: WaitingEntry) -> bool:
            try:
                instance = self._place_plain(entry.template, entry.requested_size)
            except InsufficientMemoryError:
                return False
            admitted.append(instance.instance_id)
            self._logger.log(
                LogLevel.INFO,
                f"{instance.name} admitted from the waiting queue",
                source="queue",
                instance_id=instance.instance_id,
            )
            return True

        if len(self._queue):
            self._queue.drain(admit)
        return tuple(admitted)

    def compact(self) -> CompactResult:
        """Compact the dynamic store, then retry the waiting queue.

        Raises:
            InvalidRequestError: If the technique is not dynamic or
                compaction is not enabled.

        """
        store = self._store
        if not isinstance(store, DynamicPartitioner):
            msg = f"Compaction is only available for dynamic partitioning, not {self._technique}"
            raise InvalidRequestError(msg)
        if not self._config.compaction_enabled:
            msg = "Compaction is disabled in the configuration"
            raise InvalidRequestError(msg)
        moved = self._compact_store(store)
        return CompactResult(moved=moved, admitted=self._drain_queue())

    def _compact_store(self, store: DynamicPartitioner) -> int:
        moved = store.compact()
        self._logger.log(
            LogLevel.INFO,
            f"Compacted memory: {moved} regions moved, {format_bytes(store.free_bytes)} free in one region",
            source="dynamic",
        )
        return moved

    # -- Inspection ----------------------------------------------------------

    @property
    def _source(self) -> str:
        return _SOURCES[self._technique]

    def layout(self) -> list[Partition]:
        """Return the full address-space layout, OS region first."""
        if self._store is None:
            return self._space.idle_layout()
        return self._store.partitions

    def regions_for(self, instance_id: int) -> list[Partition]:
        """Return the regions (or frames, as partitions) held by an instance.

        Raises:
            InvalidRequestError: If no instance has that id.

        """
        instance = self._registry.get(instance_id)
        if isinstance(self._store, PageAllocator):
            return [frame.to_partition() for frame in self._store.frames_for(instance.memory_id)]
        if self._store is None:
            return []
        return self._store.regions_for(instance.memory_id)

    def stats(self) -> FragmentationStats:
        """Return free-space and fragmentation accounting."""
        layout = self.layout()
        unusable = sum(p.size for p in layout if p.owner is not None and p.owner.is_system) - (
            self._space.os_reserved
        )
        if isinstance(self._store, PageAllocator):
            page_size = self._store.page_size
            internal = sum(
                len(p.page_table) * page_size - p.template.total_size for p in self.processes
            )
            free_frames = self._store.free_frames
            return FragmentationStats(
                free_bytes=self._store.free_bytes,
                largest_free=page_size if free_frames else 0,
                free_regions=free_frames,
                internal_fragmentation=internal,
                external_fragmentation=0,
                unusable=unusable,
            )
        free = [p.size for p in layout if p.free]
        largest = max(free, default=0)
        return FragmentationStats(
            free_bytes=sum(free),
            largest_free=largest,
            free_regions=len(free),
            internal_fragmentation=sum(p.internal_fragmentation for p in layout),
            external_fragmentation=sum(free) - largest,
            unusable=unusable,
        )

    def snapshot(self) -> Snapshot:
        """Return a read-only picture of the engine for display."""
        frames: Sequence[Frame] = ()
        if isinstance(self._store, PageAllocator):
            frames = self._store.frames
        processes = tuple(replace(p, page_table=list(p.page_table)) for p in self.processes)
        return Snapshot(
            technique=self._technique,
            config=self._config,
            partitions=tuple(self.layout()),
            frames=tuple(frames),
            page_tables={
                p.instance_id: tuple(p.sorted_page_table()) for p in processes if p.page_table
            },
            processes=processes,
            waiting=tuple(self._queue.entries),
            stats=self.stats(),
            ready=self.ready,
        )
