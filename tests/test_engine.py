"""Tests for the memory engine facade.

The engine picks a backing store per technique, tracks instances and
the waiting queue, and reports every failure as a result value rather
than an exception where the request itself was well-formed.
"""

import pytest

from py_memsim.config import MIN_PAGE_SIZE, MemoryConfig, Technique
from py_memsim.engine import AddStatus, MemoryEngine
from py_memsim.errors import InvalidPartitionSizeError, InvalidRequestError
from py_memsim.logging import LogLevel
from py_memsim.memory.address_space import UNUSABLE_OWNER
from py_memsim.memory.fit import FitPolicy
from py_memsim.memory.paging import PageAllocator, pages_needed
from py_memsim.memory.segmentation import SegmentAllocator
from py_memsim.memory.static import StaticPartitioner
from py_memsim.process.templates import BUILTIN_TEMPLATES, ProcessTemplate
from py_memsim.units import KIB, MIB

TOTAL = 16 * MIB
OS_SIZE = 1 * MIB
USER = TOTAL - OS_SIZE
THIRD = 5 * MIB
FRAME_COUNT = 240
SECOND_ID = 2
THIRD_ID = 3
NOTEPAD = "P1 (Notepad)"


def _single(name: str, size: int) -> ProcessTemplate:
    """Create a single-image template."""
    return ProcessTemplate.single(name, size)


def _fill_thirds(engine: MemoryEngine) -> None:
    """Fill user space with three 5 MiB processes (ids 1, 2, 3)."""
    for name in ("A", "B", "C"):
        assert engine.add_process(_single(name, THIRD)).ok


def _validate(engine: MemoryEngine) -> None:
    """Assert the engine's layout tiles memory exactly."""
    engine.address_space.validate(engine.layout())


class TestInitialize:
    """Verify building and rebuilding backing stores."""

    def test_default_engine_is_dynamic(self) -> None:
        """A new engine runs dynamic partitioning over 16 MiB."""
        engine = MemoryEngine()
        assert engine.technique is Technique.DYNAMIC
        assert engine.ready
        assert [p.size for p in engine.layout()] == [OS_SIZE, USER]

    @pytest.mark.parametrize("technique", list(Technique))
    def test_every_technique_builds_valid_layout(self, technique: Technique) -> None:
        """Every technique starts from a layout that tiles memory."""
        engine = MemoryEngine(technique)
        _validate(engine)
        assert engine.processes == []

    def test_store_matches_technique(self) -> None:
        """Each technique gets its own kind of store."""
        assert isinstance(MemoryEngine("static-fixed").store, StaticPartitioner)
        assert isinstance(MemoryEngine("segmentation").store, SegmentAllocator)
        assert isinstance(MemoryEngine("paging").store, PageAllocator)

    def test_invalid_fixed_size_fails(self) -> None:
        """4 MiB partitions do not divide 15 MiB of user space."""
        config = MemoryConfig(fixed_partition_size=4 * MIB)
        with pytest.raises(InvalidPartitionSizeError):
            MemoryEngine(Technique.STATIC_FIXED, config)

    def test_failed_initialize_leaves_engine_idle(self) -> None:
        """After a failed rebuild no process can be placed."""
        engine = MemoryEngine()
        with pytest.raises(InvalidPartitionSizeError):
            engine.initialize("static-fixed", MemoryConfig(fixed_partition_size=4 * MIB))
        assert not engine.ready
        assert engine.layout()[1].owner is UNUSABLE_OWNER
        assert engine.add_process(NOTEPAD).status is AddStatus.REJECTED
        assert engine.logger.filter(min_level=LogLevel.ERROR)

    def test_unknown_technique_rejected(self) -> None:
        """An unknown technique name is an invalid request."""
        engine = MemoryEngine()
        with pytest.raises(InvalidRequestError, match="Unknown technique"):
            engine.initialize("buddy")
        assert engine.ready

    def test_reinitialize_discards_processes(self) -> None:
        """Switching technique drops every instance and restarts ids."""
        engine = MemoryEngine()
        engine.add_process(NOTEPAD)
        engine.initialize(Technique.PAGING)
        assert engine.processes == []
        assert engine.add_process(NOTEPAD).instance_id == 1

    def test_small_page_size_is_clamped(self) -> None:
        """Pages below the minimum are raised to it, with a warning."""
        engine = MemoryEngine(Technique.PAGING, MemoryConfig(page_size=16 * KIB))
        assert engine.config.page_size == MIN_PAGE_SIZE
        warnings = engine.logger.filter(min_level=LogLevel.WARNING)
        assert any("minimum" in e.message for e in warnings)

    def test_clear_log(self) -> None:
        """initialize can discard the audit log."""
        engine = MemoryEngine()
        engine.initialize(Technique.DYNAMIC, clear_log=True)
        assert len(engine.logger.entries) == 1


class TestPlainProcesses:
    """Verify static and dynamic placement and queueing."""

    def test_allocated_process_gets_first_id(self) -> None:
        """The first launch becomes instance 1."""
        engine = MemoryEngine()
        result = engine.add_process(NOTEPAD)
        assert result.status is AddStatus.ALLOCATED
        assert result.instance_id == 1
        _validate(engine)

    def test_unknown_template_rejected(self) -> None:
        """A name that is not in the catalogue is rejected."""
        result = MemoryEngine().add_process("P9 (Nothing)")
        assert result.status is AddStatus.REJECTED
        assert result.reason is not None

    def test_process_that_does_not_fit_is_queued(self) -> None:
        """A dynamic process larger than any free region waits."""
        engine = MemoryEngine()
        engine.add_process(_single("A", 10 * MIB))
        result = engine.add_process(_single("B", 10 * MIB))
        assert result.status is AddStatus.QUEUED
        assert result.instance_id is None
        assert [w.template.name for w in engine.waiting] == ["B"]

    def test_queued_process_admitted_after_free(self) -> None:
        """Removing a process retries the queue; the admitted one gets the next id."""
        engine = MemoryEngine()
        engine.add_process(_single("A", 10 * MIB))
        engine.add_process(_single("B", 10 * MIB))
        result = engine.remove_process(1)
        assert result.admitted == (SECOND_ID,)
        assert engine.waiting == []
        assert [p.name for p in engine.processes] == ["B #1"]

    def test_static_fixed_wastes_partition_tail(self) -> None:
        """A 1 MiB process in a 3 MiB partition leaves 2 MiB of internal fragmentation."""
        engine = MemoryEngine(Technique.STATIC_FIXED)
        engine.add_process(_single("A", MIB))
        assert engine.stats().internal_fragmentation == 2 * MIB

    def test_static_oversized_process_waits(self) -> None:
        """A process larger than every static partition is queued."""
        engine = MemoryEngine(Technique.STATIC_VARIABLE)
        assert engine.add_process(_single("Huge", 6 * MIB)).status is AddStatus.QUEUED

    def test_overhead_added_to_request(self) -> None:
        """Stack/heap overhead is added to every plain request."""
        engine = MemoryEngine(config=MemoryConfig(stack_heap_overhead=64 * KIB))
        engine.add_process(_single("A", MIB))
        assert engine.regions_for(1)[0].size == MIB + 64 * KIB

    def test_fit_policy_switch(self) -> None:
        """Best-fit fills the tightest hole after the policy changes."""
        engine = MemoryEngine()
        engine.add_process(_single("A", 2 * MIB))
        engine.add_process(_single("B", MIB))
        engine.remove_process(1)
        engine.set_fit_policy(FitPolicy.BEST)
        engine.add_process(_single("C", MIB))
        assert engine.regions_for(THIRD_ID)[0].address == OS_SIZE

    def test_unknown_fit_policy_rejected(self) -> None:
        """An unknown policy name raises InvalidRequestError."""
        with pytest.raises(InvalidRequestError):
            MemoryEngine().set_fit_policy("random-fit")


class TestSegmentedProcesses:
    """Verify segmentation and paging through the engine."""

    def test_segmentation_places_every_segment(self) -> None:
        """Each non-empty segment of a built-in program gets a region."""
        engine = MemoryEngine(Technique.SEGMENTATION)
        engine.add_process(NOTEPAD)
        regions = engine.regions_for(1)
        assert len(regions) == len(BUILTIN_TEMPLATES[0].segments)
        _validate(engine)

    def test_segmentation_rejects_without_queueing(self) -> None:
        """A segmented process that does not fit is rejected and nothing changes."""
        engine = MemoryEngine(Technique.SEGMENTATION)
        engine.add_process(NOTEPAD)
        before = engine.layout()
        result = engine.add_process(ProcessTemplate.custom("Huge", text=MIB, heap=20 * MIB))
        assert result.status is AddStatus.REJECTED
        assert engine.layout() == before
        assert engine.waiting == []

    def test_paging_builds_page_table(self) -> None:
        """A paged process has one page table entry per page."""
        engine = MemoryEngine(Technique.PAGING)
        engine.add_process(NOTEPAD)
        instance = engine.processes[0]
        template = BUILTIN_TEMPLATES[0]
        assert len(instance.page_table) == pages_needed(template.segments, 64 * KIB)

    def test_paging_rejects_when_frames_run_out(self) -> None:
        """A request for more frames than are free is rejected atomically."""
        engine = MemoryEngine(Technique.PAGING)
        result = engine.add_process(_single("Huge", (FRAME_COUNT + 1) * 64 * KIB))
        assert result.status is AddStatus.REJECTED
        assert engine.stats().free_regions == FRAME_COUNT

    def test_failed_attempts_consume_no_ids(self) -> None:
        """A rejected launch does not advance the instance counter."""
        engine = MemoryEngine(Technique.PAGING)
        engine.add_process(_single("Huge", 20 * MIB))
        assert engine.add_process(NOTEPAD).instance_id == 1

    def test_remove_frees_frames(self) -> None:
        """Removing a paged process returns its frames."""
        engine = MemoryEngine(Technique.PAGING)
        engine.add_process(NOTEPAD)
        engine.remove_process(1)
        assert engine.stats().free_regions == FRAME_COUNT


class TestRemove:
    """Verify removing instances."""

    def test_remove_unknown_rejected(self) -> None:
        """Removing a missing instance raises InvalidRequestError."""
        with pytest.raises(InvalidRequestError):
            MemoryEngine().remove_process(5)

    def test_round_trip_restores_layout(self) -> None:
        """Launch then remove returns the layout to its start."""
        for technique in Technique:
            engine = MemoryEngine(technique)
            before = engine.layout()
            engine.add_process(NOTEPAD)
            engine.remove_process(1)
            assert engine.layout() == before

    def test_ids_keep_increasing(self) -> None:
        """Ids of removed instances are not reused."""
        engine = MemoryEngine()
        engine.add_process(NOTEPAD)
        engine.add_process(NOTEPAD)
        engine.remove_process(1)
        assert engine.add_process(NOTEPAD).instance_id == THIRD_ID


class TestCompaction:
    """Verify compaction through the engine."""

    def test_compaction_requires_dynamic(self) -> None:
        """Only dynamic memory can be compacted."""
        engine = MemoryEngine(Technique.PAGING, MemoryConfig(compaction_enabled=True))
        with pytest.raises(InvalidRequestError, match="dynamic"):
            engine.compact()

    def test_compaction_must_be_enabled(self) -> None:
        """Compaction is refused while disabled."""
        with pytest.raises(InvalidRequestError, match="disabled"):
            MemoryEngine().compact()

    def test_compaction_admits_waiting_process(self) -> None:
        """Merging holes lets a queued process in."""
        engine = MemoryEngine(config=MemoryConfig(compaction_enabled=True))
        _fill_thirds(engine)
        engine.remove_process(1)
        engine.remove_process(THIRD_ID)
        assert engine.add_process(_single("D", 2 * THIRD)).status is AddStatus.QUEUED
        result = engine.compact()
        assert result.moved == 1
        assert result.admitted == (4,)
        _validate(engine)

    def test_compact_on_free(self) -> None:
        """With compact_on_free every removal compacts memory."""
        config = MemoryConfig(compaction_enabled=True, compact_on_free=True)
        engine = MemoryEngine(config=config)
        _fill_thirds(engine)
        result = engine.remove_process(1)
        assert result.compacted
        layout = engine.layout()
        assert layout[1].address == OS_SIZE
        assert layout[-1].free
        assert layout[-1].size == THIRD


class TestInspection:
    """Verify statistics and snapshots."""

    def test_external_fragmentation(self) -> None:
        """Two 5 MiB holes count 5 MiB of external fragmentation."""
        engine = MemoryEngine()
        _fill_thirds(engine)
        engine.remove_process(1)
        engine.remove_process(THIRD_ID)
        stats = engine.stats()
        assert stats.free_bytes == 2 * THIRD
        assert stats.largest_free == THIRD
        assert stats.external_fragmentation == THIRD

    def test_paging_fragment_is_unusable(self) -> None:
        """The tail past the last frame is reported as unusable."""
        engine = MemoryEngine(Technique.PAGING, MemoryConfig(page_size=100 * KIB))
        assert engine.stats().unusable == 60 * KIB

    def test_snapshot_is_isolated(self) -> None:
        """Changing a snapshot does not change the engine."""
        engine = MemoryEngine(Technique.PAGING)
        engine.add_process(NOTEPAD)
        snapshot = engine.snapshot()
        snapshot.processes[0].page_table.clear()
        assert engine.processes[0].page_table

    def test_snapshot_to_dict(self) -> None:
        """The JSON view carries frames and page tables for paging."""
        engine = MemoryEngine(Technique.PAGING)
        engine.add_process(NOTEPAD)
        data = engine.snapshot().to_dict()
        assert data["technique"] == "paging"
        assert len(data["frames"]) == FRAME_COUNT  # type: ignore[arg-type]
        assert "1" in data["page_tables"]  # type: ignore[operator]

    def test_register_template(self) -> None:
        """A registered template can be launched by name."""
        engine = MemoryEngine()
        engine.register_template(_single("Tool", MIB))
        assert engine.add_process("Tool").ok

    def test_duplicate_template_rejected(self) -> None:
        """Template names are unique."""
        with pytest.raises(InvalidRequestError, match="already exists"):
            MemoryEngine().register_template(_single(NOTEPAD, MIB))
