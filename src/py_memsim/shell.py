"""The shell — a command interpreter for the memory engine.

The shell reads a command string, splits it into a command name and
arguments, dispatches to a handler, and returns a string result.  It
never prints; the REPL and the web UI decide how to display output.

Design choices:
    - **Returns strings, not prints.**  This keeps the shell fully
      testable and separates concerns.
    - **Command dispatch via a dict.**  Adding a command means writing
      a method and adding one dict entry.
    - **All engine interaction goes through public operations.**  The
      shell reads state only through ``snapshot()``-style accessors and
      mutates it only through ``add_process``, ``remove_process``,
      ``compact`` and ``initialize``.

Sizes typed at the prompt are in KiB unless stated otherwise
(``init ... fixed=`` and ``sizes=`` take MiB, like the configuration
file).
"""

import shlex
from collections.abc import Callable
from dataclasses import replace
from typing import TypeAlias

from py_memsim.config import MemoryConfig, Technique
from py_memsim.engine import AddResult, AddStatus, MemoryEngine
from py_memsim.errors import AllocationError
from py_memsim.logging import LogLevel
from py_memsim.memory.fit import FitPolicy
from py_memsim.process.templates import DEMO_BATCH, SECTION_NAMES, ProcessTemplate
from py_memsim.units import KIB, MIB, format_address, format_bytes

# Type alias for a command handler: takes a list of args, returns output.
_Handler: TypeAlias = Callable[[list[str]], str]

_ON_VALUES = {"on", "true", "yes", "1"}
_OFF_VALUES = {"off", "false", "no", "0"}

_INIT_USAGE = (
    "Usage: init <technique> [fit=<policy>] [fixed=<MiB>] [sizes=<MiB,...>] "
    "[page=<KiB>] [compaction=on|off] [autocompact=on|off] [overhead=<KiB>]"
)


class Shell:
    """Command interpreter attached to a memory engine."""

    EXIT_SENTINEL = "__EXIT__"

    def __init__(self, *, engine: MemoryEngine) -> None:
        """Create a shell attached to *engine*."""
        self._engine = engine
        self._commands: dict[str, _Handler] = {
            "help": self._cmd_help,
            "init": self._cmd_init,
            "fit": self._cmd_fit,
            "templates": self._cmd_templates,
            "add": self._cmd_add,
            "run": self._cmd_run,
            "custom": self._cmd_custom,
            "demo": self._cmd_demo,
            "rm": self._cmd_rm,
            "compact": self._cmd_compact,
            "mem": self._cmd_mem,
            "ps": self._cmd_ps,
            "pt": self._cmd_pt,
            "queue": self._cmd_queue,
            "stats": self._cmd_stats,
            "log": self._cmd_log,
            "exit": self._cmd_exit,
        }

    @property
    def command_names(self) -> list[str]:
        """Return every command name, sorted."""
        return sorted(self._commands)

    def execute(self, command: str) -> str:
        """Parse and execute one command line.

        Args:
            command: The raw command string (e.g. ``add "P2 (Word)"``).

        Returns:
            The command output, or an error message.

        """
        try:
            parts = shlex.split(command)
        except ValueError as e:
            return f"Error: {e}"
        if not parts:
            return ""
        name, args = parts[0], parts[1:]
        handler = self._commands.get(name)
        if handler is None:
            return f"Unknown command: {name}"
        try:
            return handler(args)
        except AllocationError as e:
            return f"Error: {e}"

    # -- Configuration -------------------------------------------------------

    def _cmd_help(self, _args: list[str]) -> str:
        """List available commands."""
        return "Available commands: " + ", ".join(self.command_names)

    def _cmd_init(self, args: list[str]) -> str:
        """Rebuild memory with a technique and optional settings."""
        if not args:
            return _INIT_USAGE
        try:
            technique = Technique(args[0])
        except ValueError:
            techniques = ", ".join(t.value for t in Technique)
            return f"Error: unknown technique '{args[0]}' (choose from {techniques})"
        try:
            config = _parse_settings(self._engine.config, args[1:])
        except ValueError as e:
            return f"Error: {e}\n{_INIT_USAGE}"
        self._engine.initialize(technique, config)
        return f"Memory initialized: {technique}, {self._engine.config.fit_policy}"

    def _cmd_fit(self, args: list[str]) -> str:
        """Show or change the fit policy."""
        if not args:
            return f"Fit policy: {self._engine.config.fit_policy}"
        self._engine.set_fit_policy(args[0])
        return f"Fit policy set to {self._engine.config.fit_policy}"

    def _cmd_templates(self, _args: list[str]) -> str:
        """List the programs that can be launched."""
        lines = ["SIZE        NAME"]
        lines.extend(
            f"{format_bytes(t.total_size):<11} {t.name}" for t in self._engine.templates
        )
        return "\n".join(lines)

    # -- Process lifecycle ---------------------------------------------------

    def _cmd_add(self, args: list[str]) -> str:
        """Launch a catalogue template by name."""
        if not args:
            return "Usage: add <template name>"
        return _describe(self._engine.add_process(" ".join(args)), " ".join(args))

    def _cmd_run(self, args: list[str]) -> str:
        """Launch an ad-hoc single-image process."""
        min_args = 2
        if len(args) < min_args:
            return "Usage: run <name> <size KiB>"
        try:
            size = int(args[-1]) * KIB
        except ValueError:
            return f"Error: invalid size '{args[-1]}'"
        name = " ".join(args[:-1])
        if size <= 0:
            return "Error: process size must be positive"
        return _describe(self._engine.add_process(ProcessTemplate.single(name, size)), name)

    def _cmd_custom(self, args: list[str]) -> str:
        """Register a template built from section sizes in KiB."""
        if not args:
            return "Usage: custom <name> [text=KiB] [data=KiB] [bss=KiB] [stack=KiB] [heap=KiB]"
        name = args[0]
        sizes: dict[str, int] = {}
        allowed = {section.lstrip(".") for section in SECTION_NAMES}
        for arg in args[1:]:
            key, sep, value = arg.partition("=")
            if not sep or key not in allowed:
                return f"Error: expected one of {', '.join(sorted(allowed))} as key=KiB, got '{arg}'"
            try:
                sizes[key] = int(value) * KIB
            except ValueError:
                return f"Error: invalid size '{value}' for {key}"
        template = ProcessTemplate.custom(name, **sizes)
        self._engine.register_template(template)
        return f"Registered template '{name}' ({format_bytes(template.total_size)})"

    def _cmd_demo(self, _args: list[str]) -> str:
        """Launch the demo batch of single-image programs."""
        results = self._engine.add_batch(DEMO_BATCH)
        return "\n".join(
            _describe(result, template.name)
            for result, template in zip(results, DEMO_BATCH, strict=True)
        )

    def _cmd_rm(self, args: list[str]) -> str:
        """Terminate an instance and free its memory."""
        if not args:
            return "Usage: rm <instance id>"
        try:
            instance_id = int(args[0])
        except ValueError:
            return f"Error: invalid instance id '{args[0]}'"
        result = self._engine.remove_process(instance_id)
        lines = [f"Removed instance {instance_id}, freed {format_bytes(result.released)}"]
        if result.compacted:
            lines.append("Memory compacted")
        lines.extend(f"Admitted instance {admitted} from the queue" for admitted in result.admitted)
        return "\n".join(lines)

    def _cmd_compact(self, _args: list[str]) -> str:
        """Compact dynamic memory."""
        result = self._engine.compact()
        lines = [f"Compaction complete: {result.moved} regions moved"]
        lines.extend(f"Admitted instance {admitted} from the queue" for admitted in result.admitted)
        return "\n".join(lines)

    # -- Inspection ----------------------------------------------------------

    def _cmd_mem(self, _args: list[str]) -> str:
        """Show the memory layout."""
        lines = ["START     END       SIZE        OWNER"]
        for p in self._engine.layout():
            if p.owner is None:
                owner = "free"
            elif p.owner.segment is not None:
                owner = f"{p.owner.name} {p.owner.segment}"
            else:
                owner = p.owner.name
            lines.append(
                f"{format_address(p.address)}  {format_address(p.end - 1)}  "
                f"{format_bytes(p.size):<11} {owner}"
            )
        return "\n".join(lines)

    def _cmd_ps(self, _args: list[str]) -> str:
        """Show running instances."""
        processes = self._engine.processes
        if not processes:
            return "No processes."
        lines = ["ID     MEM    SIZE        NAME"]
        lines.extend(
            f"{p.instance_id:<6} {p.memory_id:<6} {format_bytes(p.template.total_size):<11} {p.name}"
            for p in processes
        )
        return "\n".join(lines)

    def _cmd_pt(self, args: list[str]) -> str:
        """Show the page table of a paged instance."""
        if not args:
            return "Usage: pt <instance id>"
        try:
            instance_id = int(args[0])
        except ValueError:
            return f"Error: invalid instance id '{args[0]}'"
        instance = next((p for p in self._engine.processes if p.instance_id == instance_id), None)
        if instance is None:
            return f"Error: no running process with instance id {instance_id}"
        if not instance.page_table:
            return f"{instance.name} has no page table."
        lines = [f"Page table of {instance.name}", "SEGMENT   PAGE   FRAME"]
        lines.extend(
            f"{entry.segment:<9} {entry.page:<6} {entry.frame_id}"
            for entry in instance.sorted_page_table()
        )
        return "\n".join(lines)

    def _cmd_queue(self, _args: list[str]) -> str:
        """Show the waiting queue."""
        waiting = self._engine.waiting
        if not waiting:
            return "Waiting queue is empty."
        return "\n".join(
            f"{position}. {entry.template.name} - {format_bytes(entry.requested_size)}"
            for position, entry in enumerate(waiting, start=1)
        )

    def _cmd_stats(self, _args: list[str]) -> str:
        """Show free space and fragmentation."""
        stats = self._engine.stats()
        return "\n".join(
            [
                f"Technique:              {self._engine.technique}",
                f"Free:                   {format_bytes(stats.free_bytes)} in {stats.free_regions} regions",
                f"Largest free:           {format_bytes(stats.largest_free)}",
                f"Internal fragmentation: {format_bytes(stats.internal_fragmentation)}",
                f"External fragmentation: {format_bytes(stats.external_fragmentation)}",
                f"Unusable:               {format_bytes(stats.unusable)}",
            ]
        )

    def _cmd_log(self, args: list[str]) -> str:
        """Show log entries.

        ``log`` shows everything, ``log <level>`` entries at or above a
        level, and ``log <instance id>`` the history of one process,
        including processes that have since been removed.
        """
        if len(args) > 1:
            return "Usage: log [level | instance id]"
        logger = self._engine.logger
        if not args:
            entries = logger.entries
        elif args[0].isdigit():
            entries = logger.for_instance(int(args[0]))
            if not entries:
                return f"No log entries for instance {args[0]}."
        else:
            try:
                entries = logger.filter(min_level=LogLevel[args[0].upper()])
            except KeyError:
                return f"Error: unknown log level '{args[0]}'"
        return "\n".join(str(e) for e in entries) if entries else "No log entries."

    def _cmd_exit(self, _args: list[str]) -> str:
        """Signal the REPL to stop."""
        return self.EXIT_SENTINEL


def _describe(result: AddResult, name: str) -> str:
    """Turn an add result into one line of shell output."""
    if result.status is AddStatus.ALLOCATED:
        return f"Started {name} as instance {result.instance_id}"
    if result.status is AddStatus.QUEUED:
        return f"Queued {name}: not enough contiguous memory"
    return f"Rejected {name}: {result.reason}"


def _parse_switch(key: str, value: str) -> bool:
    """Parse an on/off setting."""
    lowered = value.lower()
    if lowered in _ON_VALUES:
        return True
    if lowered in _OFF_VALUES:
        return False
    msg = f"{key} must be on or off, got '{value}'"
    raise ValueError(msg)


def _parse_settings(base: MemoryConfig, args: list[str]) -> MemoryConfig:
    """Apply ``key=value`` settings from the ``init`` command to *base*.

    Raises:
        ValueError: If a setting is unknown or malformed.

    """
    changes: dict[str, object] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep:
            msg = f"expected key=value, got '{arg}'"
            raise ValueError(msg)
        match key:
            case "fit":
                changes["fit_policy"] = FitPolicy(value)
            case "fixed":
                changes["fixed_partition_size"] = int(float(value) * MIB)
            case "sizes":
                changes["variable_partition_sizes"] = tuple(
                    int(float(size) * MIB) for size in value.split(",") if size
                )
            case "page":
                changes["page_size"] = int(float(value) * KIB)
            case "compaction":
                changes["compaction_enabled"] = _parse_switch(key, value)
            case "autocompact":
                changes["compact_on_free"] = _parse_switch(key, value)
            case "overhead":
                changes["stack_heap_overhead"] = int(float(value) * KIB)
            case _:
                msg = f"unknown setting '{key}'"
                raise ValueError(msg)
    return replace(base, **changes)  # type: ignore[arg-type]
