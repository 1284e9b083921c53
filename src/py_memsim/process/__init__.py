"""Process subsystem — templates, running instances and the waiting queue.

Re-exports public symbols so callers can write::

    from py_memsim.process import ProcessTemplate, ProcessRegistry
"""

from py_memsim.process.queue import WaitingEntry, WaitingQueue
from py_memsim.process.registry import ProcessInstance, ProcessRegistry
from py_memsim.process.templates import (
    BUILTIN_TEMPLATES,
    DEMO_BATCH,
    SECTION_NAMES,
    ProcessTemplate,
    Segment,
    dump_templates,
    load_templates,
)

__all__ = [
    "BUILTIN_TEMPLATES",
    "DEMO_BATCH",
    "SECTION_NAMES",
    "ProcessInstance",
    "ProcessRegistry",
    "ProcessTemplate",
    "Segment",
    "WaitingEntry",
    "WaitingQueue",
    "dump_templates",
    "load_templates",
]
