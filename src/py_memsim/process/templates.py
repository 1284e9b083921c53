"""Process templates — the programs a user can launch.

A **template** describes a program on disk: its name and the size of
each section of its executable image.  Launching a template creates a
running *instance* (see ``registry.py``); the same template can be
launched many times.

Classic executable sections:

- ``.text``  — machine code.
- ``.data``  — initialised globals.
- ``.bss``   — zero-initialised globals.
- ``.stack`` — the call stack.
- ``.heap``  — dynamically allocated memory.

The built-in catalogue uses section sizes measured from real Windows
programs, scaled up six-fold so they make a visible dent in a 16 MiB
machine.  A second, simpler catalogue (``DEMO_BATCH``) holds
single-image programs for the static and dynamic techniques.

Templates can be saved to and loaded from JSON, so a workshop can ship
its own catalogue.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from py_memsim.errors import InvalidRequestError
from py_memsim.units import KIB

SECTION_NAMES = (".text", ".data", ".bss", ".stack", ".heap")

# Scaling applied to the measured section sizes of the built-in catalogue.
_SCALE = 6
_STACK = 64 * KIB
_HEAP = 128 * KIB


@dataclass(frozen=True)
class Segment:
    """A named section of a program image.

    Raises:
        InvalidRequestError: If *size* is negative.

    """

    name: str
    size: int

    def __post_init__(self) -> None:
        """Reject a negative section size."""
        if self.size < 0:
            msg = f"Segment '{self.name}' cannot have a negative size ({self.size})"
            raise InvalidRequestError(msg)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this segment."""
        return {"name": self.name, "size": self.size}


@dataclass(frozen=True)
class ProcessTemplate:
    """An immutable program description.

    Attributes:
        name: Program name (e.g. "P2 (Word)").
        segments: Sections in placement order.

    """

    name: str
    segments: tuple[Segment, ...]

    @property
    def total_size(self) -> int:
        """Return the sum of every segment size."""
        return sum(segment.size for segment in self.segments)

    @classmethod
    def single(cls, name: str, size: int) -> "ProcessTemplate":
        """Build a program with one image of *size* bytes.

        Raises:
            InvalidRequestError: If *size* is not positive.

        """
        if size <= 0:
            msg = f"Process size must be positive, got {size}"
            raise InvalidRequestError(msg)
        return cls(name=name, segments=(Segment(name=".image", size=size),))

    @classmethod
    def custom(
        cls,
        name: str,
        *,
        text: int = 0,
        data: int = 0,
        bss: int = 0,
        stack: int = 0,
        heap: int = 0,
    ) -> "ProcessTemplate":
        """Build a program from the five classic sections, dropping empty ones.

        Raises:
            InvalidRequestError: If a size is negative or every section is empty.

        """
        sizes = (text, data, bss, stack, heap)
        if any(size < 0 for size in sizes):
            msg = f"Section sizes cannot be negative: {sizes}"
            raise InvalidRequestError(msg)
        segments = tuple(
            Segment(name=section, size=size)
            for section, size in zip(SECTION_NAMES, sizes, strict=True)
            if size > 0
        )
        if not segments:
            msg = f"Process '{name}' needs at least one non-empty section"
            raise InvalidRequestError(msg)
        return cls(name=name, segments=segments)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready view of this template."""
        return {
            "name": self.name,
            "segments": [segment.to_dict() for segment in self.segments],
            "total_size": self.total_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ProcessTemplate":
        """Rebuild a template from ``to_dict`` output.

        Raises:
            InvalidRequestError: If a field is missing or malformed.

        """
        try:
            raw_segments = data["segments"]
            segments = tuple(
                Segment(name=str(item["name"]), size=int(item["size"]))  # type: ignore[index]
                for item in raw_segments  # type: ignore[attr-defined]
            )
            name = str(data["name"])
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Malformed process template: {e}"
            raise InvalidRequestError(msg) from e
        return cls(name=name, segments=segments)


def _measured(name: str, text: int, data: int, bss: int) -> ProcessTemplate:
    """Build a built-in template from measured section sizes."""
    return ProcessTemplate(
        name=name,
        segments=(
            Segment(".text", text * _SCALE),
            Segment(".data", data * _SCALE),
            Segment(".bss", bss * _SCALE),
            Segment(".stack", _STACK),
            Segment(".heap", _HEAP * _SCALE),
        ),
    )


BUILTIN_TEMPLATES: tuple[ProcessTemplate, ...] = (
    _measured("P1 (Notepad)", text=19524, data=12352, bss=1165),
    _measured("P2 (Word)", text=77539, data=32680, bss=4100),
    _measured("P3 (Excel)", text=99542, data=24245, bss=7557),
    _measured("P4 (PowerPoint)", text=115000, data=123470, bss=1123),
    _measured("P5 (Publisher)", text=12342, data=1256, bss=1756),
)

DEMO_BATCH: tuple[ProcessTemplate, ...] = (
    ProcessTemplate.single("Web Browser", 780 * KIB),
    ProcessTemplate.single("Code Editor", 1200 * KIB),
    ProcessTemplate.single("Music Player", 450 * KIB),
    ProcessTemplate.single("Terminal", 256 * KIB),
    ProcessTemplate.single("Light Game", 2100 * KIB),
)


def dump_templates(templates: Iterable[ProcessTemplate], path: Path) -> None:
    """Save a catalogue of templates to a JSON file."""
    data = [template.to_dict() for template in templates]
    path.write_text(json.dumps(data, indent=2))


def load_templates(path: Path) -> list[ProcessTemplate]:
    """Load a catalogue of templates from a JSON file.

    Raises:
        FileNotFoundError: If the path does not exist.
        InvalidRequestError: If the file is not a list of templates.

    """
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        msg = f"Template file {path} must contain a JSON list"
        raise InvalidRequestError(msg)
    return [ProcessTemplate.from_dict(item) for item in data]

