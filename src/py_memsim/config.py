"""Engine configuration — which technique, and how it is tuned.

A ``MemoryConfig`` is an immutable bundle of every knob the engine
reads when it builds a backing store.  All sizes are in bytes; the
``KIB`` / ``MIB`` constants keep call sites readable::

    MemoryConfig(page_size=32 * KIB, fit_policy=FitPolicy.BEST)

Configurations can also come from outside the program (a JSON file
or a web request) using the option names the presentation layer
speaks (``pageSizeKiB``, ``fixedPartitionSizeMiB``...).
``MemoryConfig.from_dict`` accepts both spellings.

Design choices:
    - **Frozen dataclass** — a running engine's configuration only
      changes through ``initialize()`` or ``set_fit_policy()``, both of
      which swap in a new object via ``dataclasses.replace``.
    - **Validation is explicit** — ``validate()`` is called by the
      engine, so tests can build odd configurations on purpose.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, fields
from enum import StrEnum
from pathlib import Path

from py_memsim.errors import InvalidRequestError
from py_memsim.memory.fit import FitPolicy
from py_memsim.units import KIB, MIB

# Pages smaller than this are raised to it when a paged store is built.
MIN_PAGE_SIZE = 32 * KIB


class Technique(StrEnum):
    """The five partitioning disciplines the engine can simulate."""

    STATIC_FIXED = "static-fixed"
    STATIC_VARIABLE = "static-variable"
    DYNAMIC = "dynamic"
    SEGMENTATION = "segmentation"
    PAGING = "paging"

    @property
    def queues_on_failure(self) -> bool:
        """Return True if processes that do not fit wait instead of failing."""
        return self in {Technique.STATIC_FIXED, Technique.STATIC_VARIABLE, Technique.DYNAMIC}


# External option names and how to turn them into field values.
_MIB_OPTIONS = {"fixedPartitionSizeMiB": "fixed_partition_size"}
_KIB_OPTIONS = {"pageSizeKiB": "page_size"}
_PLAIN_OPTIONS = {
    "fitPolicy": "fit_policy",
    "compactionEnabled": "compaction_enabled",
    "compactOnFree": "compact_on_free",
}


@dataclass(frozen=True)
class MemoryConfig:
    """Tunable parameters for every backing store.

    Attributes:
        total_memory: Size of physical memory.
        os_reserved: Bytes reserved for the OS at address 0.
        fixed_partition_size: Partition size for static-fixed.
        variable_partition_sizes: Ordered partition sizes for static-variable.
        page_size: Frame size for paging.
        fit_policy: Rule for choosing among free regions.
        compaction_enabled: Allow ``compact()`` on the dynamic store.
        compact_on_free: Compact automatically after every removal
            (only when compaction is enabled).
        split_threshold: Dynamic remainders this small are not split off.
        stack_heap_overhead: Bytes added to every plain process request.

    """

    total_memory: int = 16 * MIB
    os_reserved: int = 1 * MIB
    fixed_partition_size: int = 3 * MIB
    variable_partition_sizes: tuple[int, ...] = (1 * MIB, 1 * MIB, 2 * MIB, 2 * MIB, 3 * MIB, 5 * MIB)
    page_size: int = 64 * KIB
    fit_policy: FitPolicy = FitPolicy.FIRST
    compaction_enabled: bool = False
    compact_on_free: bool = False
    split_threshold: int = 16 * KIB
    stack_heap_overhead: int = 0

    @property
    def user_memory(self) -> int:
        """Return the bytes available to processes."""
        return self.total_memory - self.os_reserved

    def validate(self) -> None:
        """Check the configuration for sizes no store could honour.

        Raises:
            InvalidRequestError: If a size is non-positive or the OS
                region leaves no user space.

        """
        if self.total_memory <= 0 or self.os_reserved <= 0:
            msg = "Total memory and OS region must be positive"
            raise InvalidRequestError(msg)
        if self.os_reserved >= self.total_memory:
            msg = f"OS region ({self.os_reserved} B) leaves no user space in {self.total_memory} B"
            raise InvalidRequestError(msg)
        if self.page_size <= 0:
            msg = f"Page size must be positive, got {self.page_size}"
            raise InvalidRequestError(msg)
        if self.split_threshold < 0 or self.stack_heap_overhead < 0:
            msg = "Split threshold and stack/heap overhead cannot be negative"
            raise InvalidRequestError(msg)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "MemoryConfig":
        """Build a configuration from external or field-named options.

        Recognised external names: ``fixedPartitionSizeMiB``,
        ``variablePartitionSizesMiB``, ``pageSizeKiB``, ``fitPolicy``,
        ``compactionEnabled`` and ``compactOnFree``.  Any dataclass field
        name is accepted too, with sizes in bytes.  Values are coerced
        to each field's type, so ``"16"`` becomes ``16`` and the flag
        ``"false"`` becomes ``False``.

        Raises:
            InvalidRequestError: If an option is unknown or has a bad value.

        """
        known = {f.name for f in fields(cls)}
        values: dict[str, object] = {}
        try:
            for key, raw in data.items():
                if key in _MIB_OPTIONS:
                    values[_MIB_OPTIONS[key]] = _to_bytes(raw, MIB)
                elif key in _KIB_OPTIONS:
                    values[_KIB_OPTIONS[key]] = _to_bytes(raw, KIB)
                elif key == "variablePartitionSizesMiB":
                    values["variable_partition_sizes"] = tuple(
                        _to_bytes(size, MIB) for size in _as_list(raw)
                    )
                elif key in _PLAIN_OPTIONS:
                    values[_PLAIN_OPTIONS[key]] = raw
                elif key in known:
                    values[key] = raw
                else:
                    msg = f"Unknown configuration option '{key}'"
                    raise InvalidRequestError(msg)
            for key, raw in values.items():
                values[key] = _coerce(key, raw)
        except (TypeError, ValueError) as e:
            msg = f"Invalid configuration: {e}"
            raise InvalidRequestError(msg) from e
        return cls(**values)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        """Return the configuration as JSON-ready field values."""
        return {
            "total_memory": self.total_memory,
            "os_reserved": self.os_reserved,
            "fixed_partition_size": self.fixed_partition_size,
            "variable_partition_sizes": list(self.variable_partition_sizes),
            "page_size": self.page_size,
            "fit_policy": str(self.fit_policy),
            "compaction_enabled": self.compaction_enabled,
            "compact_on_free": self.compact_on_free,
            "split_threshold": self.split_threshold,
            "stack_heap_overhead": self.stack_heap_overhead,
        }


def _to_bytes(value: object, unit: int) -> int:
    """Convert a size in *unit* (which may be fractional) to whole bytes."""
    return int(float(value) * unit)  # type: ignore[arg-type]


# Field coercions for values that arrive as JSON text or numbers.
_INT_FIELDS = frozenset(
    {
        "total_memory",
        "os_reserved",
        "fixed_partition_size",
        "page_size",
        "split_threshold",
        "stack_heap_overhead",
    }
)
_BOOL_FIELDS = frozenset({"compaction_enabled", "compact_on_free"})
_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _to_int(value: object) -> int:
    """Convert a whole-number option, rejecting booleans and fractions."""
    if isinstance(value, bool):
        msg = f"Expected a whole number, got {value!r}"
        raise TypeError(msg)
    if isinstance(value, float) and not value.is_integer():
        msg = f"Expected a whole number, got {value!r}"
        raise ValueError(msg)
    return int(value)  # type: ignore[call-overload]


def _to_bool(value: object) -> bool:
    """Parse a flag strictly: JSON booleans, 0/1, or true/false words."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in {0, 1}:
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    msg = f"Expected true or false, got {value!r}"
    raise ValueError(msg)


def _coerce(key: str, value: object) -> object:
    """Give a field value the type its dataclass field declares."""
    if key in _INT_FIELDS:
        return _to_int(value)
    if key in _BOOL_FIELDS:
        return _to_bool(value)
    if key == "fit_policy":
        return FitPolicy(value)
    if key == "variable_partition_sizes":
        return tuple(_to_int(size) for size in _as_list(value))
    return value


def _as_list(value: object) -> list[object]:
    """Accept a list/tuple or a comma-separated string of sizes."""
    if isinstance(value, str):
        return [part for part in (p.strip() for p in value.split(",")) if part]
    if isinstance(value, list | tuple):
        return list(value)
    msg = f"Expected a list of sizes, got {value!r}"
    raise TypeError(msg)


def load_config(path: Path) -> MemoryConfig:
    """Load a configuration from a JSON file.

    Args:
        path: File containing a JSON object of options.

    Returns:
        The parsed configuration.

    Raises:
        FileNotFoundError: If the path does not exist.
        InvalidRequestError: If the file holds unknown or bad options.

    """
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        msg = f"Configuration file {path} must contain a JSON object"
        raise InvalidRequestError(msg)
    return MemoryConfig.from_dict(data)
