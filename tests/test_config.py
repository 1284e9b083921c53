"""Tests for engine configuration."""

import json
from pathlib import Path

import pytest

from py_memsim.config import MemoryConfig, Technique, load_config
from py_memsim.errors import InvalidRequestError
from py_memsim.memory.fit import FitPolicy
from py_memsim.units import KIB, MIB

DEFAULT_PAGE = 64 * KIB


class TestDefaults:
    """Verify the default configuration."""

    def test_default_sizes(self) -> None:
        """16 MiB of memory with a 1 MiB OS region and 64 KiB pages."""
        config = MemoryConfig()
        assert config.total_memory == 16 * MIB
        assert config.user_memory == 15 * MIB
        assert config.page_size == DEFAULT_PAGE
        assert config.fit_policy is FitPolicy.FIRST
        assert not config.compaction_enabled

    def test_queueing_techniques(self) -> None:
        """Only static and dynamic processes wait for memory."""
        assert Technique.DYNAMIC.queues_on_failure
        assert Technique.STATIC_FIXED.queues_on_failure
        assert not Technique.PAGING.queues_on_failure
        assert not Technique.SEGMENTATION.queues_on_failure


class TestValidate:
    """Verify rejection of impossible configurations."""

    def test_os_region_must_be_smaller_than_memory(self) -> None:
        """An OS region filling memory leaves no user space."""
        with pytest.raises(InvalidRequestError, match="no user space"):
            MemoryConfig(os_reserved=16 * MIB).validate()

    def test_page_size_must_be_positive(self) -> None:
        """A zero page size is rejected."""
        with pytest.raises(InvalidRequestError, match="Page size"):
            MemoryConfig(page_size=0).validate()

    def test_negative_overhead_rejected(self) -> None:
        """Stack/heap overhead cannot be negative."""
        with pytest.raises(InvalidRequestError):
            MemoryConfig(stack_heap_overhead=-1).validate()


class TestFromDict:
    """Verify building configurations from external options."""

    def test_external_names(self) -> None:
        """Option names in KiB and MiB are converted to bytes."""
        config = MemoryConfig.from_dict(
            {
                "pageSizeKiB": 32,
                "fixedPartitionSizeMiB": 5,
                "variablePartitionSizesMiB": "1, 2, 3",
                "fitPolicy": "best-fit",
                "compactionEnabled": True,
            }
        )
        assert config.page_size == 32 * KIB
        assert config.fixed_partition_size == 5 * MIB
        assert config.variable_partition_sizes == (MIB, 2 * MIB, 3 * MIB)
        assert config.fit_policy is FitPolicy.BEST
        assert config.compaction_enabled

    def test_field_names(self) -> None:
        """Dataclass field names are accepted, in bytes."""
        config = MemoryConfig.from_dict({"page_size": 128 * KIB, "compact_on_free": True})
        assert config.page_size == 128 * KIB
        assert config.compact_on_free

    def test_unknown_option_rejected(self) -> None:
        """Unrecognised options raise InvalidRequestError."""
        with pytest.raises(InvalidRequestError, match="Unknown configuration option"):
            MemoryConfig.from_dict({"swapSizeMiB": 4})

    def test_bad_fit_policy_rejected(self) -> None:
        """An unknown fit policy raises InvalidRequestError."""
        with pytest.raises(InvalidRequestError, match="Invalid configuration"):
            MemoryConfig.from_dict({"fitPolicy": "next-fit"})

    def test_string_sizes_coerced(self) -> None:
        """Sizes given as text become integers."""
        config = MemoryConfig.from_dict({"total_memory": str(16 * MIB), "pageSizeKiB": "32"})
        assert config.total_memory == 16 * MIB
        assert config.page_size == 32 * KIB
        config.validate()

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("false", False), ("False", False), ("0", False), (0, False), ("true", True), ("on", True), (1, True)],
    )
    def test_string_flags_parsed_strictly(self, raw: object, expected: bool) -> None:  # noqa: FBT001
        """Flags written as text or 0/1 parse to the matching boolean."""
        config = MemoryConfig.from_dict({"compactionEnabled": raw, "compact_on_free": raw})
        assert config.compaction_enabled is expected
        assert config.compact_on_free is expected

    def test_unparseable_flag_rejected(self) -> None:
        """A flag that is not a recognisable boolean is rejected."""
        with pytest.raises(InvalidRequestError, match="Invalid configuration"):
            MemoryConfig.from_dict({"compactionEnabled": "maybe"})

    def test_non_numeric_size_rejected(self) -> None:
        """A size that is not a number is rejected, not left as text."""
        with pytest.raises(InvalidRequestError, match="Invalid configuration"):
            MemoryConfig.from_dict({"total_memory": "abc"})

    def test_fractional_byte_size_rejected(self) -> None:
        """Byte-valued fields must be whole numbers."""
        with pytest.raises(InvalidRequestError, match="Invalid configuration"):
            MemoryConfig.from_dict({"os_reserved": 1.5})

    def test_to_dict_round_trip(self) -> None:
        """A configuration survives to_dict then from_dict."""
        config = MemoryConfig(page_size=32 * KIB, fit_policy=FitPolicy.WORST)
        assert MemoryConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:
    """Verify loading configuration files."""

    def test_load_json_file(self, tmp_path: Path) -> None:
        """A JSON object of options loads into a configuration."""
        path = tmp_path / "memsim.json"
        path.write_text(json.dumps({"pageSizeKiB": 128, "fitPolicy": "worst-fit"}))
        config = load_config(path)
        assert config.page_size == 128 * KIB
        assert config.fit_policy is FitPolicy.WORST

    def test_non_object_rejected(self, tmp_path: Path) -> None:
        """A file holding a JSON list is rejected."""
        path = tmp_path / "memsim.json"
        path.write_text("[1, 2]")
        with pytest.raises(InvalidRequestError, match="JSON object"):
            load_config(path)
