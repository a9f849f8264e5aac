"""Unit tests for bench configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from lockcycle.config import (
    DEFAULT_DATABASE,
    bench_config_from_dict,
    configuration_from_dict,
    load_bench_config,
)
from lockcycle.errors import ConfigurationError


class TestConfigurationFromDict:
    """Tests for configuration_from_dict."""

    def test_defaults_applied(self) -> None:
        """Only target_cycles is required."""
        config = configuration_from_dict({"target_cycles": 20})

        assert config.target_cycles == 20
        assert config.inter_command_delay_ms == 1000
        assert config.response_timeout_ms == 5000
        assert config.steps == ("unlock", "lock")

    def test_single_step_string(self) -> None:
        """A bare string step is treated as a one-step cycle."""
        config = configuration_from_dict({"target_cycles": 1, "steps": "status"})
        assert config.steps == ("status",)

    def test_not_a_mapping(self) -> None:
        """Non-mapping input is rejected."""
        with pytest.raises(ConfigurationError):
            configuration_from_dict([1, 2, 3])

    def test_invalid_values(self) -> None:
        """Invalid field values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            configuration_from_dict({"target_cycles": 0})
        with pytest.raises(ConfigurationError):
            configuration_from_dict({"target_cycles": 5, "response_timeout_ms": 0})
        with pytest.raises(ConfigurationError):
            configuration_from_dict({"target_cycles": 5, "steps": []})


class TestBenchConfig:
    """Tests for bench configuration documents."""

    def test_load_from_file(self, bench_file: Path) -> None:
        """A complete bench file parses every section."""
        bench = load_bench_config(bench_file)

        assert bench.id == "bench-test"
        assert bench.description == "Unit test bench"
        assert bench.test.target_cycles == 3
        assert bench.test.retry.enabled is False
        assert bench.simulator.seed == 3
        assert bench.simulator.profile_for("unlock").max_latency_ms == 3
        assert bench.storage.database.endswith("lockcycle.db")
        assert bench.storage.keep_sessions == 100

    def test_minimal_document(self) -> None:
        """Simulator and storage sections are optional."""
        bench = bench_config_from_dict({"bench": {"id": "b1"}, "test": {"target_cycles": 2}})

        assert bench.storage.database == DEFAULT_DATABASE
        assert bench.simulator.profile_for("lock").success_rate == 0.95

    def test_keep_all_sessions(self) -> None:
        """keep_sessions may be null to keep the whole history."""
        bench = bench_config_from_dict(
            {
                "bench": {"id": "b1"},
                "test": {"target_cycles": 2},
                "storage": {"keep_sessions": None},
            }
        )
        assert bench.storage.keep_sessions is None

    @pytest.mark.parametrize("keep", ["abc", -1, [3]])
    def test_invalid_keep_sessions(self, keep: object) -> None:
        """keep_sessions must be a non-negative integer."""
        with pytest.raises(ConfigurationError, match="keep_sessions"):
            bench_config_from_dict(
                {
                    "bench": {"id": "b1"},
                    "test": {"target_cycles": 2},
                    "storage": {"keep_sessions": keep},
                }
            )

    def test_missing_bench_id(self) -> None:
        """bench.id is required."""
        with pytest.raises(ConfigurationError, match="bench.id"):
            bench_config_from_dict({"bench": {}, "test": {"target_cycles": 2}})

    def test_missing_test_section(self) -> None:
        """The test section is required."""
        with pytest.raises(ConfigurationError, match="test"):
            bench_config_from_dict({"bench": {"id": "b1"}})

    def test_bad_section_type(self) -> None:
        """Sections must be mappings."""
        with pytest.raises(ConfigurationError):
            bench_config_from_dict(
                {"bench": {"id": "b1"}, "test": {"target_cycles": 2}, "storage": "db"}
            )

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_bench_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Malformed YAML raises ConfigurationError."""
        path = tmp_path / "bad.yaml"
        path.write_text("bench: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_bench_config(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty document is not a bench config."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_bench_config(path)
