"""Bench configuration loading for lockcycle.

A bench config ties together the test parameters, the simulated device
profile and the record store location in a single YAML file.

Example YAML:
    bench:
      id: "bench-a"
      description: "Front door lock endurance"

    test:
      target_cycles: 100
      inter_command_delay_ms: 1000
      response_timeout_ms: 5000
      steps: [unlock, lock]
      retry: {enabled: true, max_retries: 3, retry_delay_ms: 500}

    simulator:
      seed: 7
      commands:
        unlock: {min_latency_ms: 600, max_latency_ms: 1000, success_rate: 0.9}

    storage:
      database: "lockcycle.db"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lockcycle.errors import ConfigurationError
from lockcycle.simulator import SimulatorConfig
from lockcycle.types import TestConfiguration

DEFAULT_DATABASE = "lockcycle.db"


@dataclass(frozen=True)
class StorageConfig:
    """Record store configuration.

    Attributes:
        database: Path to the SQLite database file.
        keep_sessions: Number of most recent sessions to retain. None keeps all.
    """

    database: str = DEFAULT_DATABASE
    keep_sessions: int | None = 100


@dataclass(frozen=True)
class BenchConfig:
    """Complete bench configuration.

    Attributes:
        id: Unique bench identifier.
        description: Human-readable description.
        test: Test configuration for runs started from this bench.
        simulator: Simulated device configuration.
        storage: Record store configuration.
    """

    id: str
    description: str
    test: TestConfiguration
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def configuration_from_dict(data: Any) -> TestConfiguration:
    """Build a TestConfiguration from untrusted mapping data.

    Args:
        data: Mapping of configuration fields.

    Returns:
        The validated TestConfiguration.

    Raises:
        ConfigurationError: If data is not a mapping or a field is invalid.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("test configuration must be a mapping")
    steps = data.get("steps")
    if isinstance(steps, str):
        data = {**data, "steps": [steps]}
    try:
        return TestConfiguration.from_dict(data)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid test configuration: {exc}") from exc


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"{name} section must be a mapping")
    return section


def bench_config_from_dict(data: Any) -> BenchConfig:
    """Build a BenchConfig from a parsed YAML document.

    Raises:
        ConfigurationError: If required fields are missing or invalid.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Bench config must be a YAML mapping")

    bench_data = _section(data, "bench")
    bench_id = bench_data.get("id")
    if not bench_id:
        raise ConfigurationError("Missing required field: bench.id")

    if "test" not in data:
        raise ConfigurationError("Missing required section: test")
    test = configuration_from_dict(data["test"])

    try:
        simulator = SimulatorConfig.from_dict(_section(data, "simulator"))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid simulator section: {exc}") from exc

    storage_data = _section(data, "storage")
    keep = storage_data.get("keep_sessions", 100)
    if keep is not None:
        try:
            keep = int(keep)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"storage.keep_sessions must be an integer: {keep!r}"
            ) from exc
        if keep < 0:
            raise ConfigurationError("storage.keep_sessions must be >= 0")
    storage = StorageConfig(
        database=str(storage_data.get("database", DEFAULT_DATABASE)),
        keep_sessions=keep,
    )

    return BenchConfig(
        id=str(bench_id),
        description=bench_data.get("description", ""),
        test=test,
        simulator=simulator,
        storage=storage,
    )


def load_bench_config(path: str | Path) -> BenchConfig:
    """Load bench configuration from a YAML file.

    Args:
        path: Path to the bench configuration YAML file.

    Returns:
        Parsed BenchConfig.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigurationError: If the document or a field is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Bench config not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Bench config is not valid YAML: {exc}") from exc

    return bench_config_from_dict(data)
