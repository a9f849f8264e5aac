"""Shared fixtures for lockcycle unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeDeviceLink


@pytest.fixture
def fake_link() -> FakeDeviceLink:
    """A connected fake link answering every command after 1 ms."""
    return FakeDeviceLink()


BENCH_YAML = """\
bench:
  id: "bench-test"
  description: "Unit test bench"
test:
  target_cycles: 3
  inter_command_delay_ms: 0
  response_timeout_ms: 500
  steps: [unlock, lock]
  retry: {enabled: false, max_retries: 0, retry_delay_ms: 0}
simulator:
  seed: 3
  commands:
    unlock: {min_latency_ms: 1, max_latency_ms: 3, success_rate: 1.0}
    lock: {min_latency_ms: 1, max_latency_ms: 3, success_rate: 1.0}
storage:
  database: "{database}"
"""


@pytest.fixture
def bench_file(tmp_path: Path) -> Path:
    """A bench config with a fast, always-successful simulator."""
    path = tmp_path / "bench.yaml"
    path.write_text(
        BENCH_YAML.replace("{database}", str(tmp_path / "lockcycle.db")), encoding="utf-8"
    )
    return path
