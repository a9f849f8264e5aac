"""Unit tests for CSV export."""

from __future__ import annotations

import csv
import io

from lockcycle.export import CSV_COLUMNS, attempts_to_csv, write_attempts, write_attempts_csv
from lockcycle.records import AttemptRecord
from lockcycle.types import CycleResult, StepResult, TestConfiguration, TestRun


def _run() -> TestRun:
    run = TestRun(id="T240611093015k3x9", config=TestConfiguration(target_cycles=2))
    run.record(
        CycleResult(
            cycle_number=1,
            steps=(
                StepResult(kind="unlock", success=True, response_time_ms=742),
                StepResult(kind="lock", success=False, response_time_ms=5000, error="timeout"),
            ),
            duration_ms=6742,
        )
    )
    return run


class TestCsvExport:
    """Tests for attempt CSV rendering."""

    def test_header_only_for_no_records(self) -> None:
        """An empty export still has the header row."""
        assert attempts_to_csv([]).splitlines() == [",".join(CSV_COLUMNS)]

    def test_rows(self) -> None:
        """Each attempt becomes one row; missing values are empty."""
        records = [
            AttemptRecord("T1", 1, "unlock", "success", 742),
            AttemptRecord("T1", 1, "lock", "failure", None, "motor stalled, retry"),
        ]
        handle = io.StringIO(newline="")

        count = write_attempts(records, handle)

        rows = list(csv.reader(io.StringIO(handle.getvalue())))
        assert count == 2
        assert rows[1] == ["T1", "1", "unlock", "success", "742", ""]
        assert rows[2] == ["T1", "1", "lock", "failure", "", "motor stalled, retry"]

    def test_write_run_to_file(self, tmp_path) -> None:
        """A run is written to a new file, creating parent directories."""
        path = write_attempts_csv(_run(), tmp_path / "reports" / "run.csv")

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert [r["action"] for r in rows] == ["unlock", "lock"]
        assert rows[1]["response_time"] == "5000"
        assert rows[1]["error_message"] == "timeout"
        assert {r["session_id"] for r in rows} == {"T240611093015k3x9"}
