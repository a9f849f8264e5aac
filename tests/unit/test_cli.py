"""Unit tests for the lockcycle CLI."""

from __future__ import annotations

import csv
from pathlib import Path
from unittest.mock import patch

import pytest

from lockcycle.cli import build_parser, main


@pytest.fixture
def recorded(bench_file: Path, tmp_path: Path) -> Path:
    """A database holding one completed three-cycle session."""
    db = tmp_path / "history.db"
    assert main(["run", str(bench_file), "--db", str(db)]) == 0
    return db


def _session_id(db: Path, capsys: pytest.CaptureFixture[str]) -> str:
    capsys.readouterr()
    main(["history", "--db", str(db)])
    rows = capsys.readouterr().out.splitlines()
    return rows[1].split()[0]


class TestParser:
    """Tests for argument parsing."""

    def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Without a command the help is printed and the exit code is 1."""
        assert main([]) == 1
        assert "usage: lockcycle" in capsys.readouterr().out

    def test_history_defaults(self) -> None:
        """history uses the default database and limit."""
        args = build_parser().parse_args(["history"])

        assert args.db == "lockcycle.db"
        assert args.limit == 20
        assert args.status is None

    def test_history_rejects_idle_status(self) -> None:
        """idle is never a stored session status."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["history", "--status", "idle"])


class TestRunCommand:
    """Tests for ``lockcycle run``."""

    def test_run_prints_summary(
        self, bench_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A completed run prints every cycle and the summary."""
        assert main(["run", str(bench_file)]) == 0

        out = capsys.readouterr().out
        assert "Bench: bench-test Unit test bench" in out
        assert "cycle 3/3 PASS" in out
        assert "COMPLETED - Cycles: 3" in out

    def test_cycles_override_and_csv(
        self, bench_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """--cycles overrides the bench and --csv writes the attempts."""
        output = tmp_path / "out" / "attempts.csv"

        assert main(["run", str(bench_file), "--cycles", "2", "--csv", str(output)]) == 0

        with open(output, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 4
        assert "Attempts written to" in capsys.readouterr().out

    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A missing bench file is reported."""
        assert main(["run", str(tmp_path / "missing.yaml")]) == 1
        assert "Error:" in capsys.readouterr().out

    def test_invalid_cycles(self, bench_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """An invalid cycle override is a configuration error."""
        assert main(["run", str(bench_file), "--cycles", "0"]) == 1
        assert "target_cycles" in capsys.readouterr().out


class TestHistoryCommands:
    """Tests for history, show and export."""

    def test_history(self, recorded: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """history lists the recorded session."""
        capsys.readouterr()

        assert main(["history", "--db", str(recorded)]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("ID")
        assert "completed" in lines[1]
        assert "3/3" in lines[1]

    def test_history_empty(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """An empty database reports no sessions."""
        assert main(["history", "--db", str(tmp_path / "empty.db")]) == 0
        assert "No sessions found." in capsys.readouterr().out

    def test_show(self, recorded: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """show prints the session details."""
        session_id = _session_id(recorded, capsys)

        assert main(["show", session_id, "--db", str(recorded)]) == 0

        out = capsys.readouterr().out
        assert f"Session: {session_id}" in out
        assert "Cycles: 3/3" in out
        assert "Failures:" not in out

    def test_show_unknown(self, recorded: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """show reports an unknown session."""
        assert main(["show", "T404", "--db", str(recorded)]) == 1
        assert "Unknown session" in capsys.readouterr().out

    def test_export(
        self, recorded: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """export writes the stored attempts to CSV."""
        session_id = _session_id(recorded, capsys)
        output = tmp_path / "export.csv"

        assert main(["export", session_id, str(output), "--db", str(recorded)]) == 0

        assert "Wrote 6 attempts" in capsys.readouterr().out
        with open(output, newline="", encoding="utf-8") as f:
            assert len(list(csv.DictReader(f))) == 6


class TestServeCommand:
    """Tests for ``lockcycle serve``."""

    def test_missing_config(self, tmp_path: Path) -> None:
        """serve refuses to start without a bench file."""
        assert main(["serve", str(tmp_path / "missing.yaml")]) == 1

    def test_starts_uvicorn(self, bench_file: Path) -> None:
        """serve hands the app to uvicorn with the requested address."""
        with patch("uvicorn.run") as run:
            assert main(["serve", str(bench_file), "--port", "9100"]) == 0

        run.assert_called_once()
        assert run.call_args.kwargs == {"host": "0.0.0.0", "port": 9100}
        assert run.call_args.args[0].title == "lockcycle"
