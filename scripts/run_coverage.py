#!/usr/bin/env python3
"""Coverage runner for lockcycle.

Runs the unit tests with per-test coverage contexts and reports which source
lines are only exercised by tests built on test doubles (tests marked
``uses_mock`` by the root conftest: MagicMock, AsyncMock, patch or the
scripted FakeDeviceLink). Those lines are candidates for tests against the
simulated device or the real service stack.

Usage:
    # Run the unit tests with coverage
    python scripts/run_coverage.py

    # Also print the double-only analysis
    python scripts/run_coverage.py --analyze-mocks

    # Only analyze an existing coverage run
    python scripts/run_coverage.py --analyze-only
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
COVERAGE_DIR = PROJECT_ROOT / "coverage"
COVERAGE_JSON = COVERAGE_DIR / "coverage.json"

# Test context names containing one of these are treated as double-based
DOUBLE_PATTERNS = ("mock", "Mock", "patch", "fake", "Fake")


@dataclass
class CoverageStats:
    """Coverage totals with the double-only share."""

    total_lines: int = 0
    covered_lines: int = 0
    double_only_lines: int = 0
    files: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def coverage_percent(self) -> float:
        """Return the covered share of all lines."""
        if self.total_lines == 0:
            return 100.0
        return self.covered_lines / self.total_lines * 100

    @property
    def double_only_percent(self) -> float:
        """Return the share of covered lines reached only through doubles."""
        if self.covered_lines == 0:
            return 0.0
        return self.double_only_lines / self.covered_lines * 100


def _coverage(*args: str) -> None:
    env = dict(os.environ, COVERAGE_FILE=str(COVERAGE_DIR / ".coverage"))
    subprocess.run([sys.executable, "-m", "coverage", *args], cwd=PROJECT_ROOT, env=env)


def run_pytest_with_coverage(verbose: bool = True) -> int:
    """Run the unit tests and write terminal, HTML and JSON reports.

    Returns:
        The pytest exit code.
    """
    COVERAGE_DIR.mkdir(exist_ok=True)
    cmd = [
        sys.executable,
        "-m",
        "pytest",
        "--cov=lockcycle",
        "--cov-report=",
        "--cov-context=test",
        str(PROJECT_ROOT / "tests" / "unit"),
    ]
    if verbose:
        cmd.append("-v")

    env = dict(os.environ, COVERAGE_FILE=str(COVERAGE_DIR / ".coverage"))
    result = subprocess.run(cmd, cwd=PROJECT_ROOT, env=env)

    _coverage("report", "--show-missing")
    _coverage("html", "-d", str(COVERAGE_DIR / "html"))
    _coverage("json", "--show-contexts", "-o", str(COVERAGE_JSON))
    print(f"\nCoverage HTML report: {COVERAGE_DIR / 'html' / 'index.html'}")
    return result.returncode


def analyze_double_coverage() -> CoverageStats:
    """Count covered lines whose every test context used a test double."""
    stats = CoverageStats()
    if not COVERAGE_JSON.exists():
        print(f"Coverage data not found at {COVERAGE_JSON}")
        print("Run coverage first: python scripts/run_coverage.py")
        return stats

    with open(COVERAGE_JSON, encoding="utf-8") as f:
        data = json.load(f)

    for filename, file_data in data.get("files", {}).items():
        if "/tests/" in filename:
            continue
        executed = file_data.get("executed_lines", [])
        missing = file_data.get("missing_lines", [])
        contexts: dict[str, list[str]] = file_data.get("contexts", {})

        double_only = sum(
            1
            for line_contexts in contexts.values()
            if line_contexts
            and all(any(p in ctx for p in DOUBLE_PATTERNS) for ctx in line_contexts if ctx)
        )
        total = len(executed) + len(missing)
        stats.total_lines += total
        stats.covered_lines += len(executed)
        stats.double_only_lines += double_only
        stats.files[filename.replace(f"{PROJECT_ROOT}/", "")] = {
            "total": total,
            "covered": len(executed),
            "double_only": double_only,
        }
    return stats


def print_double_analysis(stats: CoverageStats) -> None:
    """Print the double-only coverage report."""
    print("\n" + "=" * 72)
    print("TEST DOUBLE COVERAGE ANALYSIS")
    print("=" * 72)
    print(f"Total lines:            {stats.total_lines:,}")
    print(f"Covered lines:          {stats.covered_lines:,} ({stats.coverage_percent:.1f}%)")
    print(
        f"Covered by doubles only: {stats.double_only_lines:,} "
        f"({stats.double_only_percent:.1f}% of covered)"
    )

    ranked = sorted(stats.files.items(), key=lambda item: item[1]["double_only"], reverse=True)
    flagged = [(name, s) for name, s in ranked if s["double_only"] > 0]
    if flagged:
        print("\nFiles with double-only coverage:")
        for name, file_stats in flagged[:15]:
            print(
                f"  {name}: {file_stats['double_only']} lines "
                f"({file_stats['covered']}/{file_stats['total']} covered)"
            )


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run lockcycle tests with coverage")
    parser.add_argument("--analyze-mocks", action="store_true", help="Print double-only analysis")
    parser.add_argument("--analyze-only", action="store_true", help="Skip the test run")
    parser.add_argument("-q", "--quiet", action="store_true", help="Less pytest output")
    args = parser.parse_args()

    exit_code = 0
    if not args.analyze_only:
        exit_code = run_pytest_with_coverage(verbose=not args.quiet)
    if args.analyze_mocks or args.analyze_only:
        print_double_analysis(analyze_double_coverage())
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
