"""Command-line interface for lockcycle.

Usage:
    # Run the bench test against the simulated lock
    lockcycle run configs/bench_a.yaml --cycles 50 --db lockcycle.db

    # Show stored sessions
    lockcycle history --db lockcycle.db

    # Show one session and its failures
    lockcycle show T261019093000abcd --db lockcycle.db

    # Export the attempts of a session
    lockcycle export T261019093000abcd attempts.csv --db lockcycle.db

    # Start the control service
    lockcycle serve configs/bench_a.yaml --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from lockcycle.config import BenchConfig, load_bench_config
from lockcycle.errors import LockcycleError
from lockcycle.events import RunEvent, RunInterrupted, RunProgress
from lockcycle.export import write_attempts, write_attempts_csv
from lockcycle.records import RecordingObserver, SqliteRecordStore
from lockcycle.runner import TestRunner
from lockcycle.simulator import SimulatedDeviceLink
from lockcycle.statistics import summarize
from lockcycle.types import TestRun, TestStatus

logger = logging.getLogger(__name__)

DEFAULT_DB = "lockcycle.db"


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _print_event(event: RunEvent) -> None:
    if isinstance(event, RunProgress):
        cycle = event.cycle_result
        steps = ", ".join(
            f"{s.kind} {'ok' if s.success else s.error} ({s.response_time_ms} ms)"
            for s in cycle.steps
        )
        status = "PASS" if cycle.success else "FAIL"
        print(
            f"[{event.progress:5.1f}%] cycle {cycle.cycle_number}/{event.run.target_cycles} "
            f"{status}: {steps or cycle.error}"
        )
    elif isinstance(event, RunInterrupted):
        print(f"Interrupted: {event.reason}")
    else:
        print(f"{event.kind.value}: {event.run.id}")


def _request_stop(runner: TestRunner) -> None:
    if runner.is_active:
        print("\nStopping after the current cycle...")
        runner.stop()


async def _run_bench(bench: BenchConfig, db_path: str | None) -> TestRun | None:
    link = SimulatedDeviceLink(bench.simulator)
    await link.connect()
    runner = TestRunner(link)
    runner.bus.subscribe(_print_event)

    store: SqliteRecordStore | None = None
    observer: RecordingObserver | None = None
    if db_path:
        store = SqliteRecordStore(db_path)
        await store.open()
        observer = RecordingObserver(store, keep_sessions=bench.storage.keep_sessions)
        observer.attach(runner.bus)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _request_stop, runner)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported; Ctrl+C will abort")

    try:
        await runner.start(bench.test)
        await runner.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        if runner.is_active:
            runner.stop()
            await runner.wait()
        if observer is not None:
            await observer.flush()
        if store is not None:
            await store.close()
        await link.disconnect()

    return runner.snapshot()


def cmd_run(args: argparse.Namespace) -> int:
    """Run a bench test against the simulated device."""
    try:
        bench = load_bench_config(args.config)
        if args.cycles is not None:
            bench = replace(bench, test=replace(bench.test, target_cycles=args.cycles))
    except (FileNotFoundError, LockcycleError) as exc:
        print(f"Error: {exc}")
        return 1

    print(f"Bench: {bench.id} {bench.description}".rstrip())
    print(f"Cycles: {bench.test.target_cycles}, steps: {'/'.join(bench.test.steps)}")

    try:
        run = asyncio.run(_run_bench(bench, args.db))
    except LockcycleError as exc:
        print(f"Error: {exc}")
        return 1

    if run is None:
        return 1
    if run.statistics is not None:
        print(f"\n{run.status.value.upper()} - {summarize(run.statistics)}")
    if args.csv:
        path = write_attempts_csv(run, args.csv)
        print(f"Attempts written to: {path}")
    return 0 if run.status is TestStatus.COMPLETED else 1


async def _history(db_path: str, status: str | None, limit: int) -> int:
    async with SqliteRecordStore(db_path) as store:
        sessions = await store.list_sessions(status=status, limit=limit)

    if not sessions:
        print("No sessions found.")
        return 0

    print(f"{'ID':<20} {'STATUS':<10} {'CYCLES':>9} {'PASS':>6} {'FAIL':>6} {'AVG MS':>7}  STARTED")
    for s in sessions:
        cycles = f"{s.total_attempts}/{s.target_cycles}"
        print(
            f"{s.id:<20} {s.status:<10} {cycles:>9} {s.successful_attempts:>6} "
            f"{s.failed_attempts:>6} {s.average_response_time:>7.0f}  "
            f"{s.start_time:%Y-%m-%d %H:%M:%S}"
        )
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """List stored sessions."""
    return asyncio.run(_history(args.db, args.status, args.limit))


async def _show(db_path: str, session_id: str) -> int:
    async with SqliteRecordStore(db_path) as store:
        session = await store.get_session(session_id)
        if session is None:
            print(f"Error: Unknown session: {session_id}")
            return 1
        attempts = await store.list_attempts(session_id)

    print(f"Session: {session.id}")
    print(f"  Status: {session.status}")
    print(f"  Started: {session.start_time.isoformat()}")
    print(f"  Ended: {session.end_time.isoformat() if session.end_time else '(running)'}")
    print(f"  Cycles: {session.total_attempts}/{session.target_cycles}")
    print(f"  Passed: {session.successful_attempts}")
    print(f"  Failed: {session.failed_attempts}")
    print(f"  Avg response: {session.average_response_time:.0f} ms")
    if session.failure_reason:
        print(f"  Failure reason: {session.failure_reason}")

    failures = [a for a in attempts if a.result != "success"]
    if failures:
        print("\nFailures:")
        for a in failures:
            print(f"  cycle {a.attempt_number} {a.action}: {a.error_message or '(no message)'}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show one stored session."""
    return asyncio.run(_show(args.db, args.session_id))


async def _export(db_path: str, session_id: str, output: Path) -> int:
    async with SqliteRecordStore(db_path) as store:
        if await store.get_session(session_id) is None:
            print(f"Error: Unknown session: {session_id}")
            return 1
        attempts = await store.list_attempts(session_id)

    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w", newline="", encoding="utf-8") as f:
        count = write_attempts(attempts, f)
    print(f"Wrote {count} attempts to: {output}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export the attempts of a stored session to CSV."""
    return asyncio.run(_export(args.db, args.session_id, Path(args.output)))


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the control service."""
    if not args.config.exists():
        logger.error("Config file not found: %s", args.config)
        return 1

    import uvicorn  # pylint: disable=import-outside-toplevel

    from lockcycle.server import create_app  # pylint: disable=import-outside-toplevel

    uvicorn.run(create_app(args.config), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lockcycle",
        description="Lock endurance test CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a bench test")
    run_parser.add_argument("config", type=Path, help="Path to bench configuration YAML file")
    run_parser.add_argument(
        "--cycles", type=int,
        help="Override the configured target cycle count"
    )
    run_parser.add_argument("--db", help="Record the run in this SQLite database")
    run_parser.add_argument("--csv", help="Write the attempts of the run to this CSV file")

    # history command
    history_parser = subparsers.add_parser("history", help="List stored sessions")
    history_parser.add_argument(
        "--db", default=DEFAULT_DB,
        help=f"SQLite database (default: {DEFAULT_DB})"
    )
    history_parser.add_argument(
        "--status", choices=[s.value for s in TestStatus if s is not TestStatus.IDLE],
        help="Only show sessions with this status"
    )
    history_parser.add_argument(
        "--limit", type=int, default=20,
        help="Maximum number of sessions (default: 20)"
    )

    # show command
    show_parser = subparsers.add_parser("show", help="Show a stored session")
    show_parser.add_argument("session_id", help="Session ID")
    show_parser.add_argument(
        "--db", default=DEFAULT_DB,
        help=f"SQLite database (default: {DEFAULT_DB})"
    )

    # export command
    export_parser = subparsers.add_parser("export", help="Export session attempts to CSV")
    export_parser.add_argument("session_id", help="Session ID")
    export_parser.add_argument("output", help="Output CSV path")
    export_parser.add_argument(
        "--db", default=DEFAULT_DB,
        help=f"SQLite database (default: {DEFAULT_DB})"
    )

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the control service")
    serve_parser.add_argument("config", type=Path, help="Path to bench configuration YAML file")
    serve_parser.add_argument(
        "--host", default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000,
        help="Port to listen on (default: 8000)"
    )

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.debug)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "history":
        return cmd_history(args)
    elif args.command == "show":
        return cmd_show(args)
    elif args.command == "export":
        return cmd_export(args)
    elif args.command == "serve":
        return cmd_serve(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
