"""Session and attempt records, and the SQLite record store.

The engine never persists anything itself. A terminal TestRun snapshot is
flattened into one SessionRecord plus one AttemptRecord per recorded step,
and handed to a RecordStore. RecordingObserver wires a store to a runner's
event bus so persistence happens in the background; store failures are
logged and never reach the engine.

Usage:
    async with SqliteRecordStore("lockcycle.db") as store:
        observer = RecordingObserver(store)
        observer.attach(runner.bus)
        await runner.start(config)
        await runner.wait()
        await observer.flush()
"""

from __future__ import annotations

import asyncio
import importlib.resources
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import aiosqlite

from lockcycle.errors import RecordStoreError
from lockcycle.events import (
    EventBus,
    EventKind,
    RunCompleted,
    RunEvent,
    RunInterrupted,
    RunProgress,
    RunStarted,
    RunStopped,
    Subscription,
)
from lockcycle.statistics import compute_statistics
from lockcycle.types import CycleResult, TestRun, TestStatus

logger = logging.getLogger(__name__)

CYCLE_ACTION = "cycle"
"""Attempt action used for a cycle-level error row."""

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"


def _parse_datetime(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class SessionRecord:
    """One persisted test session.

    Attributes:
        id: Run identifier.
        status: Run status value ("running", "paused", "stopped", "completed").
        target_cycles: Configured cycle count.
        start_time: When the run started.
        end_time: When the run reached a terminal state.
        total_attempts: Number of cycles executed.
        successful_attempts: Number of successful cycles.
        failed_attempts: Number of failed cycles.
        average_response_time: Mean step response time in milliseconds.
        failure_reason: Why the run ended early, if it did.
        config: Serialized test configuration.
        name: Optional display name.
    """

    id: str
    status: str
    target_cycles: int
    start_time: datetime
    end_time: datetime | None = None
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    average_response_time: float = 0.0
    failure_reason: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "target_cycles": self.target_cycles,
            "start_time": _format_datetime(self.start_time),
            "end_time": _format_datetime(self.end_time),
            "total_attempts": self.total_attempts,
            "successful_attempts": self.successful_attempts,
            "failed_attempts": self.failed_attempts,
            "average_response_time": self.average_response_time,
            "failure_reason": self.failure_reason,
            "config": self.config,
        }


@dataclass
class AttemptRecord:
    """One persisted step attempt.

    attempt_number is the cycle number; action is the step kind, or "cycle"
    for a row describing a cycle-level error.
    """

    session_id: str
    attempt_number: int
    action: str
    result: str
    response_time: int | None = None
    error_message: str | None = None
    retries: int = 0
    timestamp: datetime | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "session_id": self.session_id,
            "attempt_number": self.attempt_number,
            "action": self.action,
            "result": self.result,
            "response_time": self.response_time,
            "error_message": self.error_message,
            "retries": self.retries,
            "timestamp": _format_datetime(self.timestamp),
        }


def _failure_reason(run: TestRun) -> str | None:
    if run.status is not TestStatus.STOPPED or not run.results:
        return None
    return run.results[-1].error


def session_record_from_run(run: TestRun) -> SessionRecord:
    """Flatten a run snapshot into a SessionRecord."""
    stats = run.statistics or compute_statistics(run)
    return SessionRecord(
        id=run.id,
        status=run.status.value,
        target_cycles=run.target_cycles,
        start_time=run.start_time,
        end_time=run.end_time,
        total_attempts=run.current_cycle,
        successful_attempts=run.success_count,
        failed_attempts=run.failure_count,
        average_response_time=float(stats.avg_response_time_ms),
        failure_reason=_failure_reason(run),
        config=run.config.to_dict(),
    )


def attempt_records_for_cycle(run_id: str, cycle: CycleResult) -> list[AttemptRecord]:
    """Return the attempt rows of one cycle."""
    records = [
        AttemptRecord(
            session_id=run_id,
            attempt_number=cycle.cycle_number,
            action=step.kind,
            result=RESULT_SUCCESS if step.success else RESULT_FAILURE,
            response_time=step.response_time_ms,
            error_message=step.error,
            retries=step.attempts - 1,
            timestamp=cycle.started_at,
        )
        for step in cycle.steps
    ]
    if cycle.error is not None:
        records.append(
            AttemptRecord(
                session_id=run_id,
                attempt_number=cycle.cycle_number,
                action=CYCLE_ACTION,
                result=RESULT_FAILURE,
                response_time=cycle.duration_ms,
                error_message=cycle.error,
                timestamp=cycle.started_at,
            )
        )
    return records


def attempt_records_from_run(run: TestRun) -> list[AttemptRecord]:
    """Return the attempt rows of every recorded cycle, in order."""
    records: list[AttemptRecord] = []
    for cycle in run.results:
        records.extend(attempt_records_for_cycle(run.id, cycle))
    return records


class RecordStore(Protocol):
    """Persistence collaborator for sessions and attempts."""

    async def create_session(self, record: SessionRecord) -> None:
        """Insert a new session."""
        ...

    async def update_session(self, record: SessionRecord) -> None:
        """Overwrite an existing session."""
        ...

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Return a session, or None if unknown."""
        ...

    async def list_sessions(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[SessionRecord]:
        """Return sessions, most recent first."""
        ...

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its attempts. Returns False if unknown."""
        ...

    async def add_attempts(self, records: Iterable[AttemptRecord]) -> None:
        """Insert or replace attempt rows."""
        ...

    async def list_attempts(
        self, session_id: str, limit: int | None = None, offset: int = 0
    ) -> list[AttemptRecord]:
        """Return the attempts of a session in attempt order."""
        ...

    async def save_run(self, run: TestRun) -> None:
        """Persist a full run snapshot."""
        ...


async def get_schema_sql() -> str:
    """Load the record store schema SQL from package resources."""
    schema_path = importlib.resources.files("lockcycle.schema").joinpath("sessions.sql")
    return schema_path.read_text(encoding="utf-8")


_SESSION_COLUMNS = (
    "id, name, status, target_cycles, config, start_time, end_time, total_attempts, "
    "successful_attempts, failed_attempts, average_response_time, failure_reason"
)

_ATTEMPT_COLUMNS = (
    "id, session_id, attempt_number, action, result, response_time, error_message, "
    "retries, timestamp"
)


def _session_params(record: SessionRecord) -> tuple[Any, ...]:
    return (
        record.name,
        record.status,
        record.target_cycles,
        json.dumps(record.config),
        _format_datetime(record.start_time),
        _format_datetime(record.end_time),
        record.total_attempts,
        record.successful_attempts,
        record.failed_attempts,
        record.average_response_time,
        record.failure_reason,
    )


def _session_from_row(row: aiosqlite.Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        name=row["name"],
        status=row["status"],
        target_cycles=row["target_cycles"],
        config=json.loads(row["config"]) if row["config"] else {},
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=_parse_datetime(row["end_time"]),
        total_attempts=row["total_attempts"],
        successful_attempts=row["successful_attempts"],
        failed_attempts=row["failed_attempts"],
        average_response_time=row["average_response_time"],
        failure_reason=row["failure_reason"],
    )


def _attempt_from_row(row: aiosqlite.Row) -> AttemptRecord:
    return AttemptRecord(
        id=row["id"],
        session_id=row["session_id"],
        attempt_number=row["attempt_number"],
        action=row["action"],
        result=row["result"],
        response_time=row["response_time"],
        error_message=row["error_message"],
        retries=row["retries"],
        timestamp=_parse_datetime(row["timestamp"]),
    )


class SqliteRecordStore:
    """RecordStore backed by an SQLite database through aiosqlite.

    The schema is created on open if missing.

    Usage:
        async with SqliteRecordStore("lockcycle.db") as store:
            sessions = await store.list_sessions()

        # Or for in-memory testing:
        async with SqliteRecordStore(":memory:") as store:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
        """
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        """Return True if the database connection is open."""
        return self._db is not None

    async def open(self) -> None:
        """Open the connection and ensure the schema exists."""
        if self._db is not None:
            return
        try:
            db = await aiosqlite.connect(self._db_path)
            await db.execute("PRAGMA foreign_keys = ON")
            db.row_factory = aiosqlite.Row
            await db.executescript(await get_schema_sql())
            await db.commit()
        except aiosqlite.Error as exc:
            raise RecordStoreError(f"Cannot open record store {self._db_path}: {exc}") from exc
        self._db = db
        logger.debug("Opened record store %s", self._db_path)

    async def close(self) -> None:
        """Close the connection. Safe to call if not open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SqliteRecordStore:
        """Open the record store."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Close the record store."""
        await self.close()

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RecordStoreError("Record store is not open")
        return self._db

    # --- Sessions ---

    async def create_session(self, record: SessionRecord) -> None:
        """Insert a new session.

        Raises:
            RecordStoreError: If a session with the same id exists.
        """
        try:
            await self._conn.execute(
                f"INSERT INTO test_session ({_SESSION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (record.id, *_session_params(record)),
            )
        except aiosqlite.IntegrityError as exc:
            raise RecordStoreError(f"Session already exists: {record.id}") from exc
        await self._conn.commit()

    async def update_session(self, record: SessionRecord) -> None:
        """Overwrite an existing session.

        Raises:
            RecordStoreError: If the session does not exist.
        """
        cursor = await self._conn.execute(
            "UPDATE test_session SET name = ?, status = ?, target_cycles = ?, config = ?, "
            "start_time = ?, end_time = ?, total_attempts = ?, successful_attempts = ?, "
            "failed_attempts = ?, average_response_time = ?, failure_reason = ? "
            "WHERE id = ?",
            (*_session_params(record), record.id),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            raise RecordStoreError(f"Unknown session: {record.id}")

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Get a session by ID."""
        cursor = await self._conn.execute(
            f"SELECT {_SESSION_COLUMNS} FROM test_session WHERE id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _session_from_row(row)

    async def list_sessions(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[SessionRecord]:
        """List sessions, most recent first.

        Args:
            status: Only return sessions with this status. All if None.
            limit: Maximum number of sessions.
            offset: Number of sessions to skip.
        """
        query = f"SELECT {_SESSION_COLUMNS} FROM test_session"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY start_time DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [_session_from_row(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its attempts.

        Returns:
            True if a session was deleted, False if it did not exist.
        """
        cursor = await self._conn.execute("DELETE FROM test_session WHERE id = ?", (session_id,))
        await self._conn.commit()
        return cursor.rowcount > 0

    async def count_sessions(self) -> int:
        """Return the number of stored sessions."""
        cursor = await self._conn.execute("SELECT COUNT(*) FROM test_session")
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def prune(self, keep: int) -> int:
        """Delete all but the most recent sessions.

        Args:
            keep: Number of most recent sessions to retain.

        Returns:
            Number of sessions deleted.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        cursor = await self._conn.execute(
            "DELETE FROM test_session WHERE id NOT IN ("
            "SELECT id FROM test_session ORDER BY start_time DESC, id DESC LIMIT ?)",
            (keep,),
        )
        await self._conn.commit()
        if cursor.rowcount:
            logger.info("Pruned %d old sessions", cursor.rowcount)
        return cursor.rowcount

    # --- Attempts ---

    async def add_attempts(self, records: Iterable[AttemptRecord]) -> None:
        """Insert attempt rows, replacing rows with the same key.

        Raises:
            RecordStoreError: If a row references an unknown session.
        """
        rows = [
            (
                r.session_id,
                r.attempt_number,
                r.action,
                r.result,
                r.response_time,
                r.error_message,
                r.retries,
                _format_datetime(r.timestamp),
            )
            for r in records
        ]
        if not rows:
            return
        try:
            await self._conn.executemany(
                "INSERT OR REPLACE INTO test_attempt (session_id, attempt_number, action, "
                "result, response_time, error_message, retries, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        except aiosqlite.IntegrityError as exc:
            raise RecordStoreError(f"Cannot store attempts: {exc}") from exc
        await self._conn.commit()

    async def list_attempts(
        self, session_id: str, limit: int | None = None, offset: int = 0
    ) -> list[AttemptRecord]:
        """List the attempts of a session in attempt order."""
        cursor = await self._conn.execute(
            f"SELECT {_ATTEMPT_COLUMNS} FROM test_attempt WHERE session_id = ? "
            "ORDER BY attempt_number, id LIMIT ? OFFSET ?",
            (session_id, -1 if limit is None else limit, offset),
        )
        rows = await cursor.fetchall()
        return [_attempt_from_row(row) for row in rows]

    async def save_run(self, run: TestRun) -> None:
        """Persist a full run snapshot, creating or updating its session."""
        record = session_record_from_run(run)
        if await self.get_session(run.id) is None:
            await self.create_session(record)
        else:
            await self.update_session(record)
        await self.add_attempts(attempt_records_from_run(run))


class RecordingObserver:
    """Persists a runner's lifecycle events to a RecordStore.

    Writes run as background tasks in publish order. A failing write is
    logged and does not affect the run or later writes.

    Args:
        store: Destination record store.
        keep_sessions: If set and the store supports prune(), keep only this
            many sessions after each finished run.
    """

    def __init__(self, store: RecordStore, keep_sessions: int | None = None) -> None:
        self._store = store
        self._keep_sessions = keep_sessions
        self._subscription: Subscription | None = None
        self._tail: asyncio.Task[None] | None = None
        self._failures = 0

    @property
    def failures(self) -> int:
        """Return the number of writes that failed."""
        return self._failures

    def attach(self, bus: EventBus) -> None:
        """Subscribe to run events on bus."""
        self.detach()
        self._subscription = bus.subscribe(
            self.handle,
            EventKind.TEST_STARTED,
            EventKind.TEST_PROGRESS,
            EventKind.TEST_STOPPED,
            EventKind.TEST_COMPLETED,
            EventKind.TEST_INTERRUPTED,
        )

    def detach(self) -> None:
        """Unsubscribe from the bus, if attached."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def handle(self, event: RunEvent) -> None:
        """Schedule the write for one event."""
        if isinstance(event, RunStarted):
            record = session_record_from_run(event.run)
            self._schedule(lambda: self._store.create_session(record))
        elif isinstance(event, RunProgress):
            record = session_record_from_run(event.run)
            attempts = attempt_records_for_cycle(event.run.id, event.cycle_result)
            self._schedule(lambda: self._save_progress(record, attempts))
        elif isinstance(event, (RunStopped, RunCompleted)):
            run = event.run
            self._schedule(lambda: self._save_final(run))
        elif isinstance(event, RunInterrupted):
            run_id, reason = event.run_id, event.reason
            self._schedule(lambda: self._save_interrupt(run_id, reason))

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._tail is not None and not self._tail.done():
            await self._tail

    def _schedule(self, write: Callable[[], Awaitable[None]]) -> None:
        previous = self._tail

        async def job() -> None:
            if previous is not None:
                await previous
            try:
                await write()
            except Exception:  # pylint: disable=broad-except
                self._failures += 1
                logger.exception("Failed to persist run event")

        self._tail = asyncio.get_running_loop().create_task(job())

    async def _save_progress(self, record: SessionRecord, attempts: list[AttemptRecord]) -> None:
        await self._store.add_attempts(attempts)
        await self._store.update_session(record)

    async def _save_final(self, run: TestRun) -> None:
        await self._store.save_run(run)
        prune = getattr(self._store, "prune", None)
        if self._keep_sessions is not None and prune is not None:
            await prune(self._keep_sessions)

    async def _save_interrupt(self, run_id: str, reason: str) -> None:
        record = await self._store.get_session(run_id)
        if record is None:
            raise RecordStoreError(f"Unknown session: {run_id}")
        await self._store.update_session(replace(record, failure_reason=reason))
