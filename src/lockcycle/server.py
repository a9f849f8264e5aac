"""FastAPI server for the lockcycle control service.

Exposes the test runner and the session history over REST.

Endpoints:
    GET    /health                  : Health check
    GET    /run/status              : Current run status
    POST   /run                     : Start a test run
    POST   /pause                   : Pause the current run
    POST   /resume                  : Resume a paused run
    POST   /stop                    : Stop the current run
    POST   /reset                   : Return a finished runner to idle
    GET    /sessions                : List stored sessions
    GET    /sessions/{id}           : Get a stored session
    GET    /sessions/{id}/attempts  : List the attempts of a session
    GET    /sessions/{id}/export    : Download the attempts of a session as CSV
    DELETE /sessions/{id}           : Delete a stored session

Example:
    lockcycle serve configs/bench_a.yaml --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from lockcycle.config import BenchConfig, configuration_from_dict, load_bench_config
from lockcycle.errors import (
    AlreadyRunningError,
    ConfigurationError,
    InvalidStateTransitionError,
    LockcycleError,
    NotConnectedError,
)
from lockcycle.export import attempts_to_csv
from lockcycle.link import DeviceLink
from lockcycle.models import (
    AttemptModel,
    RunRequest,
    RunState,
    RunStatusModel,
    SessionModel,
    StatisticsModel,
    status_message,
)
from lockcycle.records import RecordingObserver, RecordStore, SqliteRecordStore
from lockcycle.runner import TestRunner
from lockcycle.simulator import SimulatedDeviceLink, SimulatorConfig

logger = logging.getLogger(__name__)

_STATUS_CODES: list[tuple[type[LockcycleError], int]] = [
    (ConfigurationError, 422),
    (NotConnectedError, 503),
    (AlreadyRunningError, 409),
    (InvalidStateTransitionError, 409),
]


def _http_error(exc: LockcycleError) -> HTTPException:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@dataclass
class ServiceState:
    """Objects owned by one running service instance."""

    bench: BenchConfig | None
    link: DeviceLink
    runner: TestRunner
    store: RecordStore
    observer: RecordingObserver


def create_app(
    config_path: str | Path | None = None,
    *,
    link: DeviceLink | None = None,
    store: RecordStore | None = None,
) -> FastAPI:
    """Create a FastAPI application.

    Args:
        config_path: Path to bench configuration YAML. Without one, runs must
            supply a full configuration and sessions are kept in memory.
        link: Device link to test. A simulated link from the bench config is
            created and connected if omitted.
        store: Record store. An SqliteRecordStore at the bench storage path is
            used if omitted.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        bench: BenchConfig | None = None
        if config_path:
            logger.info("Loading bench configuration from %s", config_path)
            bench = load_bench_config(config_path)

        owned_link: SimulatedDeviceLink | None = None
        device = link
        if device is None:
            owned_link = SimulatedDeviceLink(bench.simulator if bench else SimulatorConfig())
            await owned_link.connect()
            device = owned_link

        records = store
        if records is None:
            records = SqliteRecordStore(bench.storage.database if bench else ":memory:")
        opened_store: SqliteRecordStore | None = None
        if isinstance(records, SqliteRecordStore) and not records.is_open:
            opened_store = records
            await opened_store.open()

        runner = TestRunner(device)
        observer = RecordingObserver(
            records, keep_sessions=bench.storage.keep_sessions if bench else None
        )
        observer.attach(runner.bus)
        app.state.service = ServiceState(
            bench=bench, link=device, runner=runner, store=records, observer=observer
        )
        logger.info("Bench '%s' ready", bench.id if bench else "ad-hoc")

        yield

        if runner.is_active:
            runner.stop()
        await runner.wait()
        await observer.flush()
        observer.detach()

        if owned_link is not None:
            await owned_link.disconnect()
        if opened_store is not None:
            await opened_store.close()

    app = FastAPI(
        title="lockcycle",
        description="Lock endurance test control service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_api_route("/health", _health, methods=["GET"])
    app.add_api_route("/run/status", _run_status, methods=["GET"], response_model=RunStatusModel)
    app.add_api_route("/run", _start_run, methods=["POST"], response_model=RunStatusModel)
    app.add_api_route("/pause", _pause_run, methods=["POST"], response_model=RunStatusModel)
    app.add_api_route("/resume", _resume_run, methods=["POST"], response_model=RunStatusModel)
    app.add_api_route("/stop", _stop_run, methods=["POST"], response_model=RunStatusModel)
    app.add_api_route("/reset", _reset_run, methods=["POST"], response_model=RunStatusModel)
    app.add_api_route(
        "/sessions", _list_sessions, methods=["GET"], response_model=list[SessionModel]
    )
    app.add_api_route(
        "/sessions/{session_id}", _get_session, methods=["GET"], response_model=SessionModel
    )
    app.add_api_route(
        "/sessions/{session_id}/attempts",
        _list_attempts,
        methods=["GET"],
        response_model=list[AttemptModel],
    )
    app.add_api_route(
        "/sessions/{session_id}/export",
        _export_session,
        methods=["GET"],
        response_class=PlainTextResponse,
    )
    app.add_api_route("/sessions/{session_id}", _delete_session, methods=["DELETE"])

    return app


def _service(request: Request) -> ServiceState:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise RuntimeError("Service not initialized")
    return service


def _status(runner: TestRunner) -> RunStatusModel:
    run = runner.snapshot()
    if run is None:
        return RunStatusModel(state=RunState(runner.state.value), message="Ready")
    stats = runner.live_statistics()
    return RunStatusModel(
        state=RunState(runner.state.value),
        run_id=run.id,
        current_cycle=run.current_cycle,
        target_cycles=run.target_cycles,
        success_count=run.success_count,
        failure_count=run.failure_count,
        progress=round(run.progress, 2),
        started_at=run.start_time.isoformat(),
        ended_at=run.end_time.isoformat() if run.end_time else None,
        statistics=StatisticsModel.from_statistics(stats) if stats else None,
        message=status_message(runner.state, stats),
    )


# =============================================================================
# Endpoints
# =============================================================================


async def _health(request: Request) -> dict[str, str]:
    service = _service(request)
    return {
        "status": "ok" if service.link.is_connected else "disconnected",
        "bench_id": service.bench.id if service.bench else "",
        "state": service.runner.state.value,
    }


async def _run_status(request: Request) -> RunStatusModel:
    return _status(_service(request).runner)


async def _start_run(request: Request, body: RunRequest | None = None) -> RunStatusModel:
    service = _service(request)
    try:
        if body is not None:
            config = configuration_from_dict(body.model_dump())
        elif service.bench is not None:
            config = service.bench.test
        else:
            raise ConfigurationError("No bench configuration loaded; a request body is required")
        await service.runner.start(config)
    except LockcycleError as exc:
        raise _http_error(exc) from exc
    return _status(service.runner)


async def _pause_run(request: Request) -> RunStatusModel:
    runner = _service(request).runner
    try:
        runner.pause()
    except LockcycleError as exc:
        raise _http_error(exc) from exc
    return _status(runner)


async def _resume_run(request: Request) -> RunStatusModel:
    runner = _service(request).runner
    try:
        runner.resume()
    except LockcycleError as exc:
        raise _http_error(exc) from exc
    return _status(runner)


async def _stop_run(request: Request) -> RunStatusModel:
    runner = _service(request).runner
    try:
        runner.stop()
    except LockcycleError as exc:
        raise _http_error(exc) from exc
    return _status(runner)


async def _reset_run(request: Request) -> RunStatusModel:
    runner = _service(request).runner
    try:
        runner.reset()
    except LockcycleError as exc:
        raise _http_error(exc) from exc
    return _status(runner)


async def _list_sessions(
    request: Request, status: str | None = None, limit: int = 50, offset: int = 0
) -> list[SessionModel]:
    store = _service(request).store
    records = await store.list_sessions(status=status, limit=limit, offset=offset)
    return [SessionModel.from_record(r) for r in records]


async def _get_session(request: Request, session_id: str) -> SessionModel:
    record = await _service(request).store.get_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return SessionModel.from_record(record)


async def _list_attempts(
    request: Request, session_id: str, limit: int | None = None, offset: int = 0
) -> list[AttemptModel]:
    store = _service(request).store
    if await store.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    records = await store.list_attempts(session_id, limit=limit, offset=offset)
    return [AttemptModel.from_record(r) for r in records]


async def _export_session(request: Request, session_id: str) -> PlainTextResponse:
    store = _service(request).store
    if await store.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    content = attempts_to_csv(await store.list_attempts(session_id))
    return PlainTextResponse(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="test_{session_id}.csv"'},
    )


async def _delete_session(request: Request, session_id: str) -> dict[str, str]:
    service = _service(request)
    run = service.runner.snapshot()
    if run is not None and run.id == session_id and (
        service.runner.is_active or service.runner.is_draining
    ):
        raise HTTPException(status_code=409, detail="Cannot delete the active session")
    if not await service.store.delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return {"deleted": session_id}
