"""Simulated lock device link.

Implements the DeviceLink message contract without hardware, with realistic
per-command latency and failure rates. Useful for bench dry runs, demos and
tests of the engine itself.

Default behavior mirrors a typical smart lock: unlock answers in 600-1000 ms
and succeeds 90% of the time, lock answers in 400-800 ms and succeeds 95% of
the time.

Example:
    link = SimulatedDeviceLink(SimulatorConfig(seed=1))
    await link.connect()
    runner = TestRunner(link)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

from lockcycle.errors import ConfigurationError, NotConnectedError
from lockcycle.link import DISCONNECTED, BaseDeviceLink, DeviceResponse, result_event

logger = logging.getLogger(__name__)

CONNECTED = "connected"
"""Event emitted by the simulator once connect() completes."""


@dataclass(frozen=True)
class CommandProfile:
    """Latency and reliability of one simulated command kind.

    Args:
        min_latency_ms: Fastest response time.
        max_latency_ms: Slowest response time.
        success_rate: Probability (0-1) that the device reports success.
    """

    min_latency_ms: int = 200
    max_latency_ms: int = 500
    success_rate: float = 1.0

    def __post_init__(self) -> None:
        if self.min_latency_ms < 0 or self.max_latency_ms < self.min_latency_ms:
            raise ConfigurationError(
                f"invalid latency range: {self.min_latency_ms}-{self.max_latency_ms} ms"
            )
        if not 0.0 <= self.success_rate <= 1.0:
            raise ConfigurationError(f"success_rate must be within 0-1, got {self.success_rate}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommandProfile:
        """Deserialize from a dictionary."""
        return cls(
            min_latency_ms=int(data.get("min_latency_ms", 200)),
            max_latency_ms=int(data.get("max_latency_ms", 500)),
            success_rate=float(data.get("success_rate", 1.0)),
        )


def _default_commands() -> dict[str, CommandProfile]:
    return {
        "unlock": CommandProfile(min_latency_ms=600, max_latency_ms=1000, success_rate=0.90),
        "lock": CommandProfile(min_latency_ms=400, max_latency_ms=800, success_rate=0.95),
    }


@dataclass
class SimulatorConfig:
    """Configuration for the simulated device link.

    Args:
        commands: Profiles by command kind.
        default_profile: Profile for kinds not listed in commands.
        drop_rate: Probability (0-1) that a response is never sent.
        connect_delay_ms: Simulated connection setup time.
        seed: Random seed for reproducible runs.
        device_name: Name reported by the simulated device.
    """

    commands: dict[str, CommandProfile] = field(default_factory=_default_commands)
    default_profile: CommandProfile = field(default_factory=CommandProfile)
    drop_rate: float = 0.0
    connect_delay_ms: int = 0
    seed: int | None = None
    device_name: str = "SmartLock-001"

    def __post_init__(self) -> None:
        if not 0.0 <= self.drop_rate <= 1.0:
            raise ConfigurationError(f"drop_rate must be within 0-1, got {self.drop_rate}")
        if self.connect_delay_ms < 0:
            raise ConfigurationError("connect_delay_ms must be >= 0")

    def profile_for(self, kind: str) -> CommandProfile:
        """Return the profile used for a command kind."""
        return self.commands.get(kind, self.default_profile)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SimulatorConfig:
        """Deserialize from a dictionary.

        Command kinds listed under ``commands`` replace the defaults for those
        kinds; unlisted defaults are kept.
        """
        commands = _default_commands()
        commands_data = data.get("commands") or {}
        if not isinstance(commands_data, dict):
            raise ConfigurationError("simulator.commands must be a mapping")
        for kind, profile_data in commands_data.items():
            if not isinstance(profile_data, dict):
                raise ConfigurationError(f"simulator.commands.{kind} must be a mapping")
            commands[kind] = CommandProfile.from_dict(profile_data)

        default_data = data.get("default_profile")
        default_profile = CommandProfile()
        if default_data:
            default_profile = CommandProfile.from_dict(default_data)
        return cls(
            commands=commands,
            default_profile=default_profile,
            drop_rate=float(data.get("drop_rate", 0.0)),
            connect_delay_ms=int(data.get("connect_delay_ms", 0)),
            seed=data.get("seed"),
            device_name=data.get("device_name", "SmartLock-001"),
        )


class SimulatedDeviceLink(BaseDeviceLink):
    """DeviceLink implementation backed by a software lock model.

    Responses are scheduled on the running event loop after a random latency
    drawn from the command's profile.

    Args:
        config: Simulator configuration.
    """

    def __init__(self, config: SimulatorConfig | None = None) -> None:
        super().__init__()
        self._config = config or SimulatorConfig()
        self._random = random.Random(self._config.seed)
        self._connected = False
        self._scheduled: set[asyncio.TimerHandle] = set()
        self._lock_state = "locked"
        self._commands_sent: dict[str, int] = {}

    @property
    def config(self) -> SimulatorConfig:
        """Return the simulator configuration."""
        return self._config

    @property
    def is_connected(self) -> bool:
        """Return True if the simulated link is connected."""
        return self._connected

    @property
    def lock_state(self) -> str:
        """Return the simulated bolt position ("locked" or "unlocked")."""
        return self._lock_state

    @property
    def commands_sent(self) -> dict[str, int]:
        """Return the number of commands sent, by kind."""
        return dict(self._commands_sent)

    async def connect(self) -> None:
        """Connect to the simulated device."""
        if self._connected:
            return
        if self._config.connect_delay_ms:
            await asyncio.sleep(self._config.connect_delay_ms / 1000)
        self._connected = True
        logger.info("Connected to simulated device %s", self._config.device_name)
        self.emit(CONNECTED)

    async def disconnect(self) -> None:
        """Disconnect from the simulated device. Safe to call if not connected."""
        self.force_disconnect()

    def force_disconnect(self) -> None:
        """Drop the link immediately, as if the radio connection was lost.

        Pending responses are discarded and ``disconnected`` is emitted.
        """
        if not self._connected:
            return
        self._connected = False
        for handle in self._scheduled:
            handle.cancel()
        self._scheduled.clear()
        logger.info("Simulated device %s disconnected", self._config.device_name)
        self.emit(DISCONNECTED)

    def send_command(self, kind: str) -> None:
        """Enqueue a command and schedule its simulated response.

        Args:
            kind: Command kind.

        Raises:
            NotConnectedError: If the link is not connected.
        """
        if not self._connected:
            raise NotConnectedError("Simulated device is not connected")

        self._commands_sent[kind] = self._commands_sent.get(kind, 0) + 1
        profile = self._config.profile_for(kind)

        if self._random.random() < self._config.drop_rate:
            logger.debug("Dropping %s response", kind)
            return

        latency_ms = self._random.uniform(profile.min_latency_ms, profile.max_latency_ms)
        success = self._random.random() < profile.success_rate
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def deliver() -> None:
            self._scheduled.discard(handle)  # type: ignore[arg-type]
            self._respond(kind, success)

        handle = loop.call_later(latency_ms / 1000, deliver)
        self._scheduled.add(handle)

    def _respond(self, kind: str, success: bool) -> None:
        if not self._connected:
            return
        if success and kind in ("lock", "unlock"):
            self._lock_state = "locked" if kind == "lock" else "unlocked"
        response = DeviceResponse(
            success=success,
            error=None if success else f"simulated {kind} failure",
        )
        self.emit(result_event(kind), response)

    async def __aenter__(self) -> SimulatedDeviceLink:
        """Enter async context."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context."""
        await self.disconnect()
