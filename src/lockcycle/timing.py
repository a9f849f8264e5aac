"""Timing helpers: monotonic milliseconds and a cancellable sleep."""

from __future__ import annotations

import asyncio
import time


def monotonic_ms() -> float:
    """Return a monotonic clock reading in milliseconds."""
    return time.monotonic() * 1000


def elapsed_ms(start_ms: float) -> int:
    """Return whole milliseconds elapsed since a monotonic_ms() reading."""
    return max(0, int(round(monotonic_ms() - start_ms)))


class Sleeper:
    """Cancellable sleep for the delays of a run.

    cancel() wakes every pending sleep early and makes later sleeps return
    immediately until reset().

    Example:
        sleeper = Sleeper()
        if not await sleeper.sleep(500):
            return  # cancelled
    """

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Return True if cancel() was called since the last reset()."""
        return self._cancelled.is_set()

    async def sleep(self, delay_ms: float) -> bool:
        """Suspend for delay_ms milliseconds.

        Args:
            delay_ms: Delay in milliseconds. Zero or negative returns at once.

        Returns:
            True if the full delay elapsed, False if the sleep was cancelled.
        """
        if self._cancelled.is_set():
            return False
        if delay_ms <= 0:
            return True
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return True
        return False

    def cancel(self) -> None:
        """Wake all pending sleeps and short-circuit new ones."""
        self._cancelled.set()

    def reset(self) -> None:
        """Re-arm the sleeper after a cancel()."""
        self._cancelled.clear()
