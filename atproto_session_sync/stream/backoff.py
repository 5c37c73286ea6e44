"""
Reconnect backoff and scheduling.

The subscriber never calls ``asyncio.sleep`` directly: it waits on a
Scheduler, so tests can replace wall-clock time with a scheduler they
advance by hand.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class BackoffPolicy:
    """Exponential backoff for reconnect attempts.

    With the defaults, attempts 1, 2, 3, ... wait 1s, 2s, 4s, 8s, 16s,
    32s, 60s, 60s, ...
    """

    backoff_base: float = 1.0  # seconds
    backoff_max: float = 60.0  # cap
    backoff_multiplier: float = 2.0
    max_attempts: int = 10

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(
            self.backoff_base * (self.backoff_multiplier ** (attempt - 1)),
            self.backoff_max,
        )

    def exhausted(self, attempt: int) -> bool:
        return attempt > self.max_attempts


class Scheduler(ABC):
    """Source of cancellable delays.

    Cancelling the task that awaits ``sleep`` cancels the delay.
    """

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        ...


class AsyncioScheduler(Scheduler):
    """Wall-clock scheduler backed by the event loop."""

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when ``advance`` is called.

    Every requested delay is recorded in ``delays``.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.delays: list[float] = []
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    @property
    def pending(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (self.now + delay, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and wake every sleeper that is due.

        Returns:
            Number of sleepers woken
        """
        self.now += seconds
        woken = 0
        for wake_at, future in list(self._sleepers):
            if wake_at <= self.now and not future.done():
                future.set_result(None)
                woken += 1
        return woken

    async def wait_for_sleepers(self, count: int = 1, max_iterations: int = 1000) -> None:
        """Yield to the loop until ``count`` sleepers are waiting.

        Raises:
            TimeoutError: If they never show up
        """
        for _ in range(max_iterations):
            if self.pending >= count:
                return
            await asyncio.sleep(0)
        raise TimeoutError(f"Expected {count} pending sleepers, have {self.pending}")
