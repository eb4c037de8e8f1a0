"""Timer-driven watchers that race to force-terminate a transcode."""

import asyncio
import logging
from typing import Any, Callable, Optional

from config import (
    DEADLINE_FLOOR_SECONDS, DEADLINE_MULTIPLIER,
    STALL_SAMPLE_INTERVAL, STALL_SAMPLE_LIMIT,
)

logger = logging.getLogger(__name__)


def compute_deadline(
    duration: float,
    floor: float = DEADLINE_FLOOR_SECONDS,
    multiplier: float = DEADLINE_MULTIPLIER,
) -> float:
    """Wall-clock budget for a chunk: max(floor, multiplier * duration)."""
    return max(floor, multiplier * duration)


class DeadlineTimer:
    """Single-shot timer on the running loop."""

    def __init__(self, seconds: float, on_fire: Callable[[], None]):
        self.seconds = seconds
        self._on_fire = on_fire
        self._handle: Optional[asyncio.TimerHandle] = None

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.seconds, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        logger.info(f"Deadline of {self.seconds:.1f}s reached")
        self._on_fire()


class StallDetector:
    """
    Samples a progress marker every `interval` seconds and calls on_stall once
    `limit` consecutive samples carried the same marker. Any change in the
    marker resets the run.
    """

    def __init__(
        self,
        sample: Callable[[], Any],
        on_stall: Callable[[], None],
        interval: float = STALL_SAMPLE_INTERVAL,
        limit: int = STALL_SAMPLE_LIMIT,
    ):
        self._sample = sample
        self._on_stall = on_stall
        self.interval = interval
        self.limit = limit
        self._previous: Any = None
        self._run_length = 0
        self._task: Optional[asyncio.Task] = None

    def observe(self) -> bool:
        """Takes one sample; True when the marker has been flat for `limit` samples."""
        marker = self._sample()
        if self._run_length and marker == self._previous:
            self._run_length += 1
        else:
            self._previous = marker
            self._run_length = 1
        return self._run_length >= self.limit

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.observe():
                logger.warning(f"No progress across {self.limit} samples (marker={self._previous})")
                self._task = None
                self._on_stall()
                return
