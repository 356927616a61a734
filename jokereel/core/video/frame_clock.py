"""
Frame clock for the recorder's render loop.

The render task suspends on the clock between frames. In realtime mode the
clock sleeps until the next frame's scheduled wall-clock time; otherwise it
only yields to the event loop and the encoder's pipe back-pressure paces the
loop. Either way frame timestamps come from the frame index.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional


class FrameClock:
    """Schedules frame ``i`` at ``start + i / fps``."""

    def __init__(
        self,
        fps: int,
        realtime: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if fps <= 0:
            raise ValueError(f"fps must be positive (got {fps})")
        self.fps = fps
        self.realtime = realtime
        self._sleep = sleep
        self._monotonic = monotonic
        self._start: Optional[float] = None

    @property
    def interval(self) -> float:
        return 1.0 / self.fps

    def start(self) -> None:
        self._start = self._monotonic()

    def scheduled_time(self, index: int) -> float:
        """Output timestamp of frame ``index`` in seconds."""
        return index / self.fps

    async def wait_for_tick(self, index: int) -> None:
        """Suspend until frame ``index + 1`` is due."""
        if not self.realtime:
            await self._sleep(0)
            return

        if self._start is None:
            self.start()
        delay = self._start + (index + 1) / self.fps - self._monotonic()
        await self._sleep(max(delay, 0.0))
