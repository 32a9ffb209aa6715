"""
Fixed-interval poll loop owned by one processor instance.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Tick = Callable[[], Awaitable[Any]]


class PollScheduler:
    """
    Runs ``tick`` every ``interval_seconds`` on a background task.

    A tick always settles before the next one starts, including across a
    stop and restart: a loop left draining by ``stop`` is awaited by the
    next loop before it ticks. Errors raised by a tick are logged and the
    loop carries on.
    """

    def __init__(self, interval_seconds: float, name: str = "poller"):
        self.interval_seconds = interval_seconds
        self.name = name
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None
        self._draining: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def draining(self) -> bool:
        """True while a stopped loop is still finishing its last tick."""
        return self._draining is not None and not self._draining.done()

    def start(self, tick: Tick) -> None:
        """Start the loop. Calling start on a running scheduler is a no-op."""
        if self.running:
            return

        previous = self._draining if self.draining else None
        if previous is not None:
            logger.info(
                "Previous poll loop still draining, new loop will wait for it",
                extra={"scheduler": self.name},
            )
        self._draining = None

        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(
            self._loop(tick, self._stopping, previous), name=self.name
        )

    async def stop(self, grace_seconds: float) -> bool:
        """
        Stop scheduling new ticks and wait for the current one.

        The in-flight tick is not cancelled; if it outlives the grace
        period it keeps running detached, and a later ``start`` waits for
        it before ticking.

        Returns:
            True if the loop finished within the grace period.
        """
        if self._task is None:
            return True

        task, self._task = self._task, None
        self._draining = task
        self._stopping.set()
        done, _ = await asyncio.wait({task}, timeout=grace_seconds)
        finished = bool(done)
        if not finished:
            logger.warning(
                "Poll loop still busy after grace period",
                extra={"scheduler": self.name, "grace_seconds": grace_seconds},
            )
        elif self._draining is task:
            self._draining = None
        return finished

    async def _loop(
        self,
        tick: Tick,
        stopping: asyncio.Event,
        previous: asyncio.Task | None = None,
    ) -> None:
        if previous is not None:
            await asyncio.wait({previous})

        while not stopping.is_set():
            try:
                await tick()
            except Exception as e:
                logger.exception(
                    f"Error in poll loop: {e}",
                    extra={"scheduler": self.name},
                )

            try:
                await asyncio.wait_for(stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
