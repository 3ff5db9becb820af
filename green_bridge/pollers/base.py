import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class PollingTask:
    """
    Cancellable "tick, then sleep" loop.

    Every ``start()`` creates a fresh stop token for that run. ``stop()`` sets
    it, which wakes the sleep immediately. An in-flight tick is not cancelled
    (only ``cancel()`` does that); ticks check the token they were given and
    drop late results.
    """

    name = "poller"

    def __init__(self, interval_sec: float, initial_delay_sec: float = 0.0):
        self.nominal_interval_sec = interval_sec
        self.interval_sec = interval_sec
        self.initial_delay_sec = initial_delay_sec
        self._token: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._token is not None and not self._token.is_set()

    def start(self) -> bool:
        """Start a new run. Returns False when already running."""
        if self.running:
            return False
        self.reset()
        token = asyncio.Event()
        self._token = token
        self._task = asyncio.create_task(self._run(token), name=self.name)
        logger.info(f"{self.name} started (every {self.interval_sec:.1f}s)")
        return True

    def stop(self):
        if self._token is None:
            return
        self._token.set()
        self._token = None
        logger.info(f"{self.name} stopped")

    def cancel(self):
        """
        Stop and cancel the in-flight tick. Shutdown only: a tick waiting
        for rate limiter admission gives up its place in the queue.
        """
        self.stop()
        if self._task and not self._task.done():
            self._task.cancel()

    async def join(self):
        """Wait for the current run's task to finish its in-flight tick."""
        if self._task:
            await asyncio.gather(self._task, return_exceptions=True)

    def reset(self):
        """Called before each run starts."""
        self.interval_sec = self.nominal_interval_sec

    async def tick(self, token: asyncio.Event):
        raise NotImplementedError

    def handle_error(self, exc: Exception):
        logger.error(f"{self.name} tick failed: {exc}")

    @staticmethod
    async def pause(token: asyncio.Event, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if the run was stopped meanwhile."""
        if token.is_set() or seconds <= 0:
            return token.is_set()
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return token.is_set()

    async def _run(self, token: asyncio.Event):
        if self.initial_delay_sec and await self.pause(token, self.initial_delay_sec):
            return
        while not token.is_set():
            try:
                await self.tick(token)
            except Exception as e:
                self.handle_error(e)
            if await self.pause(token, self.interval_sec):
                break
