import asyncio
import logging
from typing import Awaitable, Callable

from ..errors import ProviderError
from .base import PollingTask

logger = logging.getLogger(__name__)


class StatePoller(PollingTask):
    """Checks the instance state immediately, then on a fixed cadence."""

    name = "StatePoller"

    def __init__(
        self,
        gateway,
        interval_sec: float,
        on_state: Callable[[str], Awaitable[None]],
        on_error: Callable[[BaseException], Awaitable[None]],
    ):
        super().__init__(interval_sec)
        self.gateway = gateway
        self.on_state = on_state
        self.on_error = on_error

    async def tick(self, token: asyncio.Event):
        try:
            state = await self.gateway.get_state_instance()
        except ProviderError as e:
            if not token.is_set():
                await self.on_error(e)
            return
        if token.is_set():
            return
        logger.debug(f"Current state: {state}")
        await self.on_state(state)
