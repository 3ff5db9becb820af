"""
QR Poller.
Fetches and displays QR challenges until the instance is authorized.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..config import BridgeConfig
from ..errors import ProviderError
from ..qr import extract_qr_challenge
from ..retry import with_deadline
from ..state import ConnectionState
from .base import PollingTask

logger = logging.getLogger(__name__)

QR_STATES = (ConnectionState.NOT_AUTHORIZED, ConnectionState.STARTING)


class QrPoller(PollingTask):
    name = "QrPoller"

    def __init__(
        self,
        config: BridgeConfig,
        gateway,
        display,
        on_authorized: Callable[[str], Awaitable[None]],
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config.qr_interval_ms / 1000.0)
        self.gateway = gateway
        self.display = display
        self.on_authorized = on_authorized
        self.clock = clock
        self.redisplay_window_sec = config.qr_redisplay_window_ms / 1000.0
        self.max_failed_attempts = config.qr_max_failed_attempts
        self.reboot_pause_sec = config.qr_reboot_pause_ms / 1000.0
        self.fetch_timeout_sec = config.qr_fetch_timeout_sec

        self.failed_attempts = 0
        self.last_value: Optional[str] = None
        self.last_shown_at: Optional[float] = None

    def reset(self):
        super().reset()
        self.failed_attempts = 0
        self.last_value = None
        self.last_shown_at = None

    async def tick(self, token: asyncio.Event):
        raw_state = await self.gateway.get_state_instance()
        if token.is_set():
            return

        state = ConnectionState.from_remote(raw_state)
        if state == ConnectionState.AUTHORIZED:
            logger.info("Instance is authorized, stopping QR polling")
            self.stop()
            await self.on_authorized(raw_state)
            return

        if state not in QR_STATES:
            logger.debug(f"State {raw_state}, waiting before requesting a QR code")
            return

        try:
            response = await with_deadline(self.gateway.get_qr(), self.fetch_timeout_sec)
        except (ProviderError, asyncio.TimeoutError) as e:
            # Fetch errors do not count as failed attempts
            logger.warning(f"QR fetch error: {e!r}")
            return
        if token.is_set():
            return

        challenge = extract_qr_challenge(response)
        if challenge:
            self.failed_attempts = 0
            self._maybe_show(challenge)
        else:
            self.failed_attempts += 1
            logger.info(
                f"No QR code in response, will retry "
                f"({self.failed_attempts}/{self.max_failed_attempts})"
            )

        if self.failed_attempts > self.max_failed_attempts:
            await self._reboot(token)

    def _maybe_show(self, challenge: str):
        now = self.clock()
        if (
            challenge == self.last_value
            and self.last_shown_at is not None
            and now - self.last_shown_at < self.redisplay_window_sec
        ):
            logger.debug("Same QR code shown recently, not redisplaying")
            return
        logger.info("QR code received")
        self.display.show(challenge)
        self.last_value = challenge
        self.last_shown_at = now

    async def _reboot(self, token: asyncio.Event):
        logger.warning("Too many QR attempts, rebooting instance...")
        try:
            await self.gateway.reboot()
        except ProviderError as e:
            logger.error(f"Reboot failed: {e}")
        self.failed_attempts = 0
        await self.pause(token, self.reboot_pause_sec)
