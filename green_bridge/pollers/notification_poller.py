"""
Notification Poller.
Drains the provider inbox one notification at a time while connected.
Every received notification is deleted after dispatch, whatever the outcome.
"""

import asyncio
import logging
from typing import Callable

from ..config import BridgeConfig
from ..contract import Notification
from ..errors import ProviderError, RateLimitError, ServerError
from .base import PollingTask

logger = logging.getLogger(__name__)


class NotificationPoller(PollingTask):
    name = "NotificationPoller"

    def __init__(
        self,
        config: BridgeConfig,
        gateway,
        dispatcher,
        is_connected: Callable[[], bool],
    ):
        super().__init__(config.notification_interval_ms / 1000.0)
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.is_connected = is_connected
        self.rate_limited_interval_sec = config.notification_rate_limited_interval_ms / 1000.0
        self.server_error_interval_sec = config.notification_server_error_interval_ms / 1000.0

    async def tick(self, token: asyncio.Event):
        if not self.is_connected():
            return

        notification = await self.gateway.receive_notification()
        if notification is None:
            return
        if token.is_set():
            # The provider redelivers anything not deleted
            logger.info(f"Notification {notification.receipt_id} arrived after stop, discarding")
            return

        logger.debug(f"Received notification {notification.receipt_id}")
        try:
            await self.dispatcher.dispatch(notification.body)
        except asyncio.CancelledError:
            # Shutdown: leave it undeleted for redelivery
            logger.info(f"Dispatch of {notification.receipt_id} cancelled, not deleting")
            raise
        except Exception:
            await self.acknowledge(notification)
            raise
        await self.acknowledge(notification)

    async def acknowledge(self, notification: Notification):
        if notification.receipt_id is None:
            logger.warning("Notification without receiptId, cannot delete")
            return
        try:
            await self.gateway.delete_notification(notification.receipt_id)
        except ProviderError as e:
            logger.warning(f"Failed to delete notification {notification.receipt_id}: {e}")

    def handle_error(self, exc: Exception):
        if isinstance(exc, RateLimitError):
            self.interval_sec = max(self.interval_sec, self.rate_limited_interval_sec)
            logger.warning(
                f"Rate limited while polling notifications, "
                f"interval now {self.interval_sec:.1f}s"
            )
        elif isinstance(exc, ServerError):
            self.interval_sec = max(self.interval_sec, self.server_error_interval_sec)
            logger.warning(
                f"Server error ({exc.status_code}) while polling notifications, "
                f"interval now {self.interval_sec:.1f}s"
            )
        else:
            logger.error(f"Error polling notifications: {exc}")
