"""
Bridge Session.
Owns the shared session state (connection state, monitor target) and wires the
pollers, the dispatcher and the host-facing operations together.
"""

import asyncio
import logging
from typing import Any, Iterable, List, Optional

from .classifier import NotificationDispatcher
from .config import BridgeConfig
from .contract import (
    ErrorEvent,
    Group,
    GroupsListed,
    HistoryListed,
    MessageSent,
    MonitoringChanged,
    MonitorTarget,
    StatusChanged,
)
from .errors import ProviderError, RateLimitError
from .history import normalize_history
from .pollers import NotificationPoller, QrPoller, StatePoller
from .retry import retry_call, with_deadline
from .state import ConnectionState, ConnectionStateMachine, Transition

logger = logging.getLogger(__name__)

GROUP_SUFFIX = "@g.us"
UNKNOWN_GROUP = "Unknown Group"
RATE_LIMITED_MESSAGE = "Rate limited - try again later"


def groups_from_chats(chats: Iterable[Any]) -> List[Group]:
    """Keep group chats only, named by ``name``, then ``subject``."""
    groups = []
    for chat in chats:
        if not isinstance(chat, dict):
            continue
        chat_id = chat.get("id")
        if not isinstance(chat_id, str) or GROUP_SUFFIX not in chat_id:
            continue
        groups.append(Group(id=chat_id, name=chat.get("name") or chat.get("subject") or UNKNOWN_GROUP))
    return groups


def _error_text(exc: BaseException, default: str) -> str:
    if isinstance(exc, RateLimitError):
        return RATE_LIMITED_MESSAGE
    return str(exc) or default


class BridgeSession:
    def __init__(self, config: BridgeConfig, gateway, sink, display, sleep=asyncio.sleep):
        self.config = config
        self.gateway = gateway
        self.sink = sink
        self.sleep = sleep

        self.machine = ConnectionStateMachine()
        self.monitor: Optional[MonitorTarget] = None
        self.closing = False
        self._fetching_groups = False
        self._exit: Optional[asyncio.Future] = None

        self.dispatcher = NotificationDispatcher(
            gateway,
            sink,
            get_monitor=lambda: self.monitor,
            on_state_hint=self.observe_state,
            media_max_bytes=config.media_max_bytes,
        )
        self.state_poller = StatePoller(
            gateway,
            config.state_check_interval_ms / 1000.0,
            on_state=self.observe_state,
            on_error=self.observe_error,
        )
        self.qr_poller = QrPoller(config, gateway, display, on_authorized=self.observe_state)
        self.notification_poller = NotificationPoller(
            config, gateway, self.dispatcher, is_connected=lambda: self.machine.connected
        )

    # --- Lifecycle ---

    async def start(self):
        self._exit = asyncio.get_running_loop().create_future()
        await self.gateway.start()
        logger.info("Checking connection state...")
        self.state_poller.start()

    def request_exit(self, code: int):
        if self._exit is not None and not self._exit.done():
            logger.info(f"Exit requested with code {code}")
            self._exit.set_result(code)

    async def wait_for_exit(self) -> int:
        return await self._exit

    async def shutdown(self):
        """Stop every poller and release the HTTP session."""
        self.closing = True
        self._cancel_pollers()
        await self.gateway.close()

    def fatal(self, message: str):
        """Report a fatal error to the host and request exit code 1."""
        self.sink.emit(ErrorEvent(message=f"Fatal error: {message}"))
        self.request_exit(1)

    def _cancel_pollers(self):
        for poller in (self.state_poller, self.qr_poller, self.notification_poller):
            poller.cancel()

    # --- Connection state ---

    async def observe_state(self, raw_state: str):
        transition = self.machine.apply(raw_state)
        if self.closing:
            return
        if transition == Transition.CONNECTED:
            self._on_connected()
        elif transition == Transition.DISCONNECTED:
            self._on_disconnected()
        elif not self.machine.connected and self.machine.state != ConnectionState.AUTHORIZED:
            if not self.qr_poller.running:
                logger.info(f"State: {raw_state}, starting QR code polling")
                self.qr_poller.start()

    async def observe_error(self, exc: BaseException):
        self.machine.observe_error(exc)

    def _on_connected(self):
        self.qr_poller.stop()
        self.sink.emit(StatusChanged(connected=True))
        self.notification_poller.start()

    def _on_disconnected(self):
        self.notification_poller.stop()
        self.sink.emit(StatusChanged(connected=False))
        self.monitor = None
        self.sink.emit(MonitoringChanged(monitoring=False))
        self.qr_poller.start()

    # --- Host operations ---

    async def list_groups(self) -> Optional[GroupsListed]:
        """Fetch group chats and emit a ``groups`` event. Concurrent calls are dropped."""
        if self._fetching_groups:
            logger.info("Group fetch already in progress, skipping duplicate request")
            return None
        self._fetching_groups = True
        try:
            await self.sleep(self.config.groups_initial_delay_ms / 1000.0)
            try:
                chats = await retry_call(
                    self.gateway.get_chats,
                    max_retries=self.config.max_retries,
                    backoff_schedule_ms=self.config.backoff_schedule_ms,
                    timeout_sec=self.config.groups_timeout_sec,
                    label="getChats",
                    sleep=self.sleep,
                )
            except asyncio.TimeoutError:
                event = GroupsListed(
                    error=f"Group fetch timeout after {self.config.groups_timeout_sec} seconds"
                )
            except ProviderError as e:
                event = GroupsListed(error=_error_text(e, "Group fetch failed"))
            else:
                groups = groups_from_chats(chats)
                logger.info(f"Found {len(groups)} groups out of {len(chats)} total chats")
                event = GroupsListed(groups=groups)
        finally:
            self._fetching_groups = False

        if event.error:
            logger.error(f"Error fetching groups: {event.error}")
        self.sink.emit(event)
        return event

    def monitor_group(self, group_id: Optional[str]):
        if not group_id:
            logger.warning("monitor_group without groupId, ignoring")
            return
        self.monitor = MonitorTarget(group_id=group_id)
        logger.info(f"Monitoring started for group {group_id}")
        self.sink.emit(MonitoringChanged(monitoring=True))

    def stop_monitoring(self):
        self.monitor = None
        logger.info("Monitoring stopped")
        self.sink.emit(MonitoringChanged(monitoring=False))

    async def get_history(self, group_id: Optional[str], count: Optional[int] = None):
        if not group_id:
            logger.warning("get_history without groupId, ignoring")
            return None
        count = count or self.config.history_count
        try:
            records = await retry_call(
                lambda: self.gateway.get_chat_history(group_id, count),
                max_retries=self.config.max_retries,
                backoff_schedule_ms=self.config.backoff_schedule_ms,
                timeout_sec=self.config.request_timeout_sec,
                label="getChatHistory",
                sleep=self.sleep,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            event = HistoryListed(chat_id=group_id, error=_error_text(e, "History fetch timed out"))
            logger.error(f"Error fetching history for {group_id}: {event.error}")
        else:
            event = HistoryListed(chat_id=group_id, messages=normalize_history(records))
        self.sink.emit(event)
        return event

    async def send_message(self, group_id: Optional[str], message: Optional[str]):
        if not group_id or not message:
            logger.warning("send_message needs groupId and message, ignoring")
            return None
        try:
            # Only a rejected request is known not to have been delivered
            result = await retry_call(
                lambda: self.gateway.send_message(group_id, message),
                max_retries=self.config.max_retries,
                backoff_schedule_ms=self.config.backoff_schedule_ms,
                retry_on=(RateLimitError,),
                label="sendMessage",
                sleep=self.sleep,
            )
        except ProviderError as e:
            event = MessageSent(chat_id=group_id, error=_error_text(e, "Send failed"))
            logger.error(f"Error sending message to {group_id}: {event.error}")
        else:
            event = MessageSent(chat_id=group_id, id_message=result.get("idMessage"))
        self.sink.emit(event)
        return event

    @property
    def logout_deadline_sec(self) -> float:
        """Configured bound, widened to two rate limiter slots (logout plus reboot)."""
        slot_sec = self.config.rate_limit_window_ms / 1000.0 / max(1, self.config.rate_limit_max_requests)
        return max(float(self.config.logout_timeout_sec), 2 * slot_sec)

    async def logout(self, exit_code: Optional[int] = 0):
        """
        Best-effort remote logout, bounded by ``logout_deadline_sec``.

        Pollers are cancelled first so queued ticks release the rate limiter.
        Falls back to a reboot when the provider does not confirm the logout.
        Requests process exit with ``exit_code`` unless it is None.
        """
        logger.info("Processing logout")
        self.closing = True
        self.monitor = None
        self._cancel_pollers()

        deadline = self.logout_deadline_sec
        try:
            await with_deadline(self._remote_logout(), deadline)
        except asyncio.TimeoutError:
            logger.error(f"Logout timed out after {deadline:.1f}s")
        except ProviderError as e:
            logger.error(f"Green API logout error: {e}")

        logger.info("Logout completed")
        if exit_code is not None:
            self.request_exit(exit_code)

    async def _remote_logout(self):
        result = await self.gateway.logout()
        if isinstance(result, dict) and result.get("isLogout") is True:
            logger.info("Green API logout successful")
            return
        logger.warning(f"Logout not confirmed ({result!r}), rebooting instance")
        await self.gateway.reboot()
