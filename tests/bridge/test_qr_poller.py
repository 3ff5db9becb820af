"""
QrPoller Tests.
Redisplay suppression, failed-attempt counting and the reboot escape hatch.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from green_bridge.config import BridgeConfig
from green_bridge.errors import TransportError
from green_bridge.pollers import QrPoller

PNG_CHALLENGE = "iVBORw0KGgoAAAANSUhEUgAA" + "A" * 64


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestQrPoller(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = BridgeConfig(qr_reboot_pause_ms=0)
        self.gateway = MagicMock()
        self.gateway.get_state_instance = AsyncMock(return_value="notAuthorized")
        self.gateway.get_qr = AsyncMock(return_value={"type": "qrCode", "message": PNG_CHALLENGE})
        self.gateway.reboot = AsyncMock(return_value={"isReboot": True})
        self.display = MagicMock()
        self.on_authorized = AsyncMock()
        self.clock = FakeClock()
        self.poller = QrPoller(
            self.config, self.gateway, self.display, self.on_authorized, clock=self.clock
        )
        self.token = asyncio.Event()

    async def test_same_challenge_not_redisplayed_within_window(self):
        await self.poller.tick(self.token)
        self.clock.now += 3.0
        await self.poller.tick(self.token)
        self.display.show.assert_called_once_with(PNG_CHALLENGE)

        self.clock.now += 3.0
        await self.poller.tick(self.token)
        self.assertEqual(self.display.show.call_count, 2)

    async def test_changed_challenge_always_displayed(self):
        await self.poller.tick(self.token)
        self.gateway.get_qr.return_value = {"qr": "2@new-token"}
        self.clock.now += 0.5
        await self.poller.tick(self.token)
        self.assertEqual(self.display.show.call_count, 2)
        self.display.show.assert_called_with("2@new-token")

    async def test_reboot_after_eleven_empty_responses(self):
        self.gateway.get_qr.return_value = {}
        for _ in range(10):
            await self.poller.tick(self.token)
        self.gateway.reboot.assert_not_awaited()
        self.assertEqual(self.poller.failed_attempts, 10)

        await self.poller.tick(self.token)
        self.gateway.reboot.assert_awaited_once()
        self.assertEqual(self.poller.failed_attempts, 0)

    async def test_counter_reset_even_if_reboot_fails(self):
        self.gateway.get_qr.return_value = None
        self.gateway.reboot.side_effect = TransportError("reboot", "down")
        for _ in range(11):
            await self.poller.tick(self.token)
        self.gateway.reboot.assert_awaited_once()
        self.assertEqual(self.poller.failed_attempts, 0)

    async def test_fetch_errors_do_not_count(self):
        self.gateway.get_qr.side_effect = TransportError("qr", "unreachable")
        for _ in range(15):
            await self.poller.tick(self.token)
        self.assertEqual(self.poller.failed_attempts, 0)
        self.gateway.reboot.assert_not_awaited()

    async def test_challenge_resets_failed_attempts(self):
        self.gateway.get_qr.return_value = {}
        for _ in range(5):
            await self.poller.tick(self.token)
        self.gateway.get_qr.return_value = {"qr": "2@token"}
        await self.poller.tick(self.token)
        self.assertEqual(self.poller.failed_attempts, 0)

    async def test_authorized_stops_and_reports(self):
        self.gateway.get_state_instance.return_value = "authorized"
        with patch.object(self.poller, "stop") as stop:
            await self.poller.tick(self.token)

        stop.assert_called_once()
        self.on_authorized.assert_awaited_once_with("authorized")
        self.gateway.get_qr.assert_not_awaited()

    async def test_unknown_state_does_not_fetch(self):
        self.gateway.get_state_instance.return_value = "sleepMode"
        await self.poller.tick(self.token)
        self.gateway.get_qr.assert_not_awaited()

    async def test_starting_state_fetches(self):
        self.gateway.get_state_instance.return_value = "starting"
        await self.poller.tick(self.token)
        self.gateway.get_qr.assert_awaited_once()

    async def test_restart_resets_counters(self):
        self.poller.failed_attempts = 7
        self.poller.last_value = "old"
        self.poller.start()
        self.poller.stop()
        self.assertEqual(self.poller.failed_attempts, 0)
        self.assertIsNone(self.poller.last_value)


if __name__ == "__main__":
    unittest.main()
