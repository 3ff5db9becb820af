"""
Entrypoint tests.
Credential check, signal-driven logout, fatal loop errors and the exit codes
they map to.
"""
import asyncio
import os
import signal
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from green_bridge.__main__ import _install_signal_handlers, main, parse_args, run
from green_bridge.commands import CommandRouter
from green_bridge.config import BridgeConfig
from green_bridge.output import MemorySink
from green_bridge.session import BridgeSession

CREDENTIALS = {
    "GREEN_BRIDGE_ID_INSTANCE": "1101",
    "GREEN_BRIDGE_API_TOKEN_INSTANCE": "tok",
}


def make_gateway():
    gateway = MagicMock()
    gateway.start = AsyncMock()
    gateway.close = AsyncMock()
    gateway.get_state_instance = AsyncMock(return_value="starting")
    gateway.get_qr = AsyncMock(return_value={})
    gateway.logout = AsyncMock(return_value={"isLogout": True})
    gateway.reboot = AsyncMock(return_value={"isReboot": True})
    return gateway


class TestMain(unittest.TestCase):
    def setUp(self):
        patcher = patch("green_bridge.__main__.setup_logging")
        self.setup_logging = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = patch("green_bridge.__main__.sys.stdin")
        self.stdin = patcher.start()
        self.stdin.isatty.return_value = False
        self.addCleanup(patcher.stop)

    def test_parse_args(self):
        args = parse_args(["--debug", "--log-file", "", "--console"])
        self.assertTrue(args.debug)
        self.assertEqual(args.log_file, "")
        self.assertTrue(args.console)

    @patch("green_bridge.__main__.asyncio.run")
    def test_missing_credentials_exits_1(self, asyncio_run):
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(main([]), 1)
        self.setup_logging.assert_called_once()
        asyncio_run.assert_not_called()

    @patch("green_bridge.__main__.run", new_callable=MagicMock)
    @patch("green_bridge.__main__.asyncio.run", return_value=0)
    def test_flags_applied_before_run(self, asyncio_run, run_bridge):
        with patch.dict(os.environ, CREDENTIALS, clear=True):
            self.assertEqual(main(["--debug", "--log-file", ""]), 0)

        config = run_bridge.call_args.args[0]
        self.assertTrue(config.debug)
        self.assertIsNone(config.log_file)
        self.assertFalse(config.console)
        asyncio_run.assert_called_once_with(run_bridge.return_value)

    @patch("green_bridge.__main__.run", new_callable=MagicMock)
    def test_interrupt_and_crash_exit_codes(self, run_bridge):
        with patch.dict(os.environ, CREDENTIALS, clear=True):
            with patch("green_bridge.__main__.asyncio.run", side_effect=KeyboardInterrupt):
                self.assertEqual(main([]), 0)
            with patch("green_bridge.__main__.asyncio.run", side_effect=RuntimeError("boom")):
                self.assertEqual(main([]), 1)


class TestSignalHandlers(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.config = BridgeConfig(id_instance="1101", api_token_instance="tok")
        self.gateway = make_gateway()
        self.sink = MemorySink()
        self.session = BridgeSession(self.config, self.gateway, self.sink, MagicMock())
        self.router = CommandRouter(self.session)
        self.loop = MagicMock()
        _install_signal_handlers(self.loop, self.session, self.router)
        self.handlers = {
            c.args[0]: c.args[1:] for c in self.loop.add_signal_handler.call_args_list
        }
        await self.session.start()

    def _deliver(self, sig):
        callback, *args = self.handlers[sig]
        callback(*args)

    async def test_registers_sigint_and_sigterm(self):
        self.assertEqual(set(self.handlers), {signal.SIGINT, signal.SIGTERM})

    async def test_unsupported_signal_handlers_are_skipped(self):
        loop = MagicMock()
        loop.add_signal_handler.side_effect = NotImplementedError
        _install_signal_handlers(loop, self.session, self.router)
        self.assertEqual(loop.add_signal_handler.call_count, 2)

    async def test_signal_logs_out_then_exits_0(self):
        self._deliver(signal.SIGINT)
        code = await asyncio.wait_for(self.session.wait_for_exit(), timeout=1)

        self.assertEqual(code, 0)
        self.gateway.logout.assert_awaited_once()
        self.assertEqual(self.sink.of_type("error"), [])

    async def test_second_signal_exits_without_waiting_for_logout(self):
        released = asyncio.Event()

        async def slow_logout():
            await released.wait()
            return {"isLogout": True}

        self.gateway.logout = AsyncMock(side_effect=slow_logout)
        self._deliver(signal.SIGTERM)
        for _ in range(100):
            if self.gateway.logout.await_count:
                break
            await asyncio.sleep(0.01)
        self.assertTrue(self.session.closing)

        self._deliver(signal.SIGINT)
        code = await asyncio.wait_for(self.session.wait_for_exit(), timeout=1)
        self.assertEqual(code, 0)
        self.assertFalse(released.is_set())
        released.set()

    async def asyncTearDown(self):
        await self.router.drain()
        await self.session.shutdown()


class TestRun(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.config = BridgeConfig(id_instance="1101", api_token_instance="tok")
        self.gateway = make_gateway()
        self.sink = MemorySink()
        self.reader_cls = self._patch("StdinReader")
        self._patch("ProviderGateway", return_value=self.gateway)
        self._patch("JsonLineSink", return_value=self.sink)
        self._patch("TerminalQrDisplay")
        # Keep the test runner's own SIGINT handling
        self._patch("_install_signal_handlers")

    def _patch(self, name, **kwargs):
        patcher = patch(f"green_bridge.__main__.{name}", **kwargs)
        self.addCleanup(patcher.stop)
        return patcher.start()

    async def _start(self) -> asyncio.Task:
        task = asyncio.create_task(run(self.config))
        for _ in range(100):
            if self.reader_cls.return_value.start.called:
                break
            await asyncio.sleep(0.01)
        self.reader_cls.return_value.start.assert_called_once()
        return task

    async def test_loop_exception_exits_1(self):
        task = await self._start()
        asyncio.get_running_loop().call_exception_handler(
            {"message": "Task exception was never retrieved", "exception": RuntimeError("lost")}
        )

        self.assertEqual(await asyncio.wait_for(task, timeout=1), 1)
        self.assertEqual(
            [e.to_wire() for e in self.sink.of_type("error")],
            [{"type": "error", "message": "Fatal error: lost"}],
        )
        self.gateway.start.assert_awaited_once()
        self.gateway.close.assert_awaited_once()

    async def test_quit_from_host_exits_0(self):
        task = await self._start()
        on_line = self.reader_cls.call_args.kwargs["on_line"]
        on_line('{"type":"quit"}\n')

        self.assertEqual(await asyncio.wait_for(task, timeout=1), 0)
        self.gateway.logout.assert_not_awaited()
        self.gateway.close.assert_awaited_once()

    async def asyncTearDown(self):
        asyncio.get_running_loop().set_exception_handler(None)


if __name__ == "__main__":
    unittest.main()
