"""
Bridge Entrypoint.
Wires the gateway, session and command reader, then runs until quit, logout,
a signal or a fatal error.
"""

import argparse
import asyncio
import logging
import signal
import sys

from .commands import CONSOLE_HELP, CommandRouter, StdinReader
from .config import BridgeConfig, load_config, setup_logging
from .output import JsonLineSink
from .provider_client import ProviderGateway
from .qr import TerminalQrDisplay
from .session import BridgeSession

logger = logging.getLogger("green_bridge")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="green_bridge",
        description="Bridge a Green API WhatsApp instance to a host over stdin/stdout.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-file",
        default=None,
        help="Log file path (empty string disables file logging)",
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help="Accept plain-text commands even when stdin is not a terminal",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, session: BridgeSession, router):
    def on_signal(sig: signal.Signals):
        if session.closing:
            logger.info(f"Received {sig.name} again, exiting")
            session.request_exit(0)
            return
        logger.info(f"Received {sig.name}, logging out before exit")
        router.dispatch({"type": "logout"})

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler fully
            pass


async def run(config: BridgeConfig) -> int:
    loop = asyncio.get_running_loop()

    gateway = ProviderGateway(config)
    session = BridgeSession(
        config,
        gateway,
        JsonLineSink(),
        TerminalQrDisplay(fallback_dir=config.qr_fallback_dir),
    )
    router = CommandRouter(session)

    def on_loop_exception(loop, context):
        exc = context.get("exception")
        logger.critical(f"Unhandled error: {context.get('message')}", exc_info=exc)
        session.fatal(str(exc or context.get("message")))

    loop.set_exception_handler(on_loop_exception)
    _install_signal_handlers(loop, session, router)

    logger.info(f"Starting bridge for instance {config.id_instance} at {config.api_url}")
    logger.debug(f"Config: {config!r}")
    await session.start()

    if config.console:
        sys.stderr.write(CONSOLE_HELP)
        sys.stderr.flush()

    StdinReader(
        loop,
        on_line=lambda line: router.handle_line(line, console=config.console),
        on_eof=lambda: logger.info("stdin closed, bridge keeps running"),
    ).start()

    try:
        return await session.wait_for_exit()
    finally:
        await session.shutdown()


def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_config()
    if args.debug:
        config.debug = True
    if args.log_file is not None:
        config.log_file = args.log_file or None
    config.console = args.console or sys.stdin.isatty()

    setup_logging(config)

    if not config.has_credentials:
        logger.error(
            "Missing credentials: set GREEN_BRIDGE_ID_INSTANCE and GREEN_BRIDGE_API_TOKEN_INSTANCE"
        )
        return 1

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
