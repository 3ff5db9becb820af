"""
Host Command Interface.
Parses host commands (line-delimited JSON, or a plain-text grammar on a
console) and dispatches them to the session.
"""

import asyncio
import json
import logging
import sys
import threading
from typing import Any, Callable, Dict, Optional, Set, TextIO

logger = logging.getLogger(__name__)

CONSOLE_HELP = """Running in standalone mode - use these commands:
  get_groups               - Fetch all groups
  monitor <group_id>       - Start monitoring a group
  stop_monitoring          - Stop monitoring
  history <group_id> [n]   - Show the last n messages of a group
  send <group_id> <text>   - Send a text message to a group
  logout                   - Logout and exit
  quit                     - Exit without logout
"""


def parse_json_command(line: str) -> Optional[Dict[str, Any]]:
    """Parse one host line. Returns None (after logging) when unusable."""
    text = line.strip()
    if not text:
        return None
    try:
        command = json.loads(text)
    except ValueError as e:
        logger.warning(f"Error parsing command: {e} for data: {text[:200]!r}")
        return None
    if not isinstance(command, dict) or not isinstance(command.get("type"), str):
        logger.warning(f"Ignoring command without a type: {text[:200]!r}")
        return None
    return command


def parse_console_command(line: str) -> Optional[Dict[str, Any]]:
    """Translate the console grammar into the equivalent host command."""
    parts = line.strip().split(maxsplit=2)
    if not parts:
        return None
    cmd, args = parts[0].lower(), parts[1:]

    if cmd in ("get_groups", "stop_monitoring", "logout", "quit") and not args:
        return {"type": cmd}
    if cmd == "monitor" and len(args) == 1:
        return {"type": "monitor_group", "groupId": args[0]}
    if cmd == "history" and args:
        command = {"type": "get_history", "groupId": args[0]}
        if len(args) == 2:
            if not args[1].isdigit():
                logger.warning(f"Invalid history count: {args[1]}")
                return None
            command["count"] = int(args[1])
        return command
    if cmd == "send" and len(args) == 2:
        return {"type": "send_message", "groupId": args[0], "message": args[1]}

    logger.warning(f"Unknown command: {line.strip()}. Commands: {CONSOLE_HELP}")
    return None


class CommandRouter:
    """
    Dispatches host commands to the session.

    Long-running commands run as background tasks so the input reader is
    never blocked. An exception escaping one of those tasks is fatal.
    """

    def __init__(self, session):
        self.session = session
        self._tasks: Set[asyncio.Task] = set()

    def handle_line(self, line: str, console: bool = False):
        command = parse_console_command(line) if console else parse_json_command(line)
        if command is not None:
            self.dispatch(command)

    def dispatch(self, command: Dict[str, Any]):
        cmd = command.get("type")
        logger.info(f"Command received: {cmd}")

        handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "get_groups": lambda c: self._spawn(self.session.list_groups(), cmd),
            "monitor_group": lambda c: self.session.monitor_group(c.get("groupId")),
            "stop_monitoring": lambda c: self.session.stop_monitoring(),
            "get_history": lambda c: self._spawn(
                self.session.get_history(c.get("groupId"), _count(c.get("count"))), cmd
            ),
            "send_message": lambda c: self._spawn(
                self.session.send_message(c.get("groupId"), c.get("message")), cmd
            ),
            "logout": lambda c: self._spawn(self.session.logout(), cmd),
            "quit": lambda c: self.session.request_exit(0),
        }

        handler = handlers.get(cmd)
        if handler is None:
            logger.warning(f"Unknown command type: {cmd}")
            return
        handler(command)

    def _spawn(self, coro, label: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"command:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.critical(f"{task.get_name()} failed: {exc!r}", exc_info=exc)
            self.session.fatal(f"{task.get_name()} failed: {exc}")

    async def drain(self):
        """Wait for in-flight command tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _count(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class StdinReader:
    """
    Reads lines on a daemon thread and hands them to the event loop.

    A daemon thread never holds up interpreter exit while blocked on input.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_line: Callable[[str], None],
        on_eof: Optional[Callable[[], None]] = None,
        stream: Optional[TextIO] = None,
    ):
        self.loop = loop
        self.on_line = on_line
        self.on_eof = on_eof
        self.stream = stream or sys.stdin
        self._thread = threading.Thread(target=self._run, name="stdin-reader", daemon=True)

    def start(self):
        self._thread.start()

    def _run(self):
        try:
            for line in self.stream:
                self._post(self.on_line, line)
        except (OSError, ValueError) as e:
            logger.error(f"stdin read failed: {e}")
        if self.on_eof:
            self._post(self.on_eof)

    def _post(self, callback, *args):
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed during shutdown
            pass
