"""Operator console: dot-commands and outbound text routing."""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import sys
from collections.abc import Awaitable, Callable
from typing import IO, Any

from ..config.settings import RuntimeConfig
from ..const import BROADCAST_ADDRESS
from ..protocol.encoder import OutboundMessage

logger = logging.getLogger("sensorgate.console")

SendMessageCallable = Callable[..., Awaitable[bool]]

_ADDRESSED_RE = re.compile(r"^([0-9a-fA-F]{4})#(.+)$", re.DOTALL)

_HELP = (
    "Supported commands:\n"
    "  .reconnect   Force port reconnect\n"
    "  .mute        Mute the 'Broker unreachable' warning\n"
    "  .unmute      Unmute the 'Broker unreachable' warning\n"
)
_HELP_RELAY = (
    "\nAny message not starting with '.' will be sent to address 0xffff."
    "\nAddress can be specified using XXXX# prefix.\n"
)
_HELP_DIRECT = "\nAny message not starting with '.' will be sent to the sensor unit.\n"


class ConsoleHandler:
    """Handle one line of user input from the terminal or the bus."""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        send_message: SendMessageCallable,
        reconnect: Callable[[], None],
        set_muted: Callable[[bool], None],
        output: IO[str] | None = None,
    ) -> None:
        self._config = config
        self._send_message = send_message
        self._reconnect = reconnect
        self._set_muted = set_muted
        self._output = output

    def _print(self, text: str) -> None:
        stream = self._output or sys.stdout
        stream.write(text + "\n")
        stream.flush()

    def build_message(self, line: str) -> OutboundMessage | None:
        if not line:
            return None
        if not self._config.relay:
            return OutboundMessage(text=line, internal=True)
        match = _ADDRESSED_RE.match(line)
        if match:
            return OutboundMessage(text=match.group(2), address=match.group(1).lower())
        return OutboundMessage(text=line, address=BROADCAST_ADDRESS)

    async def handle_line(self, line: str, *, allow_commands: bool = True) -> bool:
        """Act on *line*; returns whether something was sent to the link."""
        if line.startswith("."):
            if allow_commands:
                self._handle_command(line)
            else:
                logger.warning("Ignoring console command %r from the bus.", line)
            return False

        message = self.build_message(line)
        if message is None:
            return False
        return await self._send_message(message)

    def _handle_command(self, line: str) -> None:
        command = line.strip()
        if command == ".reconnect":
            self._reconnect()
        elif command == ".mute":
            self._set_muted(True)
            self._print("Subscriber connection errors muted.\n")
        elif command == ".unmute":
            self._set_muted(False)
            self._print("Subscriber connection errors unmuted.\n")
        elif command == ".help":
            self._print(_HELP + (_HELP_RELAY if self._config.relay else _HELP_DIRECT))
        else:
            self._print("Unknown command")


async def read_console(handler: ConsoleHandler, stream: Any = None) -> None:
    """Feed stdin lines to *handler* until end of input."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(functools.partial(asyncio.StreamReaderProtocol, reader), stream or sys.stdin)
    while True:
        raw = await reader.readline()
        if not raw:
            logger.info("Console input closed.")
            return
        await handler.handle_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))


__all__ = ["ConsoleHandler", "read_console"]
