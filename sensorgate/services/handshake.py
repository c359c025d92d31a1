"""Challenge-response handshake and heartbeat supervision for the link.

On a fixed-length link the relay side cannot trust byte alignment after a
(re)connect, so it sends ``Identify`` and waits for an ``FE FE 01 <id>``
reply before any payload is decoded. A peer that stays silent is excluded
from discovery and the link is closed. Delimiter links, and the non-relay
side, are trusted as soon as they open.

The relay side also polls the peer with ``HB`` frames. A gap since the last
acknowledgement in the advisory window only produces a warning; liveness
never changes the connection state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from transitions import Machine

from ..config.settings import RuntimeConfig
from ..const import HEARTBEAT_TEXT, HEARTBEAT_WARN_HIGH, HEARTBEAT_WARN_LOW, IDENTIFY_TEXT
from ..protocol.encoder import OutboundMessage, frame_text
from ..protocol.structures import HandshakeReply
from ..state.context import ConnectionContext

SendMessageCallable = Callable[..., Awaitable[bool]]
CloseLinkCallable = Callable[[], None]

logger = logging.getLogger("sensorgate.service.handshake")


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    OPENING = "opening"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    CONNECTED = "connected"


class CandidateExclusion(Protocol):
    def exclude_current_candidate(self) -> None: ...

    def clear_exclusions(self) -> None: ...


class LinkController:
    """Drives the connection state of one link from open to close."""

    if TYPE_CHECKING:
        fsm_state: ConnectionState
        link_opened: Callable[[], bool]
        challenge_sent: Callable[[], bool]
        handshake_done: Callable[[], bool]
        link_closed: Callable[[], bool]

    def __init__(
        self,
        *,
        config: RuntimeConfig,
        context: ConnectionContext,
        send_message: SendMessageCallable,
        discovery: CandidateExclusion,
        close_link: CloseLinkCallable,
        logger_: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._context = context
        self._send_message = send_message
        self._discovery = discovery
        self._close_link = close_link
        self._logger = logger_ or logger
        self._timers: set[asyncio.Task[None]] = set()
        self._challenge_timer: asyncio.Task[None] | None = None

        self.state_machine = Machine(
            model=self,
            states=ConnectionState,
            initial=ConnectionState.DISCONNECTED,
            auto_transitions=False,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
        )
        self.state_machine.add_transition(
            trigger="link_opened", source=ConnectionState.DISCONNECTED, dest=ConnectionState.OPENING
        )
        self.state_machine.add_transition(
            trigger="challenge_sent", source=ConnectionState.OPENING, dest=ConnectionState.AWAITING_HANDSHAKE
        )
        self.state_machine.add_transition(
            trigger="handshake_done",
            source=[ConnectionState.OPENING, ConnectionState.AWAITING_HANDSHAKE],
            dest=ConnectionState.CONNECTED,
            after="_cancel_challenge_timer",
        )
        self.state_machine.add_transition(
            trigger="link_closed", source="*", dest=ConnectionState.DISCONNECTED, after="_cancel_timers"
        )

    @property
    def handshake_satisfied(self) -> bool:
        return self.fsm_state is ConnectionState.CONNECTED

    # --- lifecycle ------------------------------------------------------

    def start(self) -> None:
        """Called once the physical link is open."""
        self.link_opened()
        if self._config.relay:
            self._context.heartbeat.reset()
            self._spawn(self._heartbeat_loop(), "heartbeat")
        if self._config.handshake_required:
            self._spawn(self._challenge_after_delay(), "identify")
        else:
            self.handshake_done()

    def stop(self) -> None:
        self.link_closed()

    async def aclose(self) -> None:
        """Stop and wait for every timer of this connection to finish."""
        timers = list(self._timers)
        self.stop()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    # --- handshake ------------------------------------------------------

    async def _challenge_after_delay(self) -> None:
        await asyncio.sleep(self._config.identify_delay)
        if self.fsm_state is ConnectionState.OPENING:
            await self.send_challenge()

    async def send_challenge(self) -> None:
        await self._send_message(OutboundMessage(text=IDENTIFY_TEXT, internal=True), announce=False)
        self.challenge_sent()
        self._challenge_timer = self._spawn(self._challenge_timeout(), "handshake-timeout")

    async def _challenge_timeout(self) -> None:
        await asyncio.sleep(self._config.handshake_timeout)
        if self.fsm_state is not ConnectionState.AWAITING_HANDSHAKE:
            return
        self._challenge_timer = None
        self._logger.warning("No response to challenge on %s. Disconnecting.", self._context.port)
        self._discovery.exclude_current_candidate()
        self._close_link()

    def handle_handshake_frame(self, frame: bytes) -> None:
        """Consume a frame received before the handshake completed.

        The frame is never passed on, whether or not it is the reply.
        """
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug("UART: %r", frame_text(frame))

        reply = HandshakeReply.try_decode(frame)
        # Only a reply to our own Identify counts; earlier ones are stale.
        if reply is None or self.fsm_state is not ConnectionState.AWAITING_HANDSHAKE:
            self._context.record_dropped_frame()
            return

        identity = reply.identity_text
        self._logger.info("Challenge response: %s", identity)
        self._context.identity = identity
        self._discovery.clear_exclusions()
        self.handshake_done()

    # --- heartbeat ------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            self.check_heartbeat()
            await self._send_message(OutboundMessage(text=HEARTBEAT_TEXT, internal=True), announce=False)

    def check_heartbeat(self, now: float | None = None) -> bool:
        """Warn when the last acknowledgement is overdue; returns whether it did."""
        interval = self._config.heartbeat_interval
        gap = self._context.heartbeat.gap(now)
        if HEARTBEAT_WARN_LOW * interval < gap < HEARTBEAT_WARN_HIGH * interval:
            self._logger.error(
                "Heartbeat: the sensor unit has possibly crashed! (%.1fs since last acknowledgement)", gap
            )
            return True
        return False

    def acknowledge_heartbeat(self, now: float | None = None) -> None:
        current = time.monotonic() if now is None else now
        if self._context.heartbeat.gap(current) > HEARTBEAT_WARN_LOW * self._config.heartbeat_interval:
            self._logger.info("Heartbeat: sensor unit reconnected.")
        self._context.heartbeat.reset(current)

    # --- timers ---------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{name}:{self._context.port}")
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
        return task

    def _cancel_challenge_timer(self) -> None:
        timer = self._challenge_timer
        self._challenge_timer = None
        if timer is not None and timer is not _current_task():
            timer.cancel()

    def _cancel_timers(self) -> None:
        current = _current_task()
        for task in list(self._timers):
            if task is not current:
                task.cancel()
        self._challenge_timer = None


__all__ = ["CandidateExclusion", "ConnectionState", "LinkController"]
