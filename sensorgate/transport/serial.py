"""Serial link supervision for the sensor gateway.

A ``ConnectionSupervisor`` owns exactly one connection attempt: it opens the
port, builds a fresh framer, link controller and decoder, routes every frame
to either the handshake or the payload decoder, and tears everything down
when the link closes. ``SerialGateway`` loops forever asking discovery for a
port and running one supervisor at a time.
"""

from __future__ import annotations

import asyncio
import logging

import serial_asyncio_fast  # type: ignore
import tenacity

from ..config.settings import RuntimeConfig
from ..protocol.encoder import OutboundMessage, encode_outbound
from ..protocol.frame import build_framer, iter_frames
from ..services.discovery import PortFinder
from ..services.dispatch import DecodeError, PayloadDecoder, PublishCallable
from ..services.fields import FieldRegistry
from ..services.handshake import LinkController
from ..state.context import ConnectionContext, HeartbeatState
from ..util import log_hexdump

logger = logging.getLogger("sensorgate.serial")


class ConnectionSupervisor:
    """Owns the physical link and its components for one attempt."""

    def __init__(
        self,
        config: RuntimeConfig,
        port: str,
        *,
        registry: FieldRegistry,
        heartbeat: HeartbeatState,
        discovery: PortFinder,
        publish: PublishCallable,
    ) -> None:
        self.config = config
        self.context = ConnectionContext(port=port, heartbeat=heartbeat)
        self.framer = build_framer(config)
        self.controller = LinkController(
            config=config,
            context=self.context,
            send_message=self.send_message,
            discovery=discovery,
            close_link=self.close,
        )
        self.decoder = PayloadDecoder(
            registry,
            relay=config.relay,
            send_message=self.send_message,
            publish=publish,
            on_heartbeat_ack=self.controller.acknowledge_heartbeat,
        )
        self._closed = asyncio.Event()

    # --- open -----------------------------------------------------------

    def _log_open_retry(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Opening %s failed (%s); attempt %d, retrying in %.1fs",
            self.context.port,
            exc,
            retry_state.attempt_number,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.config.open_attempts),
            wait=tenacity.wait_fixed(self.config.open_retry_delay),
            retry=tenacity.retry_if_exception_type(OSError),
            before_sleep=self._log_open_retry,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                return await serial_asyncio_fast.open_serial_connection(
                    url=self.context.port,
                    baudrate=self.config.serial_baud,
                )
        raise ConnectionError(f"could not open {self.context.port}")

    # --- run ------------------------------------------------------------

    async def run(self) -> bool:
        """Run the attempt to completion; returns whether the link ever opened."""
        try:
            reader, writer = await self._open()
        except OSError as exc:
            logger.error("Bad port %s: %s", self.context.port, exc)
            return False

        self.context.writer = writer
        logger.info("UART connection opened on %s.", self.context.port)
        try:
            self.controller.start()
            await self._pump(reader)
        finally:
            await self._teardown()
        return True

    async def _pump(self, reader: asyncio.StreamReader) -> None:
        read_task = asyncio.create_task(self._read_frames(reader), name=f"read:{self.context.port}")
        close_task = asyncio.create_task(self._closed.wait(), name=f"close:{self.context.port}")
        try:
            done, _ = await asyncio.wait({read_task, close_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (read_task, close_task):
                task.cancel()
            await asyncio.gather(read_task, close_task, return_exceptions=True)

        if read_task in done and not read_task.cancelled():
            exc = read_task.exception()
            if exc is not None:
                logger.error("Unexpected error on UART connection (%s). Attempting to reconnect.", exc)

    async def _read_frames(self, reader: asyncio.StreamReader) -> None:
        async for frame in iter_frames(reader, self.framer):
            self.context.record_frame()
            log_hexdump(logger, logging.DEBUG, "UART <", frame)
            await self.route_frame(frame)
        logger.error("The sensor unit disconnected from %s! Please reconnect.", self.context.port)

    async def route_frame(self, frame: bytes) -> None:
        """Give *frame* to exactly one of the handshake or the payload decoder."""
        if not self.controller.handshake_satisfied:
            self.controller.handle_handshake_frame(frame)
            return
        try:
            await self.decoder.handle_frame(frame)
        except DecodeError as exc:
            self.context.record_decode_error()
            logger.error("Error: %s", exc)

    # --- close ----------------------------------------------------------

    def close(self) -> None:
        """Request the link to close; teardown happens in ``run``."""
        writer = self.context.writer
        if writer is not None and not writer.is_closing():
            writer.close()
        self._closed.set()

    async def _teardown(self) -> None:
        await self.controller.aclose()
        writer = self.context.writer
        self.context.writer = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ConnectionError) as exc:
                logger.error("Port close error: %s", exc)
        await asyncio.sleep(self.config.close_settle_delay)
        self.framer.reset()
        logger.info(
            "Link on %s closed (frames=%d dropped=%d decode_errors=%d).",
            self.context.port,
            self.context.frames_received,
            self.context.frames_dropped,
            self.context.decode_errors,
        )

    # --- write ----------------------------------------------------------

    async def send_message(self, message: OutboundMessage, *, announce: bool = True) -> bool:
        """Encode and write *message*; failures are reported, never raised."""
        writer = self.context.writer
        if writer is None or writer.is_closing():
            logger.error("Sending aborted. The sensor unit isn't connected.")
            return False

        frame = encode_outbound(message, length=self.config.tx_length, relay=self.config.relay)
        try:
            writer.write(frame)
            await writer.drain()
        except (OSError, ConnectionError) as exc:
            self.context.record_write_error()
            logger.error("UART write error: %s", exc)
            return False

        log_hexdump(logger, logging.DEBUG, "UART >", frame)
        if announce:
            logger.info("Sent %s", message.describe())
        return True


class SerialGateway:
    """Reconnect loop: one ``ConnectionSupervisor`` per discovered port."""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        registry: FieldRegistry,
        discovery: PortFinder,
        publish: PublishCallable,
        heartbeat: HeartbeatState | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.discovery = discovery
        self.publish = publish
        self.heartbeat = heartbeat or HeartbeatState()
        self.session: ConnectionSupervisor | None = None

    def _build_session(self, port: str) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            self.config,
            port,
            registry=self.registry,
            heartbeat=self.heartbeat,
            discovery=self.discovery,
            publish=self.publish,
        )

    async def run(self) -> None:
        while True:
            port = await self.discovery.find_port()
            session = self._build_session(port)
            self.session = session
            try:
                opened = await session.run()
            finally:
                self.session = None
            if not opened:
                await asyncio.sleep(self.config.discovery_interval)

    async def send_message(self, message: OutboundMessage, *, announce: bool = True) -> bool:
        session = self.session
        if session is None:
            logger.error("Sending aborted. The sensor unit isn't connected.")
            return False
        return await session.send_message(message, announce=announce)

    def reconnect(self) -> None:
        session = self.session
        if session is None:
            logger.info("No open link to reconnect.")
            return
        logger.info("Forcing reconnect of %s.", session.context.port)
        session.close()

    def close(self) -> None:
        if self.session is not None:
            self.session.close()


__all__ = ["ConnectionSupervisor", "SerialGateway"]
