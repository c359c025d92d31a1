"""MQTT transport: publishes decoded records and receives bus commands."""

from __future__ import annotations

import asyncio
import logging
import ssl
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiomqtt
import tenacity
from transitions import Machine

from ..config.settings import RuntimeConfig
from ..mqtt.messages import QueuedPublish, build_record_publishes
from ..protocol import topics
from ..util import log_hexdump

logger = logging.getLogger("sensorgate.mqtt")

CommandCallable = Callable[[str], Awaitable[Any]]

_RETRYABLE: tuple[type[Exception], ...] = (aiomqtt.MqttError, OSError, asyncio.TimeoutError)


def _first_leaf(group: BaseExceptionGroup[Any]) -> BaseException:
    first = group.exceptions[0]
    if isinstance(first, BaseExceptionGroup):
        return _first_leaf(first)
    return first


def configure_tls_context(config: RuntimeConfig) -> ssl.SSLContext | None:
    if not config.mqtt_tls:
        return None
    if config.mqtt_cafile:
        if not Path(config.mqtt_cafile).exists():
            raise RuntimeError(f"MQTT TLS CA file missing: {config.mqtt_cafile}")
        return ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=config.mqtt_cafile)
    return ssl.create_default_context(ssl.Purpose.SERVER_AUTH)


class MqttPublisher:
    """Queue-backed MQTT client with FSM-based connection state."""

    if TYPE_CHECKING:
        fsm_state: str
        trigger: Callable[[str], bool]

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_READY = "ready"

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        on_command: CommandCallable | None = None,
    ) -> None:
        self.config = config
        self.on_command = on_command
        self.muted = False
        self.queue: asyncio.Queue[QueuedPublish] = asyncio.Queue(maxsize=config.mqtt_queue_limit)
        self.dropped = 0
        # Taken off the queue but not yet acknowledged by the broker.
        self._inflight: QueuedPublish | None = None

        self.machine = Machine(
            model=self,
            states=[self.STATE_DISCONNECTED, self.STATE_CONNECTING, self.STATE_READY],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition("connect", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_READY)
        self.machine.add_transition("disconnect", "*", self.STATE_DISCONNECTED)

    @property
    def command_topic(self) -> str:
        return topics.command_topic(self.config.mqtt_topic, self.config.mqtt_command_topic)

    def set_muted(self, muted: bool) -> None:
        self.muted = muted

    # --- publish capability ---------------------------------------------

    def publish(self, records: Mapping[str, Mapping[str, Any] | None]) -> int:
        """Queue every non-null topic record; returns how many were queued."""
        messages = build_record_publishes(self.config.mqtt_topic, records)
        for message in messages:
            self.enqueue(message)
        return len(messages)

    def enqueue(self, message: QueuedPublish) -> None:
        try:
            self.queue.put_nowait(message)
            return
        except asyncio.QueueFull:
            pass
        try:
            dropped = self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1
            logger.warning("MQTT queue full; dropped oldest message for %s", dropped.topic_name)
        except asyncio.QueueEmpty:
            pass
        self.queue.put_nowait(message)

    async def flush(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for queued messages to go out."""
        try:
            await asyncio.wait_for(self.queue.join(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("MQTT flush timed out with %d message(s) pending.", self.queue.qsize() + (self._inflight is not None))
            return False

    # --- connection -----------------------------------------------------

    def _log_retry_attempt(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        level = logging.DEBUG if self.muted else logging.WARNING
        logger.log(
            level,
            "Broker unreachable (%s); reconnecting in %.2fs",
            exc,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    async def run(self) -> None:
        tls_context = configure_tls_context(self.config)
        delay = max(0.1, self.config.mqtt_reconnect_delay)

        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=delay, max=60) + tenacity.wait_random(0, 1),
            retry=tenacity.retry_if_exception_type(_RETRYABLE),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )

        try:
            async for attempt in retryer:
                with attempt:
                    try:
                        await self._connect_session(tls_context)
                    except ExceptionGroup as exc_group:
                        # Unwrap task group failures so tenacity sees the broker error.
                        matched, rest = exc_group.split(_RETRYABLE)
                        if matched is None or rest is not None:
                            raise
                        raise _first_leaf(matched) from exc_group
                    finally:
                        self.trigger("disconnect")
        except asyncio.CancelledError:
            logger.info("MQTT transport stopping.")
            self.trigger("disconnect")
            raise

    async def _connect_session(self, tls_context: ssl.SSLContext | None) -> None:
        self.trigger("connect")
        async with aiomqtt.Client(
            hostname=self.config.mqtt_host,
            port=self.config.mqtt_port,
            username=self.config.mqtt_user or None,
            password=self.config.mqtt_pass or None,
            tls_context=tls_context,
            logger=logging.getLogger("sensorgate.mqtt.client"),
        ) as client:
            self.trigger("connected")
            logger.info("Connected to MQTT broker %s:%d.", self.config.mqtt_host, self.config.mqtt_port)

            if self.on_command is not None:
                await client.subscribe(self.command_topic)
                logger.info("Subscribed to %s.", self.command_topic)

            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(self._publisher_loop(client))
                if self.on_command is not None:
                    task_group.create_task(self._subscriber_loop(client))

    async def _publisher_loop(self, client: aiomqtt.Client) -> None:
        while True:
            if self._inflight is None:
                self._inflight = await self.queue.get()
            message = self._inflight
            if logger.isEnabledFor(logging.DEBUG):
                log_hexdump(logger, logging.DEBUG, f"MQTT PUB > {message.topic_name}", message.payload)
            try:
                await client.publish(
                    message.topic_name,
                    message.payload,
                    qos=message.qos,
                    retain=message.retain,
                )
            except aiomqtt.MqttError as exc:
                logger.warning("MQTT publish failed (%s); retrying after reconnect.", exc)
                raise
            self._inflight = None
            self.queue.task_done()

    async def _subscriber_loop(self, client: aiomqtt.Client) -> None:
        assert self.on_command is not None
        async for message in client.messages:
            payload = message.payload
            if isinstance(payload, (bytes, bytearray)):
                text = bytes(payload).decode("utf-8", errors="replace")
            elif payload is None:
                continue
            else:
                text = str(payload)
            logger.info("Command from %s: %r", message.topic, text)
            try:
                await self.on_command(text.rstrip("\r\n"))
            except ValueError as exc:
                logger.error("Rejected bus command %r: %s", text, exc)


__all__ = ["MqttPublisher", "configure_tls_context"]
