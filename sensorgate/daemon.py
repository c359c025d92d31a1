#!/usr/bin/env python3
"""Async orchestrator for the sensor gateway.

Architecture:
    main() -> GatewayDaemon -> supervised tasks
        ├── serial-link (SerialGateway: discovery -> ConnectionSupervisor)
        ├── mqtt-link (MqttPublisher)
        └── console (stdin -> ConsoleHandler), optional

SIGINT/SIGTERM close the serial link, give queued publishes a bounded time
to reach the broker and then cancel everything.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import NoReturn

import uvloop

from sensorgate.config.logging import configure_logging
from sensorgate.config.settings import RuntimeConfig, load_runtime_config
from sensorgate.const import DEFAULT_SHUTDOWN_FLUSH_TIMEOUT
from sensorgate.services.console import ConsoleHandler, read_console
from sensorgate.services.discovery import PortFinder
from sensorgate.services.fields import FieldRegistry
from sensorgate.services.task_supervisor import SupervisedTaskSpec, TaskHealth, supervise_task
from sensorgate.transport.mqtt import MqttPublisher
from sensorgate.transport.serial import SerialGateway

logger = logging.getLogger("sensorgate")


class GatewayDaemon:
    """Wires the serial gateway, the MQTT publisher and the console."""

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config
        self.registry = FieldRegistry.from_config(config)
        self.publisher = MqttPublisher(config, on_command=self.handle_bus_command)
        self.discovery = PortFinder(config)
        self.gateway = SerialGateway(
            config,
            registry=self.registry,
            discovery=self.discovery,
            publish=self.publisher.publish,
        )
        self.console = ConsoleHandler(
            config,
            send_message=self.gateway.send_message,
            reconnect=self.gateway.reconnect,
            set_muted=self.publisher.set_muted,
        )
        self.health: dict[str, TaskHealth] = {}
        self._stop: asyncio.Event | None = None

    async def handle_bus_command(self, text: str) -> None:
        await self.console.handle_line(text, allow_commands=False)

    async def _run_console(self) -> None:
        await read_console(self.console)

    def _setup_supervision(self) -> list[SupervisedTaskSpec]:
        specs = [
            SupervisedTaskSpec(name="serial-link", factory=self.gateway.run),
            SupervisedTaskSpec(name="mqtt-link", factory=self.publisher.run),
        ]
        if self.config.console_enabled:
            specs.append(SupervisedTaskSpec(name="console", factory=self._run_console, max_restarts=3, essential=False))
        return specs

    def request_stop(self, reason: str) -> None:
        logger.info("Gateway encountered %s. Exiting.", reason)
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s unavailable on this platform", sig.name)

    async def run(self) -> None:
        self._stop = asyncio.Event()
        self._install_signal_handlers(asyncio.get_running_loop())

        tasks: list[asyncio.Task[None]] = []
        essential: set[asyncio.Task[None]] = set()
        for spec in self._setup_supervision():
            health = self.health.setdefault(spec.name, TaskHealth(spec.name))
            task = asyncio.create_task(supervise_task(spec, health=health), name=spec.name)
            tasks.append(task)
            if spec.essential:
                essential.add(task)
        stop_task = asyncio.create_task(self._stop.wait(), name="stop")
        try:
            # Console EOF (stdin on /dev/null under a service manager) is not a reason to exit.
            done, _ = await asyncio.wait({stop_task, *essential}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is not stop_task and not task.cancelled() and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
        finally:
            await self.shutdown(tasks + [stop_task])

    async def shutdown(self, tasks: list[asyncio.Task[None]]) -> None:
        self.gateway.close()
        if not await self.publisher.flush(DEFAULT_SHUTDOWN_FLUSH_TIMEOUT):
            logger.warning("Exiting with unpublished records.")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for health in self.health.values():
            if health.restarts:
                logger.warning("%s restarted %d time(s); last error: %s", health.name, health.restarts, health.last_error)
        logger.info("Sensor gateway stopped.")


def main() -> NoReturn:
    try:
        config = load_runtime_config()
    except (OSError, ValueError) as exc:
        logging.basicConfig()
        logger.critical("Startup aborted: %s", exc)
        sys.exit(1)
    configure_logging(config)

    logger.info(
        "Starting sensor gateway. Serial: %s@%d (%s, relay=%s) MQTT: %s:%d",
        config.serial_port,
        config.serial_baud,
        config.frame_mode,
        config.relay,
        config.mqtt_host,
        config.mqtt_port,
    )

    try:
        daemon = GatewayDaemon(config)
        uvloop.run(daemon.run())
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Gateway interrupted by user.")
        sys.exit(0)
    except ValueError as exc:
        logger.critical("Startup aborted due to configuration error: %s", exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during gateway execution: %s", exc, exc_info=True)
        sys.exit(1)
    except Exception as exc:
        logger.critical("Unhandled exception. Terminating: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
