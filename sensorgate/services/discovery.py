"""Serial port discovery with an exclusion list for silent candidates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from serial.tools import list_ports

from ..config.settings import RuntimeConfig

logger = logging.getLogger("sensorgate.discovery")

ListPortsCallable = Callable[[], Sequence[Any]]


class PortFinder:
    """Pick the next serial port to try.

    With ``serial_port`` set to ``auto`` the system ports are enumerated and
    those whose description or hardware id contains ``port_hint`` come
    first. Ports that failed the handshake are skipped until a handshake
    succeeds somewhere (``clear_exclusions``) or every candidate has been
    excluded.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        list_ports_: ListPortsCallable = list_ports.comports,
    ) -> None:
        self._config = config
        self._list_ports = list_ports_
        self._exclusions: set[str] = set()
        self.current: str | None = None

    @property
    def exclusions(self) -> frozenset[str]:
        return frozenset(self._exclusions)

    def candidates(self) -> list[str]:
        if self._config.serial_port != "auto":
            return [self._config.serial_port]

        hint = self._config.port_hint.lower()
        preferred: list[str] = []
        others: list[str] = []
        for port in self._list_ports():
            haystack = f"{port.description or ''} {port.hwid or ''}".lower()
            if hint and hint in haystack:
                preferred.append(port.device)
            else:
                others.append(port.device)
        return preferred + others

    async def find_port(self) -> str:
        """Wait until a usable candidate exists and return it."""
        announced = False
        while True:
            candidates = await asyncio.to_thread(self.candidates)
            available = [port for port in candidates if port not in self._exclusions]
            if candidates and not available:
                logger.warning("Every candidate port is excluded; clearing the exclusion list.")
                self._exclusions.clear()
                available = candidates
            if available:
                self.current = available[0]
                logger.info("Trying serial port %s", self.current)
                return self.current
            if not announced:
                logger.warning(
                    "No serial ports found; plug in the sensor unit. Rescanning every %.1fs.",
                    self._config.discovery_interval,
                )
                announced = True
            await asyncio.sleep(self._config.discovery_interval)

    def exclude_current_candidate(self) -> None:
        if self.current is None:
            return
        logger.info("Excluding %s from discovery.", self.current)
        self._exclusions.add(self.current)

    def clear_exclusions(self) -> None:
        if self._exclusions:
            logger.debug("Clearing %d excluded port(s).", len(self._exclusions))
        self._exclusions.clear()


__all__ = ["PortFinder"]
