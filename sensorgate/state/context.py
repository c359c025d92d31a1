"""Connection state containers for the sensor gateway."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field


@dataclass(slots=True)
class HeartbeatState:
    """Last heartbeat acknowledgement, shared across connection attempts."""

    last_ack: float = field(default_factory=time.monotonic)

    def reset(self, now: float | None = None) -> None:
        self.last_ack = time.monotonic() if now is None else now

    def gap(self, now: float | None = None) -> float:
        current = time.monotonic() if now is None else now
        return current - self.last_ack


@dataclass(slots=True)
class ConnectionContext:
    """Everything owned by a single connection attempt.

    Built fresh for every attempt; only ``heartbeat`` is handed over from
    the previous one.
    """

    port: str
    heartbeat: HeartbeatState
    writer: asyncio.StreamWriter | None = None
    identity: str | None = None
    frames_received: int = 0
    frames_dropped: int = 0
    decode_errors: int = 0
    write_errors: int = 0

    @property
    def is_open(self) -> bool:
        return self.writer is not None and not self.writer.is_closing()

    def record_frame(self) -> None:
        self.frames_received += 1

    def record_dropped_frame(self) -> None:
        self.frames_dropped += 1

    def record_decode_error(self) -> None:
        self.decode_errors += 1

    def record_write_error(self) -> None:
        self.write_errors += 1


__all__ = ["ConnectionContext", "HeartbeatState"]
