"""Outbound encoder: logical messages to fixed-length link frames."""

from __future__ import annotations

import re

import msgspec

from ..const import ADDRESS_BYTES, BROADCAST_ADDRESS

_ADDRESS_RE = re.compile(r"^[0-9a-fA-F]{4}$")


class OutboundMessage(msgspec.Struct, frozen=True):
    """Text to transmit to the device.

    ``internal`` messages bypass address framing and carry raw text; they are
    used for control traffic and, off the relay side, for all user text.
    """

    text: str
    address: str | None = None
    internal: bool = False

    def __post_init__(self) -> None:
        if self.address is not None and not _ADDRESS_RE.match(self.address):
            raise ValueError(f"address must be 4 hex digits, got {self.address!r}")

    def describe(self) -> str:
        text = self.text.replace("\x00", "")
        if self.address is not None:
            return f"'{text}' to 0x{self.address.lower()}"
        return f"'{text}'"


def encode_outbound(message: OutboundMessage, *, length: int, relay: bool) -> bytes:
    """Build the NUL padded frame of exactly *length* bytes for *message*.

    On the relay side non-internal messages start with the 2-byte address
    (hex of the address string, broadcast ``ffff`` when unset). Text beyond
    the frame capacity is truncated.
    """
    text = message.text.encode("ascii", errors="replace")
    if relay and not message.internal:
        address = bytes.fromhex(message.address or BROADCAST_ADDRESS)
        body = address[:ADDRESS_BYTES] + text
    else:
        body = text
    return body[:length].ljust(length, b"\x00")


def frame_text(frame: bytes) -> str:
    """Render a raw frame as text with its trailing NUL padding removed."""
    return frame.rstrip(b"\x00").decode("ascii", errors="replace")


__all__ = ["OutboundMessage", "encode_outbound", "frame_text"]
