"""Binary layouts of the link control frames.

Typed msgspec structs backed by construct schemas, one per frame shape.
"""

from __future__ import annotations

from typing import Any, ClassVar, Type, TypeVar

import msgspec
from construct import (  # type: ignore
    Const,
    Construct,
    ConstructError,
    GreedyBytes,
    Int8ub,
    Int16ul,
    Struct as BinStruct,
)

from ..const import HEARTBEAT_ACK_BODY, HEARTBEAT_ADDRESS, REPLY_KIND_IDENTIFY, REPLY_MARKER

T = TypeVar("T", bound="BaseStruct")


class BaseStruct(msgspec.Struct, frozen=True):
    """Base class for hybrid msgspec/construct structures."""

    _SCHEMA: ClassVar[Construct[Any]]

    @classmethod
    def decode(cls: Type[T], data: bytes | bytearray | memoryview) -> T:
        if not data:
            raise ValueError("Empty payload")
        container: Any = cls._SCHEMA.parse(bytes(data))
        return cls(**{name: container[name] for name in cls.__struct_fields__})

    @classmethod
    def try_decode(cls: Type[T], data: bytes | bytearray | memoryview) -> T | None:
        try:
            return cls.decode(data)
        except (ConstructError, ValueError):
            return None

    def encode(self) -> bytes:
        return self._SCHEMA.build(msgspec.structs.asdict(self))


class HandshakeReply(BaseStruct, frozen=True):
    """``FE FE 01`` followed by the NUL padded identity of the peer."""

    identity: bytes

    _SCHEMA = BinStruct(
        "marker" / Const(REPLY_MARKER),
        "kind" / Const(REPLY_KIND_IDENTIFY, Int8ub),
        "identity" / GreedyBytes,
    )

    @property
    def identity_text(self) -> str:
        return self.identity.rstrip(b"\x00").decode("ascii", errors="replace")


class AddressedFrame(BaseStruct, frozen=True):
    """Relay-mode frame: little-endian sender address, then the payload."""

    address: int
    body: bytes

    _SCHEMA = BinStruct(
        "address" / Int16ul,
        "body" / GreedyBytes,
    )

    @property
    def address_hex(self) -> str:
        return f"{self.address:04x}"

    @property
    def is_heartbeat_ack(self) -> bool:
        return self.address_hex == HEARTBEAT_ADDRESS and self.body.replace(b"\x00", b"") == HEARTBEAT_ACK_BODY


__all__ = ["AddressedFrame", "BaseStruct", "HandshakeReply"]
