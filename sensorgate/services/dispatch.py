"""Decode & dispatch pipeline: payload frames to per-topic record sets."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

from ..protocol.encoder import OutboundMessage
from ..protocol.structures import AddressedFrame
from .fields import FieldRegistry, SendResponse

logger = logging.getLogger("sensorgate.dispatch")

TopicRecordSet: TypeAlias = dict[str, dict[str, Any] | None]
SendMessageCallable = Callable[[OutboundMessage], Awaitable[bool]]
PublishCallable = Callable[[TopicRecordSet], None]
HeartbeatAckCallable = Callable[[], None]


class DecodeError(ValueError):
    """A payload could not be turned into a record set."""


class UnknownFieldError(DecodeError):
    def __init__(self, label: str, suggestion: str | None) -> None:
        self.label = label
        self.suggestion = suggestion
        message = f'Unknown field label "{label}".'
        if suggestion is not None:
            message += f' Did you mean "{suggestion}"?'
        super().__init__(message)


class FieldValueError(DecodeError):
    def __init__(self, label: str, reason: str) -> None:
        self.label = label
        self.reason = reason
        super().__init__(f'Cannot decode field "{label}": {reason}')


def split_tokens(payload: str) -> list[tuple[str, str | None]]:
    """Split ``a:1,b:2,c`` into ``[("a", "1"), ("b", "2"), ("c", None)]``.

    NUL padding is removed from both halves and surrounding whitespace is
    trimmed. Tokens that are empty after trimming are skipped.
    """
    pairs: list[tuple[str, str | None]] = []
    for token in payload.split(","):
        name, sep, value = token.partition(":")
        name = name.replace("\x00", "").strip()
        if not name and not sep:
            continue
        pairs.append((name, value.replace("\x00", "").strip() if sep else None))
    return pairs


class PayloadDecoder:
    """Turn payload frames into topic record sets and hand them to publish.

    Fields are decoded one at a time in payload order; a decoder that
    writes back to the link finishes before the next field is looked at.
    The first unknown label aborts the whole message.
    """

    def __init__(
        self,
        registry: FieldRegistry,
        *,
        relay: bool,
        send_message: SendMessageCallable,
        publish: PublishCallable,
        on_heartbeat_ack: HeartbeatAckCallable,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self._send_message = send_message
        self._publish = publish
        self._on_heartbeat_ack = on_heartbeat_ack

    async def handle_frame(self, frame: bytes) -> TopicRecordSet:
        """Decode *frame* and publish the result; heartbeats publish nothing."""
        records = await self.decode(frame)
        if records:
            self._publish(records)
        return records

    async def decode(self, frame: bytes) -> TopicRecordSet:
        address: str | None = None
        if self.relay:
            addressed = AddressedFrame.try_decode(frame)
            if addressed is None:
                raise DecodeError(f"Frame too short for a sender address ({len(frame)} bytes)")
            if addressed.is_heartbeat_ack:
                self._on_heartbeat_ack()
                return {}
            address = addressed.address_hex
            payload = f"id:{address}," + addressed.body.decode("utf-8", errors="replace")
        else:
            payload = frame.decode("utf-8", errors="replace")

        logger.info("> %s", payload.replace("\x00", "").strip())
        return await self.decode_payload(payload, address)

    async def decode_payload(self, payload: str, address: str | None = None) -> TopicRecordSet:
        records: TopicRecordSet = {}
        updated: set[str] = set()

        for label, raw_value in split_tokens(payload):
            field_type = self.registry.get(label)
            if field_type is None:
                raise UnknownFieldError(label, self.registry.suggest(label))

            try:
                value = field_type.decode(raw_value)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as exc:
                raise FieldValueError(label, str(exc)) from exc

            if isinstance(value, SendResponse):
                await self._send_message(OutboundMessage(text=value.text, address=address))
                continue

            for topic in sorted(field_type.topics):
                record = records.get(topic)
                if record is None:
                    record = records[topic] = {}
                record[field_type.name_in_db] = value
                if field_type.force_send:
                    updated.add(topic)

        for topic in self.registry.topics:
            if topic not in updated:
                records[topic] = None
        return records


__all__ = [
    "DecodeError",
    "FieldValueError",
    "PayloadDecoder",
    "TopicRecordSet",
    "UnknownFieldError",
    "split_tokens",
]
