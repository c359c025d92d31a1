"""MQTT message helpers used by the gateway runtime."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import msgspec

from ..protocol.topics import record_topic


class QueuedPublish(msgspec.Struct, frozen=True):
    """MQTT publish packet waiting in the outbound queue."""

    topic_name: str
    payload: bytes
    qos: int = 0
    retain: bool = False


def build_record_publishes(
    prefix: str,
    records: Mapping[str, Mapping[str, Any] | None],
    *,
    qos: int = 0,
) -> list[QueuedPublish]:
    """One JSON publish per topic record; ``None`` records mean no update."""
    return [
        QueuedPublish(
            topic_name=record_topic(prefix, topic),
            payload=msgspec.json.encode(record),
            qos=qos,
        )
        for topic, record in records.items()
        if record is not None
    ]


__all__ = ["QueuedPublish", "build_record_publishes"]
