"""MQTT topic names used by the gateway.

Decoded records go to ``<prefix>/<topic>``; operator commands arrive on
``<prefix>/<command_topic>``. Publishing to a wildcard is never valid, so
segments containing ``+`` or ``#`` are rejected.
"""

from __future__ import annotations

_WILDCARDS = frozenset("+#")


def split_topic(path: str) -> tuple[str, ...]:
    return tuple(segment for segment in path.split("/") if segment)


def topic_path(prefix: str, *segments: str) -> str:
    parts = [*split_topic(prefix)]
    for segment in segments:
        parts.extend(split_topic(segment))
    if len(parts) <= len(split_topic(prefix)):
        raise ValueError("topic segment cannot be empty")
    if any(_WILDCARDS.intersection(part) for part in parts):
        raise ValueError(f"wildcards are not allowed in {'/'.join(parts)!r}")
    return "/".join(parts)


def record_topic(prefix: str, topic: str) -> str:
    """e.g. sensorgate/alerts"""
    return topic_path(prefix, topic)


def command_topic(prefix: str, name: str) -> str:
    """e.g. sensorgate/command"""
    return topic_path(prefix, name)


__all__ = ["command_topic", "record_topic", "split_topic", "topic_path"]
