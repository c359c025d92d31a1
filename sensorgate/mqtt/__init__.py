"""MQTT message types for the sensor gateway."""

from .messages import QueuedPublish, build_record_publishes

__all__ = ["QueuedPublish", "build_record_publishes"]
