"""Transport abstractions (serial, MQTT) for the sensor gateway."""

from .mqtt import MqttPublisher
from .serial import ConnectionSupervisor, SerialGateway

__all__ = ["ConnectionSupervisor", "MqttPublisher", "SerialGateway"]
