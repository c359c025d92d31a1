"""Configuration loading and logging setup for the sensor gateway."""

from .settings import FieldSpec, RuntimeConfig, load_runtime_config

__all__ = ["FieldSpec", "RuntimeConfig", "load_runtime_config"]
