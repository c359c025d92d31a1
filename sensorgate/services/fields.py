"""Field-type table: wire short names, decoders and destination topics.

Every payload token ``short:value`` is resolved against this table. A
decoder receives the raw value (``None`` for a bare keyword) and returns the
value to record, an awaitable resolving to it, or a ``SendResponse`` asking
for text to be sent back over the link instead of recording anything.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final, TypeAlias

import msgspec

from ..config.settings import FieldSpec, RuntimeConfig
from ..util import closest_match

logger = logging.getLogger("sensorgate.fields")

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "yes", "on", "true", "up"})
_FALSE_STRINGS: Final[frozenset[str]] = frozenset({"0", "no", "off", "false", "down"})


class SendResponse(msgspec.Struct, frozen=True):
    """Decoder control value: transmit *text* to the sender, record nothing."""

    text: str


DecodedValue: TypeAlias = Any
Decoder: TypeAlias = Callable[[str | None], "DecodedValue | SendResponse | Awaitable[DecodedValue | SendResponse]"]


class FieldDecodeError(ValueError):
    """Raised by decoders for values they cannot interpret."""


def decode_text(value: str | None) -> str | None:
    return value


def decode_int(value: str | None) -> int:
    if value is None:
        raise FieldDecodeError("missing integer value")
    try:
        return int(value, 0)
    except ValueError as exc:
        raise FieldDecodeError(f"not an integer: {value!r}") from exc


def decode_float(value: str | None) -> float:
    if value is None:
        raise FieldDecodeError("missing numeric value")
    try:
        return float(value)
    except ValueError as exc:
        raise FieldDecodeError(f"not a number: {value!r}") from exc


def decode_flag(value: str | None) -> bool:
    """A bare keyword is true; otherwise parse a boolean spelling."""
    if value is None:
        return True
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise FieldDecodeError(f"not a boolean: {value!r}")


def decode_ping(_value: str | None) -> SendResponse:
    return SendResponse("pong")


BUILTIN_DECODERS: Final[Mapping[str, Decoder]] = MappingProxyType(
    {
        "text": decode_text,
        "int": decode_int,
        "float": decode_float,
        "flag": decode_flag,
        "ping": decode_ping,
    }
)


def resolve_decoder(name: str) -> Decoder:
    """Return a built-in decoder or import ``package.module:callable``."""
    if name in BUILTIN_DECODERS:
        return BUILTIN_DECODERS[name]
    module_name, sep, attr = name.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"unknown decoder {name!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ValueError(f"cannot import decoder module {module_name!r}: {exc}") from exc
    decoder = getattr(module, attr, None)
    if not callable(decoder):
        raise ValueError(f"decoder {name!r} is not callable")
    return decoder


@dataclass(frozen=True, slots=True)
class FieldType:
    short_name: str
    name_in_db: str
    topics: frozenset[str]
    decode: Decoder
    force_send: bool = True

    @classmethod
    def from_spec(cls, spec: FieldSpec) -> FieldType:
        return cls(
            short_name=spec.short_name,
            name_in_db=spec.name_in_db,
            topics=frozenset(spec.topics),
            decode=resolve_decoder(spec.decoder),
            force_send=spec.force_send,
        )


class FieldRegistry:
    """Lookup table from short name to field descriptor, built once."""

    def __init__(self, fields: Iterable[FieldType], topics: Iterable[str]) -> None:
        self.topics: tuple[str, ...] = tuple(topics)
        known_topics = set(self.topics)
        table: dict[str, FieldType] = {}
        for field_type in fields:
            if field_type.short_name in table:
                raise ValueError(f"duplicate field short_name {field_type.short_name!r}")
            stray = field_type.topics - known_topics
            if stray:
                raise ValueError(
                    f"field {field_type.short_name!r} targets unconfigured topic(s): {', '.join(sorted(stray))}"
                )
            table[field_type.short_name] = field_type
        self._table: Mapping[str, FieldType] = MappingProxyType(table)

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> FieldRegistry:
        registry = cls((FieldType.from_spec(spec) for spec in config.fields), config.topics)
        logger.debug("Loaded %d field types for %d topics", len(registry), len(registry.topics))
        return registry

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, short_name: object) -> bool:
        return short_name in self._table

    def get(self, short_name: str) -> FieldType | None:
        return self._table.get(short_name)

    def suggest(self, label: str) -> str | None:
        return closest_match(label.lower(), self._table)


__all__ = [
    "BUILTIN_DECODERS",
    "DecodedValue",
    "Decoder",
    "FieldDecodeError",
    "FieldRegistry",
    "FieldType",
    "SendResponse",
    "resolve_decoder",
]
