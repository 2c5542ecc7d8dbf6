"""Canonical binary form for ``iv`` and ``ciphertext`` fields.

Transports hand these fields over in several shapes: base64 text (the wire
form this service emits), a plain list of byte values, a buffer object
serialized as ``{"type": "Buffer", "data": [...]}``, or raw bytes. Every
shape is classified into one of a closed set of variants and decoded to
``bytes`` before any decryption or equality check touches it.
"""
from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from room_relay.application.exceptions import CodecError


@dataclass(frozen=True, slots=True)
class Base64Text:
    value: str

    def decode(self) -> bytes:
        text = "".join(self.value.split())
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CodecError(f"invalid base64 text: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ByteArray:
    values: Sequence[Any]

    def decode(self) -> bytes:
        return _bytes_from_ints(self.values)


@dataclass(frozen=True, slots=True)
class TaggedBuffer:
    data: Sequence[Any]

    def decode(self) -> bytes:
        return _bytes_from_ints(self.data)


@dataclass(frozen=True, slots=True)
class RawBinary:
    value: bytes

    def decode(self) -> bytes:
        return self.value


BinaryShape = Union[Base64Text, ByteArray, TaggedBuffer, RawBinary]


def classify(value: Any) -> BinaryShape:
    """Map a transport value onto one of the known binary shapes."""
    if isinstance(value, bytes):
        return RawBinary(value)
    if isinstance(value, (bytearray, memoryview)):
        return RawBinary(bytes(value))
    if isinstance(value, str):
        return Base64Text(value)
    if isinstance(value, Mapping):
        data = value.get("data")
        tag = value.get("type", "Buffer")
        if tag == "Buffer" and isinstance(data, list):
            return TaggedBuffer(data)
        raise CodecError(f"unrecognized buffer object with keys {sorted(value)}")
    if isinstance(value, (list, tuple)):
        return ByteArray(value)
    raise CodecError(f"unrecognized binary shape: {type(value).__name__}")


def normalize(value: Any) -> bytes:
    """Decode any accepted shape to ``bytes``. Bytes pass through unchanged."""
    return classify(value).decode()


def normalize_optional(value: Any) -> bytes | None:
    if value is None:
        return None
    return normalize(value)


def to_wire(value: bytes) -> str:
    """Base64 text, the form used for every outbound payload."""
    return base64.b64encode(value).decode("ascii")


def _bytes_from_ints(values: Sequence[Any]) -> bytes:
    for v in values:
        # bool is an int subclass but never a byte value on the wire
        if isinstance(v, bool) or not isinstance(v, int) or not 0 <= v <= 255:
            raise CodecError(f"byte value out of range: {v!r}")
    return bytes(values)
