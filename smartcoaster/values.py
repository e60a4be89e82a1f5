"""Typed values kept in non-volatile memory and their byte encoding."""

from __future__ import annotations

import datetime as _dt
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

MAX_SERIALIZED_SIZE = 11

_NANOS_PER_MICROSECOND = 1000
_NANOS_PER_SECOND = 1_000_000_000
_DATETIME_NANO_BYTES = 3


class ValueKind(IntEnum):
    """Kind of a stored value; the number is its leading byte on the wire."""

    DEFAULT = 0
    FLOAT = 1
    SMALL_UINT = 2
    UINT = 3
    TIME = 4
    DATETIME = 5


class SerializationError(Exception):
    """A value could not be encoded or decoded."""


class BufferTooSmallError(SerializationError):
    """The buffer is too short for the value."""


class InvalidFormatError(SerializationError):
    """The bytes do not describe a valid value."""


def _to_f32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError as exc:
        raise ValueError(f"{value!r} is out of range for a 32-bit float") from exc


def _check_uint(value: Any, limit: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {type(value).__name__}")
    if not 0 <= value <= limit:
        raise ValueError(f"{value} is outside 0..{limit}")
    return value


@dataclass(frozen=True)
class StoredDataValue:
    """A value of one of the stored kinds.

    ``value`` is ``None`` for DEFAULT, a float for FLOAT (held at 32-bit
    precision), an int for SMALL_UINT and UINT, a ``datetime.time`` for TIME
    and a ``datetime.datetime`` for DATETIME.
    """

    kind: ValueKind = ValueKind.DEFAULT
    value: Any = None

    def __post_init__(self) -> None:
        kind = ValueKind(self.kind)
        object.__setattr__(self, "kind", kind)
        value = self.value
        if kind is ValueKind.DEFAULT:
            if value is not None:
                raise ValueError("a DEFAULT value carries no data")
        elif kind is ValueKind.FLOAT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"expected a number, got {type(value).__name__}")
            object.__setattr__(self, "value", _to_f32(float(value)))
        elif kind is ValueKind.SMALL_UINT:
            _check_uint(value, 0xFF)
        elif kind is ValueKind.UINT:
            _check_uint(value, 0xFFFF_FFFF)
        elif kind is ValueKind.TIME:
            if not isinstance(value, _dt.time):
                raise TypeError(f"expected datetime.time, got {type(value).__name__}")
        elif kind is ValueKind.DATETIME:
            if not isinstance(value, _dt.datetime):
                raise TypeError(
                    f"expected datetime.datetime, got {type(value).__name__}"
                )

    def _payload(self) -> bytes:
        kind, value = self.kind, self.value
        if kind is ValueKind.DEFAULT:
            return b""
        if kind is ValueKind.FLOAT:
            return struct.pack("<f", value)
        if kind is ValueKind.SMALL_UINT:
            return bytes([value])
        if kind is ValueKind.UINT:
            return struct.pack("<I", value)
        nanos = value.microsecond * _NANOS_PER_MICROSECOND
        if kind is ValueKind.TIME:
            return bytes([value.hour, value.minute, value.second]) + struct.pack(
                "<I", nanos
            )
        year = value.year
        return (
            bytes(
                [
                    year & 0xFF,
                    (year >> 8) & 0xFF,
                    value.month,
                    value.day,
                    value.hour,
                    value.minute,
                    value.second,
                ]
            )
            + nanos.to_bytes(4, "little")[:_DATETIME_NANO_BYTES]
        )

    def serialize(self) -> bytes:
        """Return the encoded bytes: the kind byte followed by the data."""
        return bytes([self.kind]) + self._payload()

    def serialize_into(self, buffer: bytearray | memoryview) -> int:
        """Write the encoding at the start of ``buffer`` and return its length."""
        data = self.serialize()
        if len(data) > len(buffer):
            raise BufferTooSmallError(
                f"need {len(data)} bytes, buffer holds {len(buffer)}"
            )
        buffer[: len(data)] = data
        return len(data)

    def serialized_size(self) -> int:
        """Number of bytes the encoding takes."""
        return len(self.serialize())

    @classmethod
    def deserialize(cls, buffer: bytes | bytearray | memoryview) -> StoredDataValue:
        """Decode a value from the start of ``buffer``; trailing bytes are ignored."""
        data = bytes(buffer)
        if len(data) <= 1:
            raise BufferTooSmallError("buffer holds no value data")
        kind_byte, body = data[0], data[1:]

        if kind_byte == ValueKind.DEFAULT:
            return cls()
        if kind_byte == ValueKind.FLOAT:
            if len(body) < 4:
                raise BufferTooSmallError("float needs 4 bytes")
            return cls(ValueKind.FLOAT, struct.unpack("<f", body[:4])[0])
        if kind_byte == ValueKind.SMALL_UINT:
            return cls(ValueKind.SMALL_UINT, body[0])
        if kind_byte == ValueKind.UINT:
            if len(body) < 4:
                raise BufferTooSmallError("integer needs 4 bytes")
            return cls(ValueKind.UINT, struct.unpack("<I", body[:4])[0])
        if kind_byte == ValueKind.TIME:
            if len(body) < 7:
                raise BufferTooSmallError("time needs 7 bytes")
            hour, minute, second = body[0], body[1], body[2]
            nanos = struct.unpack("<I", body[3:7])[0]
            return cls(ValueKind.TIME, _make_time(hour, minute, second, nanos))
        if kind_byte == ValueKind.DATETIME:
            if len(body) < 10:
                raise BufferTooSmallError("date and time need 10 bytes")
            year = body[0] | (body[1] << 8)
            nanos = int.from_bytes(body[7:10], "little")
            try:
                moment = _dt.datetime(
                    year,
                    body[2],
                    body[3],
                    body[4],
                    body[5],
                    body[6],
                    nanos // _NANOS_PER_MICROSECOND,
                )
            except ValueError as exc:
                raise InvalidFormatError(str(exc)) from exc
            return cls(ValueKind.DATETIME, moment)
        raise InvalidFormatError(f"unknown value kind {kind_byte}")


def _make_time(hour: int, minute: int, second: int, nanos: int) -> _dt.time:
    if nanos >= _NANOS_PER_SECOND:
        raise InvalidFormatError(f"nanosecond field {nanos} out of range")
    try:
        return _dt.time(hour, minute, second, nanos // _NANOS_PER_MICROSECOND)
    except ValueError as exc:
        raise InvalidFormatError(str(exc)) from exc