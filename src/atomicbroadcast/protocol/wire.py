"""Protocol-buffer compatible field encoding.

Messages are encoded field by field, in field-number order:

    [key varint][value]...

    key   = (field_number << 3) | wire_type
    value = varint                      (wire type 0: integers, enums)
          | length varint + bytes       (wire type 2: bytes, strings, messages)

Scalar fields holding their default value are omitted, except inside a
oneof, where presence is the whole point. Unknown fields are skipped on
decode so that newer peers can add fields without breaking older ones.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Tuple

from ..errors import DecodeError


VARINT = 0
FIXED64 = 1
LENGTH = 2
FIXED32 = 5

_UINT64_MASK = (1 << 64) - 1


def encode_varint(value: int) -> bytes:
    if value < 0:
        # Negative int32/int64 values are sign-extended to 64 bits, and
        # always occupy ten bytes on the wire.
        value &= _UINT64_MASK

    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def decode_varint(data: bytes, offset: int) -> Tuple[int, int]:
    """Return (value, new_offset) for the varint starting at *offset*."""

    result = 0
    shift = 0
    length = len(data)

    while True:
        if offset >= length:
            raise DecodeError("truncated varint")
        if shift >= 70:
            raise DecodeError("varint too long")

        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _UINT64_MASK, offset
        shift += 7


def to_int32(value: int) -> int:
    """Interpret a decoded varint as a signed 32-bit integer."""

    value &= 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return value


def iter_fields(data: bytes) -> Iterator[Tuple[int, int, object]]:
    """Yield (field_number, wire_type, value) for every field in *data*.

    Varint values are returned as int, length-delimited values as bytes.
    Fixed-width values are returned as raw bytes and are generally ignored
    by the message classes, none of which declare such fields.
    """

    if data is None:
        return

    data = bytes(data)
    offset = 0
    length = len(data)

    while offset < length:
        key, offset = decode_varint(data, offset)
        field = key >> 3
        wire_type = key & 0x07

        if field == 0:
            raise DecodeError("field number zero is invalid")

        if wire_type == VARINT:
            value, offset = decode_varint(data, offset)
        elif wire_type == LENGTH:
            size, offset = decode_varint(data, offset)
            end = offset + size
            if end > length:
                raise DecodeError(f"field {field}: truncated length-delimited value")
            value = data[offset:end]
            offset = end
        elif wire_type == FIXED64:
            end = offset + 8
            if end > length:
                raise DecodeError(f"field {field}: truncated fixed64 value")
            value = data[offset:end]
            offset = end
        elif wire_type == FIXED32:
            end = offset + 4
            if end > length:
                raise DecodeError(f"field {field}: truncated fixed32 value")
            value = data[offset:end]
            offset = end
        else:
            raise DecodeError(f"field {field}: unsupported wire type {wire_type}")

        yield field, wire_type, value


def expect(field: int, wire_type: int, expected: int) -> None:
    if wire_type != expected:
        raise DecodeError(
            f"field {field}: wire type {wire_type}, expected {expected}"
        )


class Writer:
    """Accumulate encoded fields for a single message."""

    def __init__(self):
        self._parts = []

    def _key(self, field: int, wire_type: int) -> None:
        self._parts.append(encode_varint((field << 3) | wire_type))

    def varint(self, field: int, value: Optional[int], *, present: bool = False) -> "Writer":
        if value is None:
            return self
        value = int(value)
        if value == 0 and not present:
            return self
        self._key(field, VARINT)
        self._parts.append(encode_varint(value))
        return self

    def blob(self, field: int, value: Optional[bytes], *, present: bool = False) -> "Writer":
        if value is None:
            return self
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not value and not present:
            return self
        self._key(field, LENGTH)
        self._parts.append(encode_varint(len(value)))
        self._parts.append(bytes(value))
        return self

    def string(self, field: int, value: Optional[str]) -> "Writer":
        return self.blob(field, value)

    def message(self, field: int, value) -> "Writer":
        """Embed another message; *value* is anything with marshal()."""

        if value is None:
            return self
        return self.blob(field, value.marshal(), present=True)

    def repeated_bytes(self, field: int, values: Iterable[bytes]) -> "Writer":
        for value in values:
            self.blob(field, value, present=True)
        return self

    def repeated_messages(self, field: int, values: Iterable) -> "Writer":
        for value in values:
            self.message(field, value)
        return self

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
