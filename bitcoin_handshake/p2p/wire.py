"""Primitive field encodings of the Bitcoin wire protocol.

All multi-byte integers are little-endian except the port inside a
network address, which is big-endian.  Variable-length integers
("CompactSize") use a one-byte tag::

    value < 0xFD          [value]
    value <= 0xFFFF       [0xFD][uint16]
    value <= 0xFFFFFFFF   [0xFE][uint32]
    otherwise             [0xFF][uint64]
"""

from __future__ import annotations

import struct

from bitcoin_handshake.errors import TruncatedError

VARINT_UINT16 = 0xFD
VARINT_UINT32 = 0xFE
VARINT_UINT64 = 0xFF

_UINT64_MAX = 0xFFFFFFFFFFFFFFFF

_VARINT_WIDTHS: dict[int, tuple[str, int]] = {
    VARINT_UINT16: ("<H", 2),
    VARINT_UINT32: ("<I", 4),
    VARINT_UINT64: ("<Q", 8),
}


class PayloadReader:
    """Sequential reader over a byte buffer.

    Every read is bounds-checked; asking for more bytes than remain
    raises :class:`TruncatedError` instead of returning a short slice.
    """

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read(self, size: int) -> bytes:
        if size < 0 or size > self.remaining:
            raise TruncatedError(f"need {size} bytes, {self.remaining} available")
        chunk = bytes(self._data[self._offset : self._offset + size])
        self._offset += size
        return chunk

    def unpack(self, fmt: str) -> int:
        """Read a single struct-packed value described by *fmt*."""
        (value,) = struct.unpack(fmt, self.read(struct.calcsize(fmt)))
        return value  # type: ignore[no-any-return]

    def read_varint(self) -> int:
        return decode_varint(self)

    def read_varstr(self) -> bytes:
        return decode_varstr(self)


def encode_varint(value: int) -> bytes:
    """Encode *value* as a CompactSize integer.

    Raises:
        ValueError: If *value* is negative or wider than 64 bits.
    """
    if value < 0 or value > _UINT64_MAX:
        raise ValueError(f"varint out of range: {value}")
    if value < VARINT_UINT16:
        return bytes([value])
    if value <= 0xFFFF:
        return bytes([VARINT_UINT16]) + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return bytes([VARINT_UINT32]) + struct.pack("<I", value)
    return bytes([VARINT_UINT64]) + struct.pack("<Q", value)


def decode_varint(reader: PayloadReader) -> int:
    """Decode a CompactSize integer from *reader*.

    Raises:
        TruncatedError: If the tag declares more bytes than remain.
    """
    tag = reader.read(1)[0]
    if tag < VARINT_UINT16:
        return tag
    fmt, _ = _VARINT_WIDTHS[tag]
    return reader.unpack(fmt)


def encode_varstr(data: bytes) -> bytes:
    """Encode *data* as a varint length followed by the raw bytes."""
    return encode_varint(len(data)) + data


def decode_varstr(reader: PayloadReader) -> bytes:
    """Decode a varint-prefixed byte string.

    The content is returned as opaque bytes; callers that need text
    decode it themselves.
    """
    length = decode_varint(reader)
    return reader.read(length)
