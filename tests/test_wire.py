"""Tests for wire primitives — CompactSize integers and var strings."""

from __future__ import annotations

import pytest

from bitcoin_handshake.errors import TruncatedError
from bitcoin_handshake.p2p.wire import (
    PayloadReader,
    decode_varint,
    decode_varstr,
    encode_varint,
    encode_varstr,
)


class TestVarint:
    """CompactSize encoding at every width boundary."""

    @pytest.mark.parametrize(
        ("value", "encoded"),
        [
            (0, b"\x00"),
            (252, b"\xfc"),
            (253, b"\xfd\xfd\x00"),
            (0xFFFF, b"\xfd\xff\xff"),
            (0x10000, b"\xfe\x00\x00\x01\x00"),
            (0xFFFFFFFF, b"\xfe\xff\xff\xff\xff"),
            (0x100000000, b"\xff\x00\x00\x00\x00\x01\x00\x00\x00"),
            (2**64 - 1, b"\xff" + b"\xff" * 8),
        ],
    )
    def test_encode_boundaries(self, value: int, encoded: bytes) -> None:
        assert encode_varint(value) == encoded
        reader = PayloadReader(encoded)
        assert decode_varint(reader) == value
        assert reader.remaining == 0

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            encode_varint(-1)

    def test_too_wide_rejected(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            encode_varint(2**64)

    def test_truncated_width(self) -> None:
        reader = PayloadReader(b"\xfe\x01\x02")
        with pytest.raises(TruncatedError):
            decode_varint(reader)

    def test_empty_buffer(self) -> None:
        with pytest.raises(TruncatedError):
            decode_varint(PayloadReader(b""))

    def test_decode_leaves_trailing_bytes(self) -> None:
        reader = PayloadReader(b"\x05rest")
        assert decode_varint(reader) == 5
        assert reader.remaining == 4


class TestVarstr:
    """Length-prefixed byte strings."""

    def test_user_agent(self) -> None:
        encoded = encode_varstr(b"/Satoshi:27.0.0/")
        assert encoded[0] == 16
        assert decode_varstr(PayloadReader(encoded)) == b"/Satoshi:27.0.0/"

    def test_empty(self) -> None:
        assert encode_varstr(b"") == b"\x00"
        assert decode_varstr(PayloadReader(b"\x00")) == b""

    def test_long_string_uses_wide_prefix(self) -> None:
        data = b"a" * 300
        encoded = encode_varstr(data)
        assert encoded[:3] == b"\xfd\x2c\x01"
        assert decode_varstr(PayloadReader(encoded)) == data

    def test_non_utf8_kept_as_bytes(self) -> None:
        encoded = encode_varstr(b"\xff\xfe")
        assert decode_varstr(PayloadReader(encoded)) == b"\xff\xfe"

    def test_declared_length_exceeds_data(self) -> None:
        with pytest.raises(TruncatedError):
            decode_varstr(PayloadReader(b"\x0aabc"))


class TestPayloadReader:
    """Bounds-checked sequential reads."""

    def test_unpack_little_endian(self) -> None:
        reader = PayloadReader(b"\x01\x00\x00\x00")
        assert reader.unpack("<I") == 1

    def test_read_past_end(self) -> None:
        reader = PayloadReader(b"ab")
        assert reader.read(1) == b"a"
        with pytest.raises(TruncatedError, match="need 2 bytes, 1 available"):
            reader.read(2)

    def test_read_varstr_method(self) -> None:
        reader = PayloadReader(encode_varstr(b"hi") + b"\x07")
        assert reader.read_varstr() == b"hi"
        assert reader.read_varint() == 7
