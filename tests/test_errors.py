"""Tests for bitcoin_handshake.errors — failure causes and the cause catalog."""

from __future__ import annotations

import pytest

from bitcoin_handshake.errors import (
    CAUSES,
    BadMagicError,
    ChecksumMismatchError,
    ConnectError,
    DecodeError,
    FailureCause,
    HandshakeError,
    MalformedPayloadError,
    PayloadTooBigError,
    PeerIOError,
    ProtocolOrderError,
    SelfConnectionError,
    TruncatedError,
    describe_cause,
)


class TestFailureCause:
    def test_enum_values(self) -> None:
        assert FailureCause.CONNECT == "connect"
        assert FailureCause.UNEXPECTED_COMMAND == "unexpected_command"
        assert FailureCause.TIMEOUT == "timeout"

    def test_all_unique(self) -> None:
        values = [c.value for c in FailureCause]
        assert len(values) == len(set(values))


class TestExceptions:
    @pytest.mark.parametrize(
        ("exc_type", "cause"),
        [
            (ConnectError, FailureCause.CONNECT),
            (PeerIOError, FailureCause.IO),
            (DecodeError, FailureCause.DECODE),
            (BadMagicError, FailureCause.DECODE),
            (ChecksumMismatchError, FailureCause.DECODE),
            (TruncatedError, FailureCause.DECODE),
            (PayloadTooBigError, FailureCause.DECODE),
            (MalformedPayloadError, FailureCause.DECODE),
            (SelfConnectionError, FailureCause.SELF_CONNECTION),
        ],
    )
    def test_cause_mapping(
        self, exc_type: type[HandshakeError], cause: FailureCause
    ) -> None:
        assert exc_type("x").cause == cause
        assert issubclass(exc_type, HandshakeError)

    def test_protocol_order_error(self) -> None:
        err = ProtocolOrderError("inv")
        assert err.cause == FailureCause.UNEXPECTED_COMMAND
        assert err.command == "inv"
        assert str(err) == "expected `version` but got `inv`"


class TestCauseCatalog:
    def test_every_cause_described(self) -> None:
        assert set(CAUSES) == set(FailureCause)

    def test_codes_unique(self) -> None:
        codes = [info.code for info in CAUSES.values()]
        assert len(codes) == len(set(codes))
        assert all(c.startswith("HANDSHAKE_E") for c in codes)

    def test_describe(self) -> None:
        assert describe_cause(FailureCause.CONNECT) == "Connection error"
        assert describe_cause(FailureCause.TIMEOUT) == "Timed out"

    def test_to_dict(self) -> None:
        d = CAUSES[FailureCause.SELF_CONNECTION].to_dict()
        assert d["code"] == "HANDSHAKE_E005"
        assert d["cause"] == "self_connection"

    def test_format(self) -> None:
        s = CAUSES[FailureCause.IO].format()
        assert "HANDSHAKE_E002" in s
        assert "Resolution:" in s
