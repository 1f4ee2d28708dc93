"""Handshake error taxonomy and structured failure causes.

Every exception raised while talking to one peer derives from
:class:`HandshakeError` and names the :class:`FailureCause` it maps to.
The state machine catches them at its boundary and turns them into a
``Failed`` outcome, so none of them ever reach the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class FailureCause(StrEnum):
    """Why a handshake attempt failed."""

    CONNECT = "connect"
    IO = "io"
    DECODE = "decode"
    UNEXPECTED_COMMAND = "unexpected_command"
    SELF_CONNECTION = "self_connection"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


# ── Exceptions ─────────────────────────────────────────────────────


class HandshakeError(Exception):
    """Base class for per-peer handshake failures."""

    cause: FailureCause = FailureCause.INTERNAL


class ConnectError(HandshakeError):
    """The TCP connection could not be established."""

    cause = FailureCause.CONNECT


class PeerIOError(HandshakeError):
    """The stream closed or failed while reading or writing."""

    cause = FailureCause.IO


class DecodeError(HandshakeError):
    """Bytes received from the peer are not a valid message."""

    cause = FailureCause.DECODE


class BadMagicError(DecodeError):
    """Header magic does not match the expected network."""


class ChecksumMismatchError(DecodeError):
    """Recomputed payload checksum differs from the header's."""


class TruncatedError(DecodeError):
    """Fewer bytes are available than a length field declares."""


class PayloadTooBigError(DecodeError):
    """Declared payload length exceeds ``MAX_PAYLOAD_SIZE``."""


class MalformedPayloadError(DecodeError):
    """Payload bytes do not match the layout of their command."""


class ProtocolOrderError(HandshakeError):
    """The peer's first message was not ``version``."""

    cause = FailureCause.UNEXPECTED_COMMAND

    def __init__(self, command: str) -> None:
        super().__init__(f"expected `version` but got `{command}`")
        self.command = command


class SelfConnectionError(HandshakeError):
    """The peer echoed our own version nonce (we dialed ourselves)."""

    cause = FailureCause.SELF_CONNECTION


class MessageError(ValueError):
    """A message cannot be built from the given fields."""


class NoAddressesResolvedError(Exception):
    """DNS seeding produced no address to attempt."""


# ── Cause catalog ──────────────────────────────────────────────────


@dataclass(frozen=True)
class CauseInfo:
    """Human-readable description of a failure cause."""

    code: str
    cause: FailureCause
    message: str
    resolution: str

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "cause": self.cause.value,
            "message": self.message,
            "resolution": self.resolution,
        }

    def format(self) -> str:
        return f"Error [{self.code}]: {self.message}\nResolution: {self.resolution}"


CAUSES: dict[FailureCause, CauseInfo] = {
    FailureCause.CONNECT: CauseInfo(
        code="HANDSHAKE_E001",
        cause=FailureCause.CONNECT,
        message="Connection error",
        resolution="Peer is offline or the port is filtered; check --port",
    ),
    FailureCause.IO: CauseInfo(
        code="HANDSHAKE_E002",
        cause=FailureCause.IO,
        message="Stream closed or failed mid-exchange",
        resolution="Peer dropped the connection; it may be overloaded",
    ),
    FailureCause.DECODE: CauseInfo(
        code="HANDSHAKE_E003",
        cause=FailureCause.DECODE,
        message="Malformed or truncated message",
        resolution="Peer speaks another network or a broken protocol; check --network",
    ),
    FailureCause.UNEXPECTED_COMMAND: CauseInfo(
        code="HANDSHAKE_E004",
        cause=FailureCause.UNEXPECTED_COMMAND,
        message="Unexpected command at version stage",
        resolution="Peer did not open with `version`; the handshake cannot proceed",
    ),
    FailureCause.SELF_CONNECTION: CauseInfo(
        code="HANDSHAKE_E005",
        cause=FailureCause.SELF_CONNECTION,
        message="Nonce conflict (connected to ourselves)",
        resolution="Remove this host's own address from the target list",
    ),
    FailureCause.TIMEOUT: CauseInfo(
        code="HANDSHAKE_E006",
        cause=FailureCause.TIMEOUT,
        message="Timed out",
        resolution="Increase --timeout or retry later",
    ),
    FailureCause.INTERNAL: CauseInfo(
        code="HANDSHAKE_E099",
        cause=FailureCause.INTERNAL,
        message="Internal error",
        resolution="Report a bug with the logged traceback",
    ),
}


def describe_cause(cause: FailureCause) -> str:
    """Return the short human-readable message for *cause*."""
    return CAUSES[cause].message
