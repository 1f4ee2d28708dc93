"""Bitcoin P2P message codec.

Every message is a 24-byte header followed by its payload::

    [4  magic][12 command, NUL padded][4 length LE][4 checksum][payload]

The checksum is the first 4 bytes of ``sha256(sha256(payload))``.
Only the handshake pair (``version`` / ``verack``) is decoded into typed
payloads; every other command is carried through as
:class:`UnknownPayload` so a peer that sends unexpected messages is never
treated as corrupt.
"""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import InitVar, dataclass
from enum import IntFlag, StrEnum
from typing import TypeAlias

from bitcoin_handshake import PROTOCOL_VERSION
from bitcoin_handshake.errors import (
    BadMagicError,
    ChecksumMismatchError,
    MalformedPayloadError,
    MessageError,
    PayloadTooBigError,
    TruncatedError,
)
from bitcoin_handshake.hashing import checksum
from bitcoin_handshake.p2p.wire import PayloadReader, encode_varstr

# ─── Networks ──────────────────────────────────────────────


class Network(StrEnum):
    """Bitcoin networks this tool can probe."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


NETWORK_MAGIC: dict[Network, bytes] = {
    Network.MAINNET: b"\xf9\xbe\xb4\xd9",
    Network.TESTNET: b"\x0b\x11\x09\x07",
    Network.SIGNET: b"\x0a\x03\xcf\x40",
    Network.REGTEST: b"\xfa\xbf\xb5\xda",
}

NETWORK_PORTS: dict[Network, int] = {
    Network.MAINNET: 8333,
    Network.TESTNET: 18333,
    Network.SIGNET: 38333,
    Network.REGTEST: 18444,
}

MAGIC_MAINNET = NETWORK_MAGIC[Network.MAINNET]

# ─── Framing constants ─────────────────────────────────────

HEADER_SIZE = 24
COMMAND_SIZE = 12
MAX_PAYLOAD_SIZE = 32 * 1024 * 1024

COMMAND_VERSION = "version"
COMMAND_VERACK = "verack"

_HEADER_TAIL = struct.Struct("<I4s")  # length, checksum

# IPv4-mapped IPv6 prefix (::ffff:0:0/96)
_IPV4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"

IPAddress: TypeAlias = ipaddress.IPv4Address | ipaddress.IPv6Address


class ServiceFlags(IntFlag):
    """Service bits advertised in ``version`` and address records.

    Unknown bits received from peers are preserved.
    """

    UNNAMED = 0
    NODE_NETWORK = 1 << 0
    NODE_GETUTXO = 1 << 1
    NODE_BLOOM = 1 << 2
    NODE_WITNESS = 1 << 3
    NODE_XTHIN = 1 << 4
    NODE_COMPACT_FILTERS = 1 << 6
    NODE_NETWORK_LIMITED = 1 << 10


# ─── Payloads ──────────────────────────────────────────────


@dataclass(frozen=True)
class NetworkAddress:
    """Network address record embedded in ``version`` (and ``addr``).

    Inside ``version`` the record carries no timestamp; ``timestamp`` is
    ``None`` there.  IPv4 addresses travel as IPv4-mapped IPv6.
    """

    services: ServiceFlags
    ip: IPAddress
    port: int
    timestamp: int | None = None

    @classmethod
    def unspecified(cls) -> NetworkAddress:
        """Zero placeholder used for our own, unknown, external address."""
        return cls(
            services=ServiceFlags.UNNAMED,
            ip=ipaddress.IPv6Address(0),
            port=0,
        )

    @classmethod
    def from_host(
        cls, host: str, port: int, services: ServiceFlags = ServiceFlags.UNNAMED
    ) -> NetworkAddress:
        return cls(services=services, ip=ipaddress.ip_address(host), port=port)

    def to_bytes(self) -> bytes:
        parts: list[bytes] = []
        if self.timestamp is not None:
            parts.append(struct.pack("<I", self.timestamp))
        parts.append(struct.pack("<Q", int(self.services)))
        if isinstance(self.ip, ipaddress.IPv4Address):
            parts.append(_IPV4_MAPPED_PREFIX + self.ip.packed)
        else:
            parts.append(self.ip.packed)
        parts.append(struct.pack(">H", self.port))
        return b"".join(parts)

    @classmethod
    def read(
        cls, reader: PayloadReader, *, with_timestamp: bool = False
    ) -> NetworkAddress:
        timestamp = reader.unpack("<I") if with_timestamp else None
        services = ServiceFlags(reader.unpack("<Q"))
        raw_ip = reader.read(16)
        port = reader.unpack(">H")
        ip: IPAddress = ipaddress.IPv6Address(raw_ip)
        if raw_ip.startswith(_IPV4_MAPPED_PREFIX):
            ip = ipaddress.IPv4Address(raw_ip[12:])
        return cls(services=services, ip=ip, port=port, timestamp=timestamp)


@dataclass(frozen=True)
class VersionPayload:
    """Payload of the ``version`` message.

    ``user_agent`` is kept as the raw bytes received; use
    :attr:`user_agent_text` for display.  ``relay`` is ``None`` when the
    peer omitted the trailing flag (pre-BIP37 peers), and is then also
    omitted on encode.
    """

    version: int
    services: ServiceFlags
    timestamp: int
    addr_recv: NetworkAddress
    addr_from: NetworkAddress
    nonce: int
    user_agent: bytes = b""
    start_height: int = 0
    relay: bool | None = None

    @property
    def user_agent_text(self) -> str:
        return self.user_agent.decode("utf-8", errors="replace")

    def to_bytes(self) -> bytes:
        parts = [
            struct.pack("<i", self.version),
            struct.pack("<Q", int(self.services)),
            struct.pack("<q", self.timestamp),
            self.addr_recv.to_bytes(),
            self.addr_from.to_bytes(),
            struct.pack("<Q", self.nonce),
            encode_varstr(self.user_agent),
            struct.pack("<i", self.start_height),
        ]
        if self.relay is not None:
            parts.append(struct.pack("<?", self.relay))
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> VersionPayload:
        reader = PayloadReader(data)
        version = reader.unpack("<i")
        services = ServiceFlags(reader.unpack("<Q"))
        timestamp = reader.unpack("<q")
        addr_recv = NetworkAddress.read(reader)
        addr_from = NetworkAddress.read(reader)
        nonce = reader.unpack("<Q")
        user_agent = reader.read_varstr()
        start_height = reader.unpack("<i")
        relay = bool(reader.read(1)[0]) if reader.remaining else None
        return cls(
            version=version,
            services=services,
            timestamp=timestamp,
            addr_recv=addr_recv,
            addr_from=addr_from,
            nonce=nonce,
            user_agent=user_agent,
            start_height=start_height,
            relay=relay,
        )


@dataclass(frozen=True)
class VerAckPayload:
    """Empty payload of ``verack``."""

    def to_bytes(self) -> bytes:
        return b""

    @classmethod
    def from_bytes(cls, data: bytes) -> VerAckPayload:
        if data:
            raise MalformedPayloadError(f"verack carries {len(data)} payload bytes")
        return cls()


@dataclass(frozen=True)
class UnknownPayload:
    """Pass-through payload of a command this codec does not model."""

    command: str
    raw: bytes = b""

    def to_bytes(self) -> bytes:
        return self.raw


Payload: TypeAlias = VersionPayload | VerAckPayload | UnknownPayload


# ─── Messages ──────────────────────────────────────────────


@dataclass(frozen=True)
class MessageHeader:
    """Parsed 24-byte message header."""

    magic: bytes
    command: str
    length: int
    checksum: bytes

    def to_bytes(self) -> bytes:
        return (
            self.magic
            + _pad_command(self.command)
            + _HEADER_TAIL.pack(self.length, self.checksum)
        )


@dataclass(frozen=True)
class Message:
    """A framed protocol message.

    The command name must be ASCII and at most :data:`COMMAND_SIZE`
    bytes long.  Messages decoded from a peer pass ``strict=False``: their
    command is whatever the peer sent.

    Raises:
        MessageError: If the command name is invalid.
    """

    command: str
    payload: Payload
    magic: bytes = MAGIC_MAINNET
    strict: InitVar[bool] = True

    def __post_init__(self, strict: bool) -> None:
        if not strict:
            return
        if len(self.command) > COMMAND_SIZE:
            raise MessageError(f"command name too long: {self.command!r}")
        if not self.command.isascii():
            raise MessageError(f"command name has to be ASCII: {self.command!r}")

    @classmethod
    def version(cls, payload: VersionPayload, magic: bytes = MAGIC_MAINNET) -> Message:
        return cls(COMMAND_VERSION, payload, magic)

    @classmethod
    def verack(cls, magic: bytes = MAGIC_MAINNET) -> Message:
        return cls(COMMAND_VERACK, VerAckPayload(), magic)


def _pad_command(command: str) -> bytes:
    return command.encode("ascii").ljust(COMMAND_SIZE, b"\x00")


def encode_message(message: Message) -> bytes:
    """Serialize *message* to wire bytes (header + payload).

    Raises:
        PayloadTooBigError: If the payload exceeds ``MAX_PAYLOAD_SIZE``.
    """
    payload = message.payload.to_bytes()
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise PayloadTooBigError(f"{len(payload)} > {MAX_PAYLOAD_SIZE}")
    header = MessageHeader(
        magic=message.magic,
        command=message.command,
        length=len(payload),
        checksum=checksum(payload),
    )
    return header.to_bytes() + payload


def decode_header(data: bytes, magic: bytes = MAGIC_MAINNET) -> MessageHeader:
    """Parse a message header.

    Length and checksum are not validated here: that needs the payload,
    see :func:`decode_payload`.

    Raises:
        TruncatedError: If fewer than :data:`HEADER_SIZE` bytes are given.
        BadMagicError: If the magic does not match *magic*.
    """
    if len(data) < HEADER_SIZE:
        raise TruncatedError(f"header needs {HEADER_SIZE} bytes, got {len(data)}")
    received = bytes(data[:4])
    if received != magic:
        raise BadMagicError(f"{received.hex()} != {magic.hex()}")
    # Unknown commands, non-ASCII ones included, are not corrupt
    command = bytes(data[4:16]).rstrip(b"\x00").decode("utf-8", errors="replace")
    length, check = _HEADER_TAIL.unpack(data[16:HEADER_SIZE])
    return MessageHeader(magic=received, command=command, length=length, checksum=check)


def decode_payload(header: MessageHeader, data: bytes) -> Payload:
    """Validate and decode the payload announced by *header*.

    Only the first ``header.length`` bytes of *data* are consumed.

    Raises:
        TruncatedError: If *data* is shorter than the declared length.
        ChecksumMismatchError: If the checksum does not match.
        MalformedPayloadError: If a typed payload has the wrong layout.
    """
    if len(data) < header.length:
        raise TruncatedError(f"payload needs {header.length} bytes, got {len(data)}")
    payload = bytes(data[: header.length])
    computed = checksum(payload)
    if computed != header.checksum:
        raise ChecksumMismatchError(f"{computed.hex()} != {header.checksum.hex()}")

    if header.command == COMMAND_VERSION:
        return VersionPayload.from_bytes(payload)
    if header.command == COMMAND_VERACK:
        return VerAckPayload.from_bytes(payload)
    return UnknownPayload(command=header.command, raw=payload)


def decode_message(data: bytes, magic: bytes = MAGIC_MAINNET) -> Message:
    """Decode one complete message from the start of *data*."""
    header = decode_header(data, magic)
    payload = decode_payload(header, data[HEADER_SIZE:])
    return Message(header.command, payload, header.magic, strict=False)
