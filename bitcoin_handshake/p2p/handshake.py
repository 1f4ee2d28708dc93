"""Per-peer version/verack handshake state machine.

Protocol flow for one connection::

    us ──► peer: version
    us ◄── peer: version            (anything else: Failed, unexpected_command)
    us ──► peer: verack
    us ◄── peer: verack             → Ok
    us ◄── peer: <other command>    → PartiallyOk

Many real peers go on with ``sendheaders``/``ping``/``inv`` without ever
sending ``verack``.  That is reported as its own terminal state,
``PARTIALLY_COMPLETED``, rather than folded into success or failure.

Exactly one message is read after our ``verack``: a peer that sends its
``verack`` late, after some other message, is still ``PartiallyOk``.

Usage::

    handshake = PeerHandshake(("203.0.113.7", 8333))
    outcome = await handshake.run(timeout=10.0)
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from bitcoin_handshake.config import HandshakeConfig
from bitcoin_handshake.errors import (
    ConnectError,
    FailureCause,
    HandshakeError,
    PayloadTooBigError,
    PeerIOError,
    ProtocolOrderError,
    SelfConnectionError,
    describe_cause,
)
from bitcoin_handshake.p2p.protocol import (
    COMMAND_VERACK,
    COMMAND_VERSION,
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    NETWORK_MAGIC,
    Message,
    Network,
    NetworkAddress,
    ServiceFlags,
    VersionPayload,
    decode_header,
    decode_payload,
    encode_message,
)
from bitcoin_handshake.types import Connector, PeerAddress, format_address

logger = structlog.get_logger()


class HandshakeState(StrEnum):
    """States of one handshake attempt."""

    INIT = "init"
    VERSION_SENT = "version_sent"
    AWAITING_PEER_VERSION = "awaiting_peer_version"
    AWAITING_PEER_VERACK = "awaiting_peer_verack"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        HandshakeState.COMPLETED,
        HandshakeState.PARTIALLY_COMPLETED,
        HandshakeState.FAILED,
    }
)


class OutcomeKind(StrEnum):
    """Classification of a finished attempt."""

    OK = "ok"
    PARTIALLY_OK = "partially_ok"
    FAILED = "failed"


@dataclass(frozen=True)
class HandshakeOutcome:
    """Terminal result of one attempt.

    ``command`` is set for ``PARTIALLY_OK`` (the command received in
    place of ``verack``); ``cause`` and ``detail`` are set for ``FAILED``.
    """

    address: PeerAddress
    kind: OutcomeKind
    cause: FailureCause | None = None
    detail: str = ""
    command: str | None = None
    peer_version: VersionPayload | None = field(default=None, compare=False)
    elapsed_ms: float = field(default=0.0, compare=False)

    @property
    def description(self) -> str:
        if self.kind == OutcomeKind.OK:
            return "Handshake succeeded"
        if self.kind == OutcomeKind.PARTIALLY_OK:
            return (
                "Handshake partially succeeded: expected `verack` "
                f"but got `{self.command}`"
            )
        assert self.cause is not None  # noqa: S101
        return f"{describe_cause(self.cause)}: {self.detail}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "address": format_address(self.address),
            "result": self.kind.value,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }
        if self.command is not None:
            data["command"] = self.command
        if self.cause is not None:
            data["cause"] = self.cause.value
            data["detail"] = self.detail
        if self.peer_version is not None:
            data["peer"] = {
                "version": self.peer_version.version,
                "services": int(self.peer_version.services),
                "user_agent": self.peer_version.user_agent_text,
                "start_height": self.peer_version.start_height,
            }
        return data


# ─── Stream helpers ────────────────────────────────────────


async def read_message(reader: asyncio.StreamReader, magic: bytes) -> Message:
    """Read and decode exactly one message from *reader*.

    Raises:
        PeerIOError: If the stream ends or fails before the message is
            complete.
        DecodeError: If the bytes are not a valid message.
    """
    raw_header = await _read_exactly(reader, HEADER_SIZE)
    header = decode_header(raw_header, magic)
    if header.length > MAX_PAYLOAD_SIZE:
        raise PayloadTooBigError(f"{header.length} > {MAX_PAYLOAD_SIZE}")
    raw_payload = await _read_exactly(reader, header.length)
    payload = decode_payload(header, raw_payload)
    return Message(header.command, payload, header.magic, strict=False)


async def send_message(writer: asyncio.StreamWriter, message: Message) -> int:
    """Write *message* and wait for the buffer to drain.

    Returns:
        Number of bytes written.
    """
    data = encode_message(message)
    try:
        writer.write(data)
        await writer.drain()
    except OSError as exc:
        raise PeerIOError(f"write failed: {exc}") from exc
    return len(data)


async def _read_exactly(reader: asyncio.StreamReader, size: int) -> bytes:
    try:
        return await reader.readexactly(size)
    except asyncio.IncompleteReadError as exc:
        raise PeerIOError(
            f"stream closed after {len(exc.partial)} of {size} bytes"
        ) from exc
    except OSError as exc:
        raise PeerIOError(f"read failed: {exc}") from exc


# ─── State machine ─────────────────────────────────────────


class PeerHandshake:
    """Drives one connection through the version/verack exchange.

    Each instance performs a single attempt; :meth:`run` may only be
    called once.

    Args:
        address: ``(host, port)`` of the peer.
        config: Values advertised in our own ``version`` message.
        connector: Opens the byte stream; defaults to
            ``asyncio.open_connection``.
        nonce: Version nonce; a fresh random one when omitted.
        clock: Returns the current UNIX time in seconds.
    """

    def __init__(
        self,
        address: PeerAddress,
        config: HandshakeConfig | None = None,
        *,
        connector: Connector | None = None,
        nonce: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.address = address
        self._config = config or HandshakeConfig()
        self._magic = NETWORK_MAGIC[Network(self._config.network)]
        self._connector: Connector = connector or asyncio.open_connection
        self._nonce = nonce if nonce is not None else random.getrandbits(64)
        self._clock = clock
        self.state = HandshakeState.INIT
        self.history: list[HandshakeState] = [HandshakeState.INIT]
        self.peer_version: VersionPayload | None = None
        self.unexpected_command: str | None = None

    @property
    def nonce(self) -> int:
        return self._nonce

    async def run(self, timeout: float) -> HandshakeOutcome:
        """Perform the handshake, bounded by *timeout* seconds overall.

        Never raises for peer misbehaviour: every failure is returned as
        a ``FAILED`` outcome carrying its :class:`FailureCause`.
        """
        if self.state != HandshakeState.INIT:
            raise RuntimeError("handshake already run")

        started = time.monotonic()
        try:
            kind = await asyncio.wait_for(self._exchange(), timeout=timeout)
        except TimeoutError:
            return self._fail(
                FailureCause.TIMEOUT,
                f"no handshake within {timeout:g}s (state: {self.state})",
                started,
            )
        except HandshakeError as exc:
            return self._fail(exc.cause, str(exc), started)

        return HandshakeOutcome(
            address=self.address,
            kind=kind,
            command=self.unexpected_command,
            peer_version=self.peer_version,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )

    async def _exchange(self) -> OutcomeKind:
        reader, writer = await self._connect()
        try:
            sent = await send_message(
                writer, Message.version(self._build_version(), self._magic)
            )
            logger.debug(
                "handshake_sent", peer=self._peer, command="version", size=sent
            )
            self._transition(HandshakeState.VERSION_SENT)

            self._transition(HandshakeState.AWAITING_PEER_VERSION)
            message = await read_message(reader, self._magic)
            logger.debug(
                "handshake_received", peer=self._peer, command=message.command
            )
            if message.command != COMMAND_VERSION or not isinstance(
                message.payload, VersionPayload
            ):
                raise ProtocolOrderError(message.command)
            if message.payload.nonce == self._nonce:
                raise SelfConnectionError("peer echoed our version nonce")
            self.peer_version = message.payload

            sent = await send_message(writer, Message.verack(self._magic))
            logger.debug(
                "handshake_sent", peer=self._peer, command="verack", size=sent
            )
            self._transition(HandshakeState.AWAITING_PEER_VERACK)

            message = await read_message(reader, self._magic)
            logger.debug(
                "handshake_received", peer=self._peer, command=message.command
            )
            if message.command == COMMAND_VERACK:
                self._transition(HandshakeState.COMPLETED)
                return OutcomeKind.OK

            self.unexpected_command = message.command
            self._transition(HandshakeState.PARTIALLY_COMPLETED)
            return OutcomeKind.PARTIALLY_OK
        finally:
            writer.close()

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        host, port = self.address
        try:
            return await self._connector(host, port)
        except OSError as exc:
            raise ConnectError(f"cannot connect: {exc}") from exc

    def _build_version(self) -> VersionPayload:
        host, port = self.address
        try:
            addr_recv = NetworkAddress.from_host(host, port, ServiceFlags.NODE_NETWORK)
        except ValueError:
            addr_recv = NetworkAddress.unspecified()
        return VersionPayload(
            version=self._config.protocol_version,
            services=ServiceFlags(self._config.services),
            timestamp=int(self._clock()),
            addr_recv=addr_recv,
            addr_from=NetworkAddress.unspecified(),
            nonce=self._nonce,
            user_agent=self._config.user_agent.encode("utf-8"),
            start_height=self._config.start_height,
            relay=self._config.relay,
        )

    def _transition(self, state: HandshakeState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("handshake_state", peer=self._peer, state=state.value)

    def _fail(
        self, cause: FailureCause, detail: str, started: float
    ) -> HandshakeOutcome:
        self._transition(HandshakeState.FAILED)
        return HandshakeOutcome(
            address=self.address,
            kind=OutcomeKind.FAILED,
            cause=cause,
            detail=detail,
            peer_version=self.peer_version,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )

    @property
    def _peer(self) -> str:
        return format_address(self.address)


async def perform_handshake(
    address: PeerAddress,
    timeout: float,
    config: HandshakeConfig | None = None,
    *,
    connector: Connector | None = None,
) -> HandshakeOutcome:
    """Run a single :class:`PeerHandshake` against *address*."""
    return await PeerHandshake(address, config, connector=connector).run(timeout)

