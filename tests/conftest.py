"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import socket
import struct
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType

import pytest
import structlog

from bitcoin_handshake.errors import HandshakeError
from bitcoin_handshake.events import NullEventSink
from bitcoin_handshake.p2p.handshake import HandshakeOutcome, read_message
from bitcoin_handshake.p2p.orchestrator import HandshakeReport
from bitcoin_handshake.p2p.protocol import (
    MAGIC_MAINNET,
    Message,
    NetworkAddress,
    ServiceFlags,
    UnknownPayload,
    VersionPayload,
    encode_message,
)
from bitcoin_handshake.types import PeerAddress

# ─── Peer-side messages ───────────────────────────────────


def peer_version(nonce: int = 0xC0FFEE, magic: bytes = MAGIC_MAINNET) -> bytes:
    payload = VersionPayload(
        version=70016,
        services=ServiceFlags.NODE_NETWORK | ServiceFlags.NODE_WITNESS,
        timestamp=1_700_000_000,
        addr_recv=NetworkAddress.unspecified(),
        addr_from=NetworkAddress.from_host("127.0.0.1", 8333),
        nonce=nonce,
        user_agent=b"/Satoshi:27.0.0/",
        start_height=840_000,
        relay=True,
    )
    return encode_message(Message.version(payload, magic))


def peer_verack(magic: bytes = MAGIC_MAINNET) -> bytes:
    return encode_message(Message.verack(magic))


def peer_command(command: str, raw: bytes = b"") -> bytes:
    return encode_message(Message(command, UnknownPayload(command, raw)))


SCRIPTS: dict[str, list[bytes]] = {
    "ok": [peer_version(), peer_verack()],
    "partial": [peer_version(), peer_command("ping", struct.pack("<Q", 7))],
    "wrong_first": [peer_command("sendheaders"), peer_version(), peer_verack()],
    "silent": [],
    "close": [],
}


# ─── Scripted peer ────────────────────────────────────────


class ScriptedPeer:
    """Localhost TCP peer that replays a fixed byte script.

    Named scripts: ``ok``, ``partial``, ``wrong_first``, ``silent``
    (reads our version, never answers) and ``close`` (hangs up right
    after accepting).  A list of raw chunks can be given instead.

    Usage::

        async with ScriptedPeer("ok") as peer:
            outcome = await PeerHandshake(peer.address).run(1.0)
    """

    def __init__(self, script: str | list[bytes], *, delay: float = 0.0) -> None:
        self.name = script if isinstance(script, str) else "custom"
        self._chunks = SCRIPTS[script] if isinstance(script, str) else script
        self._delay = delay
        self._writers: set[asyncio.StreamWriter] = set()
        self._server: asyncio.Server | None = None
        self.address: PeerAddress = ("127.0.0.1", 0)
        self.received: list[Message] = []

    async def __aenter__(self) -> ScriptedPeer:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        host, port = self._server.sockets[0].getsockname()[:2]
        self.address = (host, port)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        assert self._server is not None
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        try:
            if self.name == "close":
                return
            self.received.append(await read_message(reader, MAGIC_MAINNET))
            for chunk in self._chunks:
                if self._delay:
                    await asyncio.sleep(self._delay)
                writer.write(chunk)
                await writer.drain()
            # Hold the connection until the client hangs up
            await reader.read()
        except (HandshakeError, OSError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


class RecordingSink:
    """Event sink that keeps every event it receives."""

    def __init__(self) -> None:
        self.started: list[PeerAddress] = []
        self.finished: list[HandshakeOutcome] = []
        self.reports: list[HandshakeReport] = []

    def handshake_started(self, address: PeerAddress) -> None:
        self.started.append(address)

    def handshake_finished(self, outcome: HandshakeOutcome) -> None:
        self.finished.append(outcome)

    def run_finished(self, report: HandshakeReport) -> None:
        self.reports.append(report)


# ─── Fixtures ─────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Drop logging config set by CLI tests (it binds the runner's stderr)."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def scripted_peer() -> type[ScriptedPeer]:
    """The :class:`ScriptedPeer` class, for ``async with`` use in tests."""
    return ScriptedPeer


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def null_sink() -> NullEventSink:
    return NullEventSink()


@pytest.fixture
def closed_port() -> int:
    """A localhost port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def tmp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory for tests."""
    config_dir = tmp_path / ".bitcoin-handshake"
    config_dir.mkdir()
    return config_dir
