"""Shared Protocol types for bitcoin-handshake.

Defines structural interfaces (PEP 544 Protocols) used across the
codebase.  The handshake core depends on these Protocols, not on a
concrete logger or CLI: the only thing it does with its results is
hand them to an :class:`EventSink`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from bitcoin_handshake.p2p.handshake import HandshakeOutcome
    from bitcoin_handshake.p2p.orchestrator import HandshakeReport

# ``(host, port)`` of a resolved peer.
PeerAddress: TypeAlias = tuple[str, int]


def format_address(address: PeerAddress) -> str:
    """Render *address* as ``host:port`` (``[host]:port`` for IPv6)."""
    host, port = address
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


# ── Event sink protocol ────────────────────────────────────────────


@runtime_checkable
class EventSink(Protocol):
    """Passive receiver of handshake progress events.

    Implementations must not raise; the orchestrator calls them from
    inside concurrently running attempts.
    """

    def handshake_started(self, address: PeerAddress) -> None:
        """An attempt against *address* is about to connect."""
        ...

    def handshake_finished(self, outcome: HandshakeOutcome) -> None:
        """An attempt reached its terminal outcome."""
        ...

    def run_finished(self, report: HandshakeReport) -> None:
        """Every attempt of a run has produced an outcome."""
        ...


# ── Connector protocol ─────────────────────────────────────────────


class Connector(Protocol):
    """Callable that opens a byte stream, like ``asyncio.open_connection``."""

    def __call__(  # noqa: D102
        self, host: str, port: int
    ) -> Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]: ...
