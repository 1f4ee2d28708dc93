"""Event sinks that turn handshake progress into log records.

The handshake core only talks to an :class:`~bitcoin_handshake.types.EventSink`.
:class:`LogEventSink` is the default implementation: it writes one
structlog record per finished attempt, at a severity that keeps partial
successes visibly apart from failures, and a final summary line.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from bitcoin_handshake.p2p.handshake import OutcomeKind
from bitcoin_handshake.types import PeerAddress, format_address

if TYPE_CHECKING:
    from bitcoin_handshake.p2p.handshake import HandshakeOutcome
    from bitcoin_handshake.p2p.orchestrator import HandshakeReport


class LogEventSink:
    """Write handshake events to a structlog logger.

    Severity per outcome:

    - ``ok``: info
    - ``partially_ok``: warning (carries the unexpected command)
    - ``failed``: error (carries the cause)
    """

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger or structlog.get_logger("bitcoin_handshake")

    def handshake_started(self, address: PeerAddress) -> None:
        self._logger.debug("handshake_started", peer=format_address(address))

    def handshake_finished(self, outcome: HandshakeOutcome) -> None:
        peer = format_address(outcome.address)
        elapsed_ms = round(outcome.elapsed_ms, 1)
        if outcome.kind == OutcomeKind.OK:
            self._logger.info("handshake_ok", peer=peer, elapsed_ms=elapsed_ms)
        elif outcome.kind == OutcomeKind.PARTIALLY_OK:
            self._logger.warning(
                "handshake_partially_ok",
                peer=peer,
                command=outcome.command,
                elapsed_ms=elapsed_ms,
            )
        else:
            self._logger.error(
                "handshake_failed",
                peer=peer,
                cause=outcome.cause.value if outcome.cause else None,
                detail=outcome.description,
                elapsed_ms=elapsed_ms,
            )

    def run_finished(self, report: HandshakeReport) -> None:
        self._logger.info(
            "handshake_summary",
            ok=report.ok,
            partially_ok=report.partially_ok,
            failed=report.failed,
            summary=report.summary(),
        )


class NullEventSink:
    """Sink that drops every event."""

    def handshake_started(self, address: PeerAddress) -> None:
        pass

    def handshake_finished(self, outcome: HandshakeOutcome) -> None:
        pass

    def run_finished(self, report: HandshakeReport) -> None:
        pass
