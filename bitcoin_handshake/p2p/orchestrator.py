"""Concurrent multi-peer handshake orchestrator.

Launches one :class:`~bitcoin_handshake.p2p.handshake.PeerHandshake` per
address in a single fan-out, joins them all, and folds the outcomes into
a :class:`HandshakeReport`.  Attempts share nothing: each owns its
stream and its timeout, and an unexpected exception in one attempt is
recorded as that peer's failure without touching the others.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from bitcoin_handshake.config import HandshakeConfig
from bitcoin_handshake.errors import FailureCause
from bitcoin_handshake.events import LogEventSink
from bitcoin_handshake.p2p.handshake import (
    HandshakeOutcome,
    OutcomeKind,
    PeerHandshake,
)
from bitcoin_handshake.types import (
    Connector,
    EventSink,
    PeerAddress,
    format_address,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class HandshakeReport:
    """Aggregate result of one run.

    Counts are derived from ``outcomes`` and do not depend on the order
    in which attempts finished.
    """

    outcomes: list[HandshakeOutcome]
    attempted: int
    elapsed_ms: float = 0.0

    def counts(self) -> Counter[OutcomeKind]:
        return Counter(o.kind for o in self.outcomes)

    @property
    def ok(self) -> int:
        return self.counts()[OutcomeKind.OK]

    @property
    def partially_ok(self) -> int:
        return self.counts()[OutcomeKind.PARTIALLY_OK]

    @property
    def failed(self) -> int:
        return self.counts()[OutcomeKind.FAILED]

    @property
    def completed_all(self) -> bool:
        """Every attempted address produced an outcome."""
        return len(self.outcomes) == self.attempted

    def failures_by_cause(self) -> dict[FailureCause, int]:
        counts = Counter(
            o.cause for o in self.outcomes if o.kind == OutcomeKind.FAILED and o.cause
        )
        return dict(counts)

    def summary(self) -> str:
        return (
            f"Finished! Handshake results: {self.ok} OK | "
            f"{self.partially_ok} PARTIALLY OK | {self.failed} FAILED"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "ok": self.ok,
            "partially_ok": self.partially_ok,
            "failed": self.failed,
            "failed_by_cause": {
                cause.value: n for cause, n in self.failures_by_cause().items()
            },
            "elapsed_ms": round(self.elapsed_ms, 1),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class HandshakeOrchestrator:
    """Runs one handshake attempt per address, all at once.

    Args:
        config: Settings for our own ``version`` message and network.
        sink: Receives per-attempt and summary events.
        connector: Opens byte streams; defaults to
            ``asyncio.open_connection``.
    """

    def __init__(
        self,
        config: HandshakeConfig | None = None,
        *,
        sink: EventSink | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._config = config or HandshakeConfig()
        self._sink: EventSink = sink or LogEventSink()
        self._connector = connector

    async def run(
        self, addresses: Iterable[PeerAddress], timeout: float | None = None
    ) -> HandshakeReport:
        """Attempt a handshake with every distinct address.

        Args:
            addresses: Resolved ``(host, port)`` pairs.  Duplicates are
                attempted once.
            timeout: Per-attempt timeout in seconds; defaults to the
                configured one.

        Returns:
            Report holding one outcome per distinct address.

        Raises:
            ValueError: If *addresses* is empty.
        """
        targets = list(dict.fromkeys(addresses))
        if not targets:
            raise ValueError("no addresses to attempt")
        per_attempt = self._config.timeout if timeout is None else timeout

        logger.info(
            "handshake_run_started", peers=len(targets), timeout=per_attempt
        )
        started = time.monotonic()
        results = await asyncio.gather(
            *(self._attempt(address, per_attempt) for address in targets),
            return_exceptions=True,
        )
        outcomes = [
            self._isolate(address, result)
            for address, result in zip(targets, results, strict=True)
        ]

        report = HandshakeReport(
            outcomes=outcomes,
            attempted=len(targets),
            elapsed_ms=(time.monotonic() - started) * 1000,
        )
        self._sink.run_finished(report)
        return report

    async def _attempt(self, address: PeerAddress, timeout: float) -> HandshakeOutcome:
        self._sink.handshake_started(address)
        handshake = PeerHandshake(address, self._config, connector=self._connector)
        outcome = await handshake.run(timeout)
        self._sink.handshake_finished(outcome)
        return outcome

    def _isolate(
        self, address: PeerAddress, result: HandshakeOutcome | BaseException
    ) -> HandshakeOutcome:
        if isinstance(result, HandshakeOutcome):
            return result
        if not isinstance(result, Exception):
            raise result
        logger.error(
            "handshake_attempt_crashed",
            peer=format_address(address),
            error=repr(result),
            exc_info=result,
        )
        outcome = HandshakeOutcome(
            address=address,
            kind=OutcomeKind.FAILED,
            cause=FailureCause.INTERNAL,
            detail=repr(result),
        )
        # The crash may have come from the sink itself
        try:
            self._sink.handshake_finished(outcome)
        except Exception:
            logger.exception("event_sink_failed", peer=format_address(address))
        return outcome


async def run_handshakes(
    addresses: Iterable[PeerAddress],
    timeout: float,
    config: HandshakeConfig | None = None,
    *,
    sink: EventSink | None = None,
    connector: Connector | None = None,
) -> HandshakeReport:
    """Convenience wrapper around :meth:`HandshakeOrchestrator.run`."""
    orchestrator = HandshakeOrchestrator(config, sink=sink, connector=connector)
    return await orchestrator.run(addresses, timeout)
