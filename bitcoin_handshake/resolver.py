"""DNS seed resolution.

Turns seed host names (or IP literals) into the ``(host, port)`` pairs
the orchestrator attempts.  Resolving nothing at all is the one fatal
condition of a run.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from collections.abc import Iterable

import structlog

from bitcoin_handshake.errors import NoAddressesResolvedError
from bitcoin_handshake.types import PeerAddress

logger = structlog.get_logger()


def is_ip_literal(host: str) -> bool:
    """Return ``True`` if *host* is an IPv4/IPv6 literal."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


async def resolve_seed(seed: str, port: int) -> list[PeerAddress]:
    """Resolve one DNS seed to the addresses it advertises.

    Args:
        seed: Seed host name or IP literal.
        port: TCP port paired with every resolved address.

    Returns:
        Distinct ``(ip, port)`` pairs in resolver order; empty when the
        seed cannot be resolved.
    """
    if is_ip_literal(seed):
        return [(seed, port)]

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(
            seed, port, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP
        )
    except (socket.gaierror, UnicodeError) as exc:
        logger.warning("seed_resolve_failed", seed=seed, error=str(exc))
        return []

    addresses: list[PeerAddress] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        address = (str(sockaddr[0]), int(sockaddr[1]))
        if address not in addresses:
            addresses.append(address)
    logger.info("seed_resolved", seed=seed, count=len(addresses))
    return addresses


async def resolve_seeds(seeds: Iterable[str], port: int) -> list[PeerAddress]:
    """Resolve every seed concurrently and merge the results.

    Raises:
        NoAddressesResolvedError: If no seed yields any address.
    """
    seed_list = list(seeds)
    resolved = await asyncio.gather(*(resolve_seed(s, port) for s in seed_list))
    merged = list(dict.fromkeys(a for batch in resolved for a in batch))
    if not merged:
        raise NoAddressesResolvedError(
            f"no addresses resolved from {', '.join(seed_list) or 'no seeds'}"
        )
    return merged
