"""CLI command: run — resolve seeds and handshake with every peer."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import click

from bitcoin_handshake.config import Config, HandshakeConfig
from bitcoin_handshake.errors import NoAddressesResolvedError
from bitcoin_handshake.p2p.orchestrator import HandshakeReport, run_handshakes
from bitcoin_handshake.p2p.protocol import NETWORK_PORTS, Network
from bitcoin_handshake.resolver import resolve_seeds


def _effective_settings(
    base: HandshakeConfig,
    port: int | None,
    timeout: float | None,
    network: str | None,
) -> HandshakeConfig:
    settings = base
    if network is not None:
        # A network switch also moves to that network's default port
        settings = replace(
            settings, network=network, port=NETWORK_PORTS[Network(network)]
        )
    if port is not None:
        settings = replace(settings, port=port)
    if timeout is not None:
        settings = replace(settings, timeout=timeout)
    return settings


@click.command()
@click.argument("seeds", nargs=-1)
@click.option(
    "--port",
    "-p",
    type=click.IntRange(1, 65535),
    default=None,
    help="TCP port to connect to (default: 8333)",
)
@click.option(
    "--timeout",
    "-t",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Handshake timeout, in seconds (default: 10)",
)
@click.option(
    "--network",
    "-n",
    type=click.Choice([n.value for n in Network]),
    default=None,
    help="Network whose magic bytes are expected",
)
@click.option(
    "--json", "as_json", is_flag=True, default=False, help="Print the report as JSON"
)
@click.pass_obj
def run(
    obj: dict[str, object],
    seeds: tuple[str, ...],
    port: int | None,
    timeout: float | None,
    network: str | None,
    as_json: bool,
) -> None:
    """Handshake with every address behind the given DNS SEEDS.

    SEEDS may be host names or IP literals; the configured seed list is
    used when none is given.
    """
    config = obj["config"]
    assert isinstance(config, Config)  # noqa: S101
    settings = _effective_settings(config.handshake, port, timeout, network)
    seed_list = list(seeds) or list(config.seeds.dns_seeds)

    async def _run() -> HandshakeReport:
        addresses = await resolve_seeds(seed_list, settings.port)
        return await run_handshakes(addresses, settings.timeout, settings)

    try:
        report = asyncio.run(_run())
    except NoAddressesResolvedError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(
            click.style(f"{report.ok} OK", fg="green")
            + " | "
            + click.style(f"{report.partially_ok} PARTIALLY OK", fg="yellow")
            + " | "
            + click.style(f"{report.failed} FAILED", fg="red")
        )

    # Exit status reflects whether the run completed, not peer health
    if not report.completed_all:
        raise click.exceptions.Exit(1)
