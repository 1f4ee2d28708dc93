"""CLI commands: config show."""

from __future__ import annotations

from dataclasses import asdict

import click

from bitcoin_handshake.config import Config


@click.group("config")
def config_group() -> None:
    """Configuration management."""


@config_group.command("show")
@click.pass_obj
def config_show(obj: dict[str, object]) -> None:
    """Show the effective configuration."""
    config = obj["config"]
    assert isinstance(config, Config)  # noqa: S101
    for section_name, section in asdict(config).items():
        click.echo(f"[{section_name}]")
        for key, value in section.items():
            click.echo(f"  {key} = {value}")
        click.echo()
