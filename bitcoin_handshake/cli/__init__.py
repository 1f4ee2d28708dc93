"""bitcoin-handshake CLI — Click command group and sub-commands.

- ``run`` — resolve DNS seeds and handshake with every address
- ``config`` — ``config show``
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import structlog

from bitcoin_handshake import __version__

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def configure_logging(level: str = "info") -> None:
    """Configure structlog for console output on stderr."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


# Configure structlog once at CLI entry
configure_logging()


@click.group()
@click.version_option(version=__version__, prog_name="bitcoin-handshake")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.bitcoin-handshake/config.toml)",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """bitcoin-handshake — probe Bitcoin peers with a version/verack handshake."""
    from bitcoin_handshake.config import load_config

    config = load_config(config_path)
    configure_logging(log_level or config.log.level)
    ctx.obj = {"config": config}


# Register sub-command modules
from bitcoin_handshake.cli.config import config_group  # noqa: E402
from bitcoin_handshake.cli.run import run as run_command  # noqa: E402

cli.add_command(run_command)
cli.add_command(config_group)
