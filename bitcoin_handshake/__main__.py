"""bitcoin-handshake CLI entry point.

Delegates to ``bitcoin_handshake.cli`` which houses the Click commands.
Kept minimal so that ``python -m bitcoin_handshake`` and the
``bitcoin-handshake`` console-script entry point both resolve here.
"""

from __future__ import annotations

from bitcoin_handshake.cli import cli


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
