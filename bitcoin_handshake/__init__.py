"""bitcoin-handshake — probe Bitcoin peers with a version/verack handshake."""

from __future__ import annotations

__version__ = "0.1.0"

# Protocol version advertised in our own ``version`` message.
PROTOCOL_VERSION = 70015

# TCP port of Bitcoin's mainnet.
PORT_MAINNET = 8333
