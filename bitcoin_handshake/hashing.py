"""Hashing utilities for the Bitcoin wire protocol.

Centralizes the double SHA-256 used for message checksums.  Callers
should import from here instead of inlining ``hashlib.sha256(...)``.
"""

from __future__ import annotations

import hashlib

CHECKSUM_SIZE = 4


def sha256d(data: bytes) -> bytes:
    """Return ``sha256(sha256(data))`` as raw 32 bytes."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def checksum(payload: bytes) -> bytes:
    """Compute the message checksum for *payload*.

    Args:
        payload: Exact payload bytes as they appear on the wire.

    Returns:
        First 4 bytes of the double SHA-256 digest.
    """
    return sha256d(payload)[:CHECKSUM_SIZE]
