"""Digest helpers — SHA-256, double SHA-256, RIPEMD-160, Hash160, checksums."""

from __future__ import annotations

import hashlib


def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """Double SHA-256 hash (SHA256(SHA256(data))).

    Used for transaction ids, BIP143 sub-hashes and Base58Check checksums.
    """
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def ripemd160(data: bytes) -> bytes:
    """RIPEMD-160 hash."""
    h = hashlib.new("ripemd160")
    h.update(data)
    return h.digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD-160(SHA-256(data)) — the 20-byte digest behind every address."""
    return ripemd160(sha256(data))


def checksum(data: bytes) -> bytes:
    """First four bytes of ``sha256d(data)``."""
    return sha256d(data)[:4]
