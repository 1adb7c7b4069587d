"""Byte-order helpers for transaction and block hashes."""

from hashlib import sha256 as _sha256


def sha256(x: bytes) -> bytes:
    return _sha256(x).digest()


def hash_to_hex_str(x: bytes) -> str:
    """Convert a little-endian binary hash to displayed hex string.

    Display form of a binary hash is reversed and converted to hex.
    """
    return bytes(reversed(x)).hex()


def hex_str_to_hash(x: str) -> bytes:
    """Convert a displayed hex string to a binary hash."""
    return bytes(reversed(bytes.fromhex(x)))
