"""
hashing.py — content digest functions for ``Collection.hash``.

A hash function takes the canonical JSON string of the live entries and
returns a digest string. The default is a cheap 32-bit rolling hash, good
enough to tell two replicas apart; it is not collision resistant and must not
be used for integrity checks.
"""

from __future__ import annotations
import hashlib
from typing import Callable

HashFunction = Callable[[str], str]

_MASK_32 = 0xFFFFFFFF


def hash_code(text: str) -> int:
    """Return the signed 32-bit ``31 * h + c`` hash of ``text``.

    Characters are taken as UTF-16 code units, so the result matches the
    classic Java ``String.hashCode`` for the same text.
    """
    encoded = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (31 * h + unit) & _MASK_32
    return h - (1 << 32) if h & 0x80000000 else h


def simple_hash(text: str) -> str:
    """Default hash function: decimal string of :func:`hash_code`."""
    return str(hash_code(text))


def sha256_hash(text: str) -> str:
    """Return lowercase hex SHA-256 digest of the UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
