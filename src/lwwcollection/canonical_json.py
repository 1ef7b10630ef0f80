"""
canonical_json.py — lwwcollection
Deterministic JSON serialization for snapshots and content digests.

Canonical form:
- UTF-8 encoding
- Object keys sorted lexicographically by Unicode codepoint
- No insignificant whitespace
- Entries (``Entry`` named tuples) encode as ``[timestamp, data]`` arrays
- NaN and Infinity encode as ``null``, the way JavaScript writes them

Two replicas holding the same live entries produce the same canonical string
regardless of the order in which the entries arrived, so the digest computed
over it is comparable across replicas.
"""

from __future__ import annotations
import json
import math
from typing import Any


def _finite(obj: Any) -> Any:
    """Copy ``obj`` with non-finite floats replaced by ``None``."""
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {k: _finite(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite(v) for v in obj]
    return obj


def canonical_dumps(obj: Any) -> str:
    """Return canonical JSON string with sorted keys and no whitespace."""
    return json.dumps(
        _finite(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(obj: Any) -> bytes:
    """Return canonical JSON as UTF-8 bytes."""
    return canonical_dumps(obj).encode("utf-8")
