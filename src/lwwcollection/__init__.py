"""lwwcollection public API.

A last-write-wins key-value collection for reconciling out-of-order writes
from several uncoordinated sources.

Example:
    from lwwcollection import Collection

    todos = Collection(default_value={})
    todos.add("buy-milk", 1700000000000, {"done": False})
    payload = todos.export_updates()   # ship to the server
    todos.clear_updates(payload)       # once the server acknowledged it
"""

from .canonical_json import canonical_bytes, canonical_dumps
from .collection import (
    DEFAULT_VALUE,
    Collection,
    Entry,
    ImportDiagnostic,
    ImportReport,
    Subscription,
    coerce_timestamp,
    now_ms,
    parse_snapshot,
)
from .errors import InvalidEntryError, InvalidSnapshotError, LWWError
from .hashing import hash_code, sha256_hash, simple_hash

__version__ = "1.0.0"

__all__ = [
    "Collection",
    "Entry",
    "ImportDiagnostic",
    "ImportReport",
    "Subscription",
    "DEFAULT_VALUE",
    "coerce_timestamp",
    "now_ms",
    "parse_snapshot",
    "canonical_dumps",
    "canonical_bytes",
    "hash_code",
    "simple_hash",
    "sha256_hash",
    "LWWError",
    "InvalidEntryError",
    "InvalidSnapshotError",
    "__version__",
]
