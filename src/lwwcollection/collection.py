"""
collection.py — Last-write-wins key-value collection

A replicated register map that converges to the same state no matter the
order in which writes and deletions arrive.

Core invariants:
  1. Every record carries a positive integer timestamp. The higher timestamp
     wins; on a tie the most recently applied operation wins.
  2. Deletions leave a tombstone with their timestamp, so an out-of-order
     write older than the deletion cannot resurrect the key.
  3. A key is never live and tombstoned at the same time.
  4. Every accepted mutation is mirrored into the pending-updates maps, and
     every mutation clears the derived caches before subscribers run.

The pending-updates mirror is a sync cursor: it records what changed since
the caller last acknowledged a sync, and is drained with ``clear_updates``.
It is never consulted when resolving conflicts.
"""

from __future__ import annotations
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)

from .canonical_json import canonical_dumps
from .errors import InvalidEntryError, InvalidSnapshotError
from .hashing import HashFunction, simple_hash

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_VALUE = None

_MISSING = object()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class Entry(NamedTuple):
    """Current value of a key as of ``timestamp``. Serializes as ``[timestamp, data]``."""
    timestamp: int
    data: Any


Entries = Dict[str, Entry]
DeletedKeys = Dict[str, int]
Updates = Dict[str, Dict[str, Any]]
Snapshot = Union[str, bytes, Mapping[str, Any]]
ValidationFunction = Callable[[str, Any], bool]
ComputedPropertyFunction = Callable[[Entries], Any]


class Subscription:
    """Opaque handle returned by :meth:`Collection.subscribe`."""

    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[], Any]):
        self.callback = callback

    def __repr__(self) -> str:
        return f"<Subscription {getattr(self.callback, '__qualname__', self.callback)!r}>"


@dataclass(frozen=True)
class ImportDiagnostic:
    key: str
    kind: str  # "entry" or "deletedKey"
    record: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "record": self.record,
            "reason": self.reason,
        }


@dataclass
class ImportReport:
    """Outcome of :meth:`Collection.import_snapshot`.

    ``skipped`` holds malformed or invalid records, ``superseded`` holds
    well-formed records that lost the timestamp comparison against state that
    was already present, and ``reconciled`` holds keys that appeared both as
    an entry and as a deleted key in the same snapshot.
    """
    imported_entries: int = 0
    imported_deletions: int = 0
    skipped: List[ImportDiagnostic] = field(default_factory=list)
    superseded: List[ImportDiagnostic] = field(default_factory=list)
    reconciled: List[ImportDiagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "imported_entries": self.imported_entries,
            "imported_deletions": self.imported_deletions,
            "skipped": [d.to_dict() for d in self.skipped],
            "superseded": [d.to_dict() for d in self.superseded],
            "reconciled": [d.to_dict() for d in self.reconciled],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def coerce_timestamp(value: Any) -> Optional[int]:
    """Return ``value`` as a positive int, or None if it is not one.

    Integral floats (``100.0``) are accepted since JSON producers in other
    languages do not distinguish them from integers. Booleans are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None


def _empty_updates() -> Updates:
    return {"entries": {}, "deletedKeys": {}}


def parse_snapshot(data: Snapshot) -> Dict[str, Mapping[str, Any]]:
    """Decode and shape-check a snapshot without touching any collection.

    Returns a dict with the ``entries`` and ``deletedKeys`` mappings.

    Raises:
        InvalidSnapshotError: If the payload is not JSON, not an object, or
            either top-level field is missing or not an object.
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidSnapshotError(f"payload is not UTF-8: {exc}") from exc
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise InvalidSnapshotError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise InvalidSnapshotError(f"expected an object, got {type(data).__name__}")

    entries = data.get("entries")
    if not isinstance(entries, Mapping):
        raise InvalidSnapshotError("'entries' is missing or not an object")
    deleted_keys = data.get("deletedKeys")
    if not isinstance(deleted_keys, Mapping):
        raise InvalidSnapshotError("'deletedKeys' is missing or not an object")

    return {"entries": entries, "deletedKeys": deleted_keys}


def _split_entry_record(record: Any, default_value: Any) -> Optional[Tuple[Any, Any]]:
    """Unpack a wire ``[timestamp, data]`` record; a missing data slot means default."""
    if not isinstance(record, (list, tuple)) or not 1 <= len(record) <= 2:
        return None
    if len(record) == 1:
        return record[0], default_value
    return record[0], record[1]


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

class Collection:
    """
    Last-write-wins map of string keys to timestamped values.

    Primary state:
      entries      — live ``key -> Entry(timestamp, data)``
      deletedKeys  — tombstones ``key -> deletion timestamp``

    Pending state (same shape, see ``get_updates``) tracks keys mutated since
    the last ``clear_updates``.

    All methods are synchronous and the class does no locking; use one
    collection per mutator thread.
    """

    def __init__(
        self,
        hash_function: Optional[HashFunction] = None,
        validate_entry: Optional[ValidationFunction] = None,
        default_value: Any = DEFAULT_VALUE,
    ):
        self.hash_function: HashFunction = hash_function or simple_hash
        self.validate_entry = validate_entry
        self.default_value = default_value

        self._entries: Entries = {}
        self._deleted_keys: DeletedKeys = {}
        self._updates: Updates = _empty_updates()

        # Empty string if not yet computed
        self._cached_hash = ""
        self._cached_computed: Dict[ComputedPropertyFunction, Any] = {}
        self._subscribers: List[Subscription] = []

    @classmethod
    def from_snapshot(cls, data: Snapshot, **options: Any) -> "Collection":
        """Create a collection from an exported snapshot.

        Keyword options are passed to the constructor. Use
        :meth:`import_snapshot` directly to inspect the import report.
        """
        collection = cls(**options)
        collection.import_snapshot(data)
        return collection

    def __repr__(self) -> str:
        return (
            f"<Collection entries={len(self._entries)} "
            f"deleted={len(self._deleted_keys)} "
            f"pending={len(self._updates['entries']) + len(self._updates['deletedKeys'])}>"
        )

    # ------------------------------------------------------------------
    # Merge engine
    # ------------------------------------------------------------------

    def add(self, key: str, timestamp: Optional[int] = None, data: Any = _MISSING) -> bool:
        """Write ``data`` under ``key`` unless a newer record already exists.

        Args:
            key: Entry key.
            timestamp: Logical timestamp of the write. Anything that is not a
                positive integer is replaced by the current time in ms.
            data: Value to store. Defaults to the collection's ``default_value``.

        Returns:
            bool: True if the write was applied, False if the existing entry
            or tombstone for ``key`` is newer.

        Raises:
            InvalidEntryError: If ``validate_entry`` rejects ``(key, data)`` or
                raises while checking it.
        """
        if data is _MISSING:
            data = self.default_value

        if self.validate_entry is not None:
            try:
                valid = self.validate_entry(key, data)
            except Exception as exc:
                raise InvalidEntryError(f"key={key!r}; validate_entry raised {exc!r}") from exc
            if not valid:
                raise InvalidEntryError(f"key={key!r}")

        ts = coerce_timestamp(timestamp)
        if ts is None:
            ts = now_ms()

        existing_ts = self._existing_timestamp(key)
        if existing_ts is None or ts >= existing_ts:
            entry = Entry(ts, data)

            def apply(entries: Entries, deleted_keys: DeletedKeys) -> None:
                entries[key] = entry
                deleted_keys.pop(key, None)

            self._update_entry_maps(apply)
            return True

        logger.debug("add(%r, %d) rejected: existing record at %d is newer", key, ts, existing_ts)
        return False

    def remove(self, key: str, timestamp: Optional[int] = None) -> bool:
        """Delete ``key`` as of ``timestamp``, leaving a tombstone.

        Applied unless the live entry for ``key`` is strictly newer than
        ``timestamp``. Deleting a key that does not exist still records the
        tombstone, which blocks older writes that arrive later.
        """
        ts = coerce_timestamp(timestamp)
        if ts is None:
            ts = now_ms()

        current = self._entries.get(key)
        if current is None or current.timestamp <= ts:

            def apply(entries: Entries, deleted_keys: DeletedKeys) -> None:
                entries.pop(key, None)
                deleted_keys[key] = ts

            self._update_entry_maps(apply)
            return True

        logger.debug("remove(%r, %d) rejected: entry at %d is newer", key, ts, current.timestamp)
        return False

    def clear(self) -> None:
        """Drop all entries, tombstones and pending updates."""
        self._entries = {}
        self._deleted_keys = {}
        self._updates = _empty_updates()
        self._on_entries_update()

    def _existing_timestamp(self, key: str) -> Optional[int]:
        current = self._entries.get(key)
        if current is not None:
            return current.timestamp
        return self._deleted_keys.get(key)

    def _update_entry_maps(self, update: Callable[[Entries, DeletedKeys], None]) -> None:
        update(self._entries, self._deleted_keys)
        update(self._updates["entries"], self._updates["deletedKeys"])
        self._on_entries_update()

    def _on_entries_update(self) -> None:
        self._cached_hash = ""
        self._cached_computed.clear()
        for subscription in list(self._subscribers):
            subscription.callback()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[], Any]) -> Subscription:
        """Call ``callback()`` after every mutation. Returns the handle for unsubscribe."""
        subscription = Subscription(callback)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        for i, existing in enumerate(self._subscribers):
            if existing is subscription:
                del self._subscribers[i]
                return True
        return False

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def lookup(self, key: str) -> Optional[Entry]:
        return self._entries.get(key)

    def deleted_at(self, key: str) -> Optional[int]:
        return self._deleted_keys.get(key)

    def get(self, fn: ComputedPropertyFunction) -> Any:
        """Return ``fn(entries)``, cached until the next mutation.

        The cache is keyed by ``fn`` itself: pass the same function object on
        every call. ``fn`` receives the live entries mapping and must not
        modify it.
        """
        if fn in self._cached_computed:
            return self._cached_computed[fn]

        value = fn(self._entries)
        self._cached_computed[fn] = value
        return value

    @property
    def hash(self) -> str:
        """Digest of the live entries, recomputed only after a mutation."""
        if not self._cached_hash:
            self._cached_hash = self.hash_function(canonical_dumps(self._entries))
        return self._cached_hash

    # ------------------------------------------------------------------
    # Update log
    # ------------------------------------------------------------------

    def get_updates(self) -> Updates:
        """Return the pending-updates mirror itself (not a copy). Treat as read-only."""
        return self._updates

    def export_updates(self) -> str:
        """Serialize the pending-updates mirror for a transport."""
        return canonical_dumps(self._updates)

    def clear_updates(self, acknowledged: Optional[Snapshot] = None) -> None:
        """Drain the pending-updates mirror.

        Without arguments everything pending is dropped. With an
        ``acknowledged`` snapshot (the updates as they were when they were
        synced), a pending record is dropped only if it still equals the
        acknowledged one, so writes made after the snapshot stay pending.

        Raises:
            InvalidSnapshotError: If ``acknowledged`` is not shaped like the
                updates mirror.
        """
        if acknowledged is None:
            self._updates = _empty_updates()
            return

        synced = parse_snapshot(acknowledged)

        pending_entries = self._updates["entries"]
        for key, record in list(synced["entries"].items()):
            current = pending_entries.get(key)
            if current is None:
                continue
            if not isinstance(record, (list, tuple)) or len(record) != 2:
                continue
            timestamp, value = record
            if current.timestamp == timestamp and current.data == value:
                del pending_entries[key]

        pending_deleted = self._updates["deletedKeys"]
        for key, timestamp in list(synced["deletedKeys"].items()):
            if key in pending_deleted and pending_deleted[key] == timestamp:
                del pending_deleted[key]

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        """Snapshot of entries and tombstones as plain JSON-compatible data."""
        return {
            "entries": {key: [e.timestamp, e.data] for key, e in self._entries.items()},
            "deletedKeys": dict(self._deleted_keys),
        }

    def export(self) -> str:
        """Serialized snapshot of entries and tombstones (pending updates excluded)."""
        return canonical_dumps({
            "entries": self._entries,
            "deletedKeys": self._deleted_keys,
        })

    def import_snapshot(self, data: Snapshot, clear_first: bool = True) -> ImportReport:
        """Load a snapshot produced by :meth:`export`.

        Entries are merged through :meth:`add`, so with ``clear_first=False``
        conflicting keys are resolved by timestamp. Tombstones are applied
        after all entries; a tombstone whose key was just imported as an
        entry is replayed through :meth:`remove`. A tombstone for a key with
        no live entry is written directly, but never moves an existing
        deletion to an earlier timestamp.

        Bad individual records are logged, listed in the returned report and
        skipped. A bad payload raises before anything is changed.

        Raises:
            InvalidSnapshotError: If the payload or its top-level fields are
                malformed.
        """
        snapshot = parse_snapshot(data)
        report = ImportReport()

        if clear_first:
            self.clear()

        for key, record in list(snapshot["entries"].items()):
            self._import_entry(key, record, report)

        for key, raw_ts in list(snapshot["deletedKeys"].items()):
            self._import_deleted_key(key, raw_ts, report)

        logger.debug(
            "Imported %d entries and %d deletions (%d skipped, %d superseded, %d reconciled)",
            report.imported_entries,
            report.imported_deletions,
            len(report.skipped),
            len(report.superseded),
            len(report.reconciled),
        )
        return report

    def _import_entry(self, key: Any, record: Any, report: ImportReport) -> None:
        def skip(reason: str) -> None:
            logger.warning("Invalid imported entry %r %r: %s", key, record, reason)
            report.skipped.append(ImportDiagnostic(str(key), "entry", record, reason))

        if not isinstance(key, str):
            skip("key is not a string")
            return

        parts = _split_entry_record(record, self.default_value)
        if parts is None:
            skip("expected [timestamp, data]")
            return

        raw_ts, value = parts
        timestamp = coerce_timestamp(raw_ts)
        if timestamp is None:
            skip("timestamp is not a positive integer")
            return

        try:
            accepted = self.add(key, timestamp, value)
        except InvalidEntryError as exc:
            skip(str(exc))
            return

        if accepted:
            report.imported_entries += 1
        else:
            existing_ts = self._existing_timestamp(key)
            logger.debug("Imported entry %r at %d superseded by record at %s", key, timestamp, existing_ts)
            report.superseded.append(
                ImportDiagnostic(key, "entry", record, f"existing record at {existing_ts} is newer")
            )

    def _import_deleted_key(self, key: Any, raw_ts: Any, report: ImportReport) -> None:
        timestamp = coerce_timestamp(raw_ts)
        if not isinstance(key, str) or timestamp is None:
            logger.warning("Invalid imported deletedKey %r %r", key, raw_ts)
            report.skipped.append(
                ImportDiagnostic(str(key), "deletedKey", raw_ts, "timestamp is not a positive integer")
            )
            return

        current = self._entries.get(key)
        if current is not None:
            logger.warning(
                "Import contains both imported entry and deleted key. Reconciling... %r %r %r",
                key,
                list(current),
                timestamp,
            )
            if self.remove(key, timestamp):
                report.imported_deletions += 1
                reason = "entry removed by newer or equal deletion"
            else:
                reason = f"entry at {current.timestamp} is newer; deletion ignored"
            report.reconciled.append(ImportDiagnostic(key, "deletedKey", raw_ts, reason))
            return

        # No live entry to compare against: record the tombstone directly.
        existing = self._deleted_keys.get(key)
        if existing is None or timestamp >= existing:
            self._deleted_keys[key] = timestamp
            report.imported_deletions += 1
        else:
            report.superseded.append(
                ImportDiagnostic(key, "deletedKey", raw_ts, f"existing deletion at {existing} is newer")
            )
