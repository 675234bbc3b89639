from __future__ import annotations

import fcntl
import logging
import math
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from repomon.merge import synthesize_minimal_record
from repomon.monitor_config import ConfidencePolicy
from repomon.rules import LIST_FIELDS, RuleTable, UnsupportedFieldValue, canonical_field_name, coerce_field_value
from repomon.schemas import CanonicalRecord, ManualEntry, Provenance, SourceType

logger = logging.getLogger(__name__)


class BusyLedgerError(RuntimeError):
    pass


class ManualEntryValidationError(ValueError):
    def __init__(self, *, entry_id: str, reason: str) -> None:
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"manual entry '{entry_id}' rejected: {reason}")


@runtime_checkable
class LedgerStore(Protocol):
    def append(self, entry: ManualEntry) -> None: ...

    def entries(self, repository_id: str) -> list[ManualEntry]: ...

    def repository_ids(self) -> list[str]: ...


class InMemoryLedgerStore:
    """Append-only entry lists keyed by repository id."""

    def __init__(self, entries: Iterable[ManualEntry] = ()) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, list[ManualEntry]] = {}
        for entry in entries:
            self.append(entry)

    def append(self, entry: ManualEntry) -> None:
        with self._guard:
            self._entries.setdefault(entry.repository_id, []).append(entry)

    def entries(self, repository_id: str) -> list[ManualEntry]:
        with self._guard:
            return list(self._entries.get(repository_id, ()))

    def repository_ids(self) -> list[str]:
        with self._guard:
            return sorted(self._entries)


def validate_manual_entry(entry: ManualEntry) -> ManualEntry:
    confidence = entry.confidence
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or math.isnan(confidence):
        raise ManualEntryValidationError(entry_id=entry.id, reason="confidence must be a number")
    if confidence < 0 or confidence > 1:
        raise ManualEntryValidationError(entry_id=entry.id, reason="confidence must be between 0 and 1")
    if not entry.field.strip():
        raise ManualEntryValidationError(entry_id=entry.id, reason="field must be non-empty")
    return entry


class ManualEntryLedger:
    """Manual entries plus the per-repository write locks that serialize appends."""

    def __init__(
        self,
        *,
        store: LedgerStore | None = None,
        rules: RuleTable | None = None,
        policy: ConfidencePolicy | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryLedgerStore()
        self._rules = rules or RuleTable()
        self._policy = policy or ConfidencePolicy()
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, repository_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(repository_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[repository_id] = lock
            return lock

    @contextmanager
    def repository_lock(self, repository_id: str) -> Iterator[None]:
        lock = self._lock_for(repository_id)
        with lock:
            yield

    def add(self, entry: ManualEntry) -> CanonicalRecord:
        validate_manual_entry(entry)
        with self.repository_lock(entry.repository_id):
            self.store.append(entry)
            entries = self.store.entries(entry.repository_id)
        logger.info("recorded manual entry %s for %s (%s)", entry.id, entry.repository_id, entry.field)
        return rebuild_from_ledger(entry.repository_id, entries, rules=self._rules, policy=self._policy)

    def rebuild(self, repository_id: str) -> CanonicalRecord:
        with self.repository_lock(repository_id):
            entries = self.store.entries(repository_id)
        return rebuild_from_ledger(repository_id, entries, rules=self._rules, policy=self._policy)


def _ledger_order(entry: ManualEntry) -> tuple[float, Any, str]:
    return (-entry.confidence, entry.timestamp, entry.id)


def rebuild_from_ledger(
    repository_id: str,
    entries: Iterable[ManualEntry],
    *,
    rules: RuleTable | None = None,
    policy: ConfidencePolicy | None = None,
) -> CanonicalRecord:
    """Fold manual entries into a record.

    The most confident entry wins each single-valued field, with the earliest
    timestamp breaking ties. List fields accumulate from every entry. The result
    depends only on the entries, never on insertion order or wall time.
    """
    rule_table = rules or RuleTable()
    confidence_policy = policy or ConfidencePolicy()
    ordered = sorted(entries, key=_ledger_order)
    if not ordered:
        return synthesize_minimal_record(
            repository_id,
            entity_id=repository_id,
            confidence=confidence_policy.minimal,
            reason="empty ledger",
        )

    scalars: dict[str, Any] = {}
    lists: dict[str, list[str]] = {field_name: [] for field_name in LIST_FIELDS}
    provenance: list[Provenance] = []
    for entry in ordered:
        field_name = canonical_field_name(entry.field)
        applied = False
        try:
            value = coerce_field_value(field_name, entry.value, rules=rule_table)
        except UnsupportedFieldValue as exc:
            logger.warning("manual entry %s for %s skipped: %s", entry.id, repository_id, exc)
        else:
            if field_name in LIST_FIELDS:
                lists[field_name].extend(value)
                applied = True
            elif field_name not in scalars:
                scalars[field_name] = value
                applied = True

        metadata: dict[str, Any] = {
            "field": field_name,
            "source": entry.source.value,
            "timestamp": entry.timestamp.isoformat(),
            "applied": applied,
        }
        if entry.notes:
            metadata["notes"] = entry.notes
        provenance.append(
            Provenance(
                source_type=SourceType.manual,
                source_identifier=entry.id,
                confidence=entry.confidence,
                metadata=metadata,
            )
        )

    return CanonicalRecord(
        id=repository_id,
        name=scalars.pop("name", repository_id),
        **scalars,
        **lists,
        data_sources=provenance,
        confidence=max(entry.confidence for entry in ordered),
        last_updated=max(entry.timestamp for entry in ordered),
    )


@contextmanager
def ledger_file_lock(path: Path) -> Iterator[Path]:
    lock_path = path.with_name(f".{path.name}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("w", encoding="utf-8")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as exc:
        handle.close()
        raise BusyLedgerError(f"ledger {path} is locked by another writer") from exc

    try:
        yield lock_path
    finally:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


def load_ledger_yaml(path: Path) -> list[ManualEntry]:
    if not path.exists():
        return []
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"ledger file {path} must contain a mapping")
    items = raw.get("entries") or []
    if not isinstance(items, list):
        raise ValueError(f"ledger file {path}: 'entries' must be a list")
    return [validate_manual_entry(ManualEntry.model_validate(item)) for item in items]


def save_ledger_yaml(path: Path, entries: Iterable[ManualEntry]) -> None:
    payload = {"entries": [entry.model_dump(mode="json", by_alias=True) for entry in entries]}
    path.parent.mkdir(parents=True, exist_ok=True)
    dumped = yaml.safe_dump(payload, sort_keys=False, allow_unicode=False)
    path.write_text(dumped, encoding="utf-8")


class YamlLedgerStore:
    """Ledger kept in one YAML file shared with other writers.

    Reads go to disk every time. An append takes the file lock, reloads the
    file and writes it back with the new entry, so entries written by other
    processes survive.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, entry: ManualEntry) -> None:
        with ledger_file_lock(self.path):
            entries = load_ledger_yaml(self.path)
            entries.append(entry)
            save_ledger_yaml(self.path, entries)

    def entries(self, repository_id: str) -> list[ManualEntry]:
        return [entry for entry in load_ledger_yaml(self.path) if entry.repository_id == repository_id]

    def repository_ids(self) -> list[str]:
        return sorted({entry.repository_id for entry in load_ledger_yaml(self.path)})
