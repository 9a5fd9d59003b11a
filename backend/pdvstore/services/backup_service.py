# Overview: Service-layer snapshots, safety backups and checksummed export/import of the local database.

"""
Snapshot & Backup Subsystem

WHY: Operators need two ways back from a bad state: automatic point-in-time
snapshots taken by the save path, and a portable export file they can keep
off-device. Both are side doors into the same store, so anything coming back
in always passes through normalization before it is persisted.

STORAGE:
- `<key>__snapshots`: [{id, at, schemaVersion, counts, data}], most recent
  first, capped at the policy's max_snapshots.
- `<key>__backups`: [{id, ts, reason, db}], most recent first, capped at
  BACKUP_CAP. Written right before the whole database is replaced.

EXPORT FORMAT:
    {"__meta": {"type": "erp_backup", "schemaVersion", "exportedAt", "checksum32"}, "db": {...}}

The checksum is taken over the compact serialization of the payload with
`checksum32` absent, so verification re-serializes the parsed file the same
way and compares.
"""
from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import checksum32, dumps_compact, normalize_db
from .concurrency import serialized
from .merge_service import PREFER_CURRENT, merge_databases
from .schema_service import SCHEMA_VERSION, coerce_version, migrate, safe_parse_json

if TYPE_CHECKING:
    from .kv_service import KeyValueStore
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


BACKUP_TYPE = "erp_backup"
BACKUP_CAP = 20

SUMMARY_COLLECTIONS = (
    "estoque",
    "vendas",
    "devedores",
    "auditLog",
    "stockMovements",
    "cashSessions",
    "saleVoids",
)


class BackupError(Exception):
    """Raised when a backup file cannot be used."""
    pass


def _read_list(kv: "KeyValueStore", key: str) -> list:
    raw = kv.get(key)
    if not raw:
        return []
    ok, value, _ = safe_parse_json(raw)
    if not ok or not isinstance(value, list):
        logger.warning("Ignoring unreadable list stored under %s", key)
        return []
    return value


def _count(db: dict, key: str) -> int:
    value = db.get(key)
    return len(value) if isinstance(value, list) else 0


# =============================================================================
# SNAPSHOTS
# =============================================================================

def create_snapshot(
    kv: "KeyValueStore",
    storage_key: str,
    db: dict,
    *,
    max_snapshots: int = 20,
    snapshot_id: str,
) -> str:
    """
    Push a full copy of `db` to the front of the snapshot list.

    Entries beyond `max_snapshots` are dropped from the tail. Storage errors
    propagate; the save path turns them into recovery mode.
    """
    key = f"{storage_key}__snapshots"
    snapshots = _read_list(kv, key)
    snapshots.insert(0, {
        "id": snapshot_id,
        "at": now_iso(),
        "schemaVersion": db.get("schemaVersion", SCHEMA_VERSION),
        "counts": {"estoque": _count(db, "estoque"), "vendas": _count(db, "vendas")},
        "data": db,
    })
    del snapshots[max(0, max_snapshots):]
    kv.set(key, dumps_compact(snapshots))
    return snapshot_id


def list_snapshots(kv: "KeyValueStore", storage_key: str) -> list[dict]:
    """Snapshot metadata, most recent first. Never returns the data bodies."""
    try:
        snapshots = _read_list(kv, f"{storage_key}__snapshots")
    except Exception:
        logger.exception("Failed to read snapshots for %s", storage_key)
        return []
    return [
        {
            "id": s.get("id"),
            "at": s.get("at"),
            "schemaVersion": s.get("schemaVersion"),
            "counts": s.get("counts") or {},
        }
        for s in snapshots
        if isinstance(s, dict)
    ]


@serialized
def restore_snapshot(manager: "PersistenceManager", snapshot_id: str) -> OperationResult:
    snapshots = manager.read_json(manager.snapshots_key, [])
    if not isinstance(snapshots, list):
        snapshots = []
    found = next(
        (s for s in snapshots if isinstance(s, dict) and s.get("id") == snapshot_id),
        None,
    )
    if found is None:
        return OperationResult.failure("Snapshot not found")

    return _replace_db(manager, found.get("data"), reason=f"before_restore:{snapshot_id}", snapshot_id=snapshot_id)


# =============================================================================
# SAFETY BACKUPS
# =============================================================================

@serialized
def push_backup(manager: "PersistenceManager", db: dict, reason: str) -> str | None:
    """
    Keep a copy of `db` before it is replaced wholesale.

    Returns the backup id, or None when the ring could not be written or
    the database itself could not be read (an empty default is not worth a
    slot in the ring).
    """
    if manager.read_failed:
        return None
    backups = manager.read_json(manager.backups_key, [])
    if not isinstance(backups, list):
        backups = []
    backup_id = manager.ids.new("bkp")
    backups.insert(0, {"id": backup_id, "ts": now_iso(), "reason": reason, "db": db})
    del backups[BACKUP_CAP:]
    if not manager.write_json(manager.backups_key, backups):
        return None
    return backup_id


def list_backups(manager: "PersistenceManager") -> list[dict]:
    backups = manager.read_json(manager.backups_key, [])
    if not isinstance(backups, list):
        return []
    out = []
    for b in backups:
        if not isinstance(b, dict):
            continue
        data = b.get("db") if isinstance(b.get("db"), dict) else {}
        out.append({
            "id": b.get("id"),
            "ts": b.get("ts"),
            "reason": b.get("reason"),
            "counts": {"estoque": _count(data, "estoque"), "vendas": _count(data, "vendas")},
        })
    return out


@serialized
def restore_backup(manager: "PersistenceManager", backup_id: str) -> OperationResult:
    backups = manager.read_json(manager.backups_key, [])
    if not isinstance(backups, list):
        backups = []
    found = next(
        (b for b in backups if isinstance(b, dict) and b.get("id") == backup_id),
        None,
    )
    if found is None:
        return OperationResult.failure("Backup not found")

    return _replace_db(manager, found.get("db"), reason=f"before_restore_backup:{backup_id}", backup_id=backup_id)


def _replace_db(manager: "PersistenceManager", data: Any, *, reason: str, **extra: Any) -> OperationResult:
    """Normalize `data`, back up the current database, then persist with a forced snapshot."""
    db, report = normalize_db(data)
    push_backup(manager, manager.get(), reason)

    saved = manager.safe_save(db, force_snapshot=True, skip_normalize=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=report.warnings)

    logger.info("Database %s replaced (%s)", manager.storage_key, reason)
    return OperationResult.success(warnings=report.warnings, **extra)


# =============================================================================
# EXPORT / IMPORT
# =============================================================================

def export_db(db: dict, pretty: bool = True) -> str:
    """
    Serialize `db` as a checksummed backup file.

    The checksum covers the compact serialization of {__meta, db} taken
    before checksum32 is inserted into __meta.
    """
    version = db.get("schemaVersion", SCHEMA_VERSION) if isinstance(db, dict) else SCHEMA_VERSION
    payload = {
        "__meta": {
            "type": BACKUP_TYPE,
            "schemaVersion": version,
            "exportedAt": now_iso(),
        },
        "db": db,
    }
    payload["__meta"]["checksum32"] = checksum32(dumps_compact(payload))

    if pretty:
        return json.dumps(payload, ensure_ascii=False, indent=2)
    return dumps_compact(payload)


def _parse_backup(text: str) -> tuple[dict, list[str]]:
    """
    Parse a backup file and verify its checksum.

    Returns (payload, warnings). Raises BackupError when there is no usable db.
    """
    ok, obj, _ = safe_parse_json(text)
    if not ok:
        raise BackupError("Backup file is not valid JSON")
    if not isinstance(obj, dict):
        raise BackupError("Backup file is not a JSON object")
    if not isinstance(obj.get("db"), dict):
        raise BackupError("Backup file has no db object")

    warnings: list[str] = []
    meta = obj.get("__meta")
    if not isinstance(meta, dict):
        warnings.append("Backup metadata is missing.")
        return obj, warnings

    if meta.get("type") != BACKUP_TYPE:
        warnings.append(f"Unknown backup type: {meta.get('type')!r}.")

    expected = meta.get("checksum32")
    if not expected:
        warnings.append("Backup has no checksum; integrity not verified.")
    else:
        clone = copy.deepcopy(obj)
        clone["__meta"].pop("checksum32", None)
        actual = checksum32(dumps_compact(clone))
        if actual != expected:
            warnings.append(f"Checksum mismatch (expected {expected}, got {actual}); the file may have been altered.")

    return obj, warnings


def preview_import(text: str) -> OperationResult:
    """Inspect a backup file without touching the store."""
    try:
        obj, warnings = _parse_backup(text)
    except BackupError as e:
        return OperationResult.failure(str(e))

    db = obj["db"]
    meta = obj.get("__meta") if isinstance(obj.get("__meta"), dict) else {}
    summary = {
        "schemaVersion": db.get("schemaVersion", meta.get("schemaVersion")),
        "exportedAt": meta.get("exportedAt"),
        "counts": {key: _count(db, key) for key in SUMMARY_COLLECTIONS},
    }
    return OperationResult.success(warnings=warnings, summary=summary)


@serialized
def import_db(manager: "PersistenceManager", text: str, merge: bool = False) -> OperationResult:
    """
    Replace the local database with the contents of a backup file.

    merge=True is rejected: reconciling two databases goes through
    merge_service.merge_databases, never through import.
    """
    if merge:
        return OperationResult.failure(
            "Merge import is not supported; use the merge engine to reconcile databases"
        )

    try:
        obj, warnings = _parse_backup(text)
    except BackupError as e:
        return OperationResult.failure(str(e))

    data = obj["db"]
    report: dict = {"migrations": []}
    from_version = coerce_version(data.get("schemaVersion"))
    if from_version < SCHEMA_VERSION:
        data = migrate(data, from_version, SCHEMA_VERSION, report)

    db, norm = normalize_db(data)
    warnings.extend(norm.warnings)
    push_backup(manager, manager.get(), "before_import")

    saved = manager.safe_save(db, force_snapshot=True, skip_normalize=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=warnings)

    logger.info("Backup imported into %s", manager.storage_key)
    return OperationResult.success(
        warnings=warnings,
        migrations=report["migrations"] + norm.migrations,
        counts={key: _count(db, key) for key in SUMMARY_COLLECTIONS},
    )


@serialized
def merge_backup(
    manager: "PersistenceManager",
    text: str,
    prefer: str = PREFER_CURRENT,
    sum_stock_qty: bool = True,
) -> OperationResult:
    """Reconcile a backup file with the local database through the merge engine."""
    try:
        obj, warnings = _parse_backup(text)
    except BackupError as e:
        return OperationResult.failure(str(e))

    incoming, norm = normalize_db(obj["db"])
    current = manager.get()
    result = merge_databases(current, incoming, prefer=prefer, sum_stock_qty=sum_stock_qty)

    push_backup(manager, current, "before_merge_import")
    saved = manager.safe_save(result.db, force_snapshot=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", report=result.report.to_dict())

    return OperationResult.success(
        warnings=warnings + norm.warnings + result.report.warnings + saved.warnings,
        report=result.report.to_dict(),
    )
