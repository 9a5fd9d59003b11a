# Overview: Service-layer persistence manager; the single read/write path to the local store.

"""
Persistence Manager (store core)

WHY: Every read and write of the local database goes through one object so
that migration, normalization, atomic writes, snapshotting and corruption
recovery happen the same way for every caller.

DESIGN PRINCIPLES:
- All formerly process-wide state (storage key, backup policy, last
  snapshot time, recovery flag) lives on a PersistenceManager instance, so
  independent stores (per tenant, per test) never share state.
- Public entry points are total: they always return a value or a result
  object. Corruption and storage failures are absorbed into the sticky
  recovery flag instead of being raised.
- Writes go to `<key>__tmp` first and are then copied into `<key>`.
- A failed read is not "nothing stored": until the next successful read,
  safe_save refuses to write so an empty default never replaces real data.
- `lock` serializes read-modify-write cycles. Ledgers hold it from get()
  to safe_save(); it is re-entrant so nested saves (audit) do not block.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from ..ids import IdGenerator, UuidIdGenerator
from ..results import InitResult, SaveResult
from ..time_utils import now_iso
from ..validation import NormalizationReport, dumps_compact, normalize_db
from .backup_service import create_snapshot
from .kv_service import KeyValueStore
from .schema_service import SCHEMA_VERSION, coerce_version, default_db, migrate, safe_parse_json

logger = logging.getLogger(__name__)


DEFAULT_STORAGE_KEY = "erp_db"

RECOVERY_CORRUPTED_JSON = "corrupted_json"
RECOVERY_STORAGE_ERROR = "storage_error"

READ_FAILED_ERROR = "Local storage could not be read"


class StorageError(Exception):
    """Raised inside the save path when a write cannot be verified."""
    pass


@dataclass
class BackupPolicy:
    max_snapshots: int = 20
    cooldown_ms: int = 3000


@dataclass
class RecoveryState:
    active: bool = False
    reason: str = ""
    details: dict | None = None
    since: str | None = None

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "reason": self.reason,
            "details": dict(self.details) if self.details else None,
            "since": self.since,
        }


class PersistenceManager:
    """
    Owns the storage key, backup policy and recovery flag for one local store.

    Args:
        kv: Key-value collaborator holding serialized values
        storage_key: Canonical key of the database
        policy: Snapshot cap and cooldown
        ids: Identifier generator shared with the ledgers
        clock: Monotonic clock in seconds, used for the snapshot cooldown
        audit_sink: Optional callable receiving audit entries instead of
            the database's own auditLog
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        storage_key: str = DEFAULT_STORAGE_KEY,
        policy: BackupPolicy | None = None,
        ids: IdGenerator | None = None,
        clock: Callable[[], float] = time.monotonic,
        audit_sink: Callable[[dict], None] | None = None,
    ):
        key = str(storage_key or "").strip()
        self.kv = kv
        self.storage_key = key or DEFAULT_STORAGE_KEY
        self.policy = policy or BackupPolicy()
        self.ids = ids or UuidIdGenerator()
        self.clock = clock
        self.audit_sink = audit_sink
        self.last_report: NormalizationReport | None = None
        self._recovery = RecoveryState()
        self._last_snapshot_ms: float | None = None
        self._read_failed = False
        self.lock = threading.RLock()

    # =========================================================================
    # DERIVED KEYS
    # =========================================================================

    @property
    def tmp_key(self) -> str:
        return f"{self.storage_key}__tmp"

    @property
    def snapshots_key(self) -> str:
        return f"{self.storage_key}__snapshots"

    @property
    def backups_key(self) -> str:
        return f"{self.storage_key}__backups"

    @property
    def sync_key(self) -> str:
        return f"{self.storage_key}__sync"

    # =========================================================================
    # RECOVERY FLAG
    # =========================================================================

    def enable_recovery(self, reason: str, details: dict | None = None) -> None:
        logger.warning("Recovery mode enabled for %s: %s %s", self.storage_key, reason, details or "")
        self._recovery = RecoveryState(active=True, reason=reason or "", details=details, since=now_iso())

    def clear_recovery(self) -> None:
        self._recovery = RecoveryState()

    def recovery_status(self) -> dict:
        return self._recovery.to_dict()

    @property
    def in_recovery(self) -> bool:
        return self._recovery.active

    @property
    def read_failed(self) -> bool:
        """True while the last read of the database raised."""
        return self._read_failed

    # =========================================================================
    # READ PATH
    # =========================================================================

    def _read_raw(self) -> tuple[bool, str | None]:
        try:
            raw = self.kv.get(self.storage_key)
        except Exception as exc:
            logger.exception("Failed to read %s", self.storage_key)
            self._read_failed = True
            self.enable_recovery(RECOVERY_STORAGE_ERROR, {"message": str(exc)})
            return False, None
        self._read_failed = False
        return True, raw

    def _reset_corrupted(self, error: Exception | None, raw: str) -> dict:
        self.enable_recovery(
            RECOVERY_CORRUPTED_JSON,
            {"message": str(error) if error else "unparsable", "bytes": len(raw)},
        )
        fresh = default_db()
        self.safe_save(fresh, force_snapshot=True, skip_normalize=True)
        return fresh

    def init(self) -> InitResult:
        """
        Load, migrate, normalize and re-persist the stored database.

        - Corrupted JSON: reset to defaults, force a snapshot, enter recovery.
        - Nothing stored: write a fresh default (first run).
        - Otherwise: migrate + normalize and report any warnings.
        """
        res = InitResult(ok=True, storage_key=self.storage_key, version_from=None, version_to=SCHEMA_VERSION)

        readable, raw = self._read_raw()
        if not readable:
            res.ok = False
            res.warnings.append("Local storage could not be read.")
            return res

        if not raw:
            saved = self.safe_save(default_db())
            res.ok = saved.ok
            res.version_from = 0
            return res

        ok, value, error = safe_parse_json(raw)
        if not ok:
            self._reset_corrupted(error, raw)
            res.repaired = True
            res.warnings.append("Stored database was corrupted and has been reset to defaults (recovery mode).")
            return res

        from_version = coerce_version(value.get("schemaVersion")) if isinstance(value, dict) else 0
        res.version_from = from_version
        mig_report: dict = {"migrations": []}
        if isinstance(value, dict) and from_version != SCHEMA_VERSION:
            value = migrate(value, from_version, SCHEMA_VERSION, mig_report)

        db, report = normalize_db(value)
        self.last_report = report
        res.migrations = mig_report["migrations"] + report.migrations
        res.warnings.extend(report.warnings)

        saved = self.safe_save(db, skip_normalize=True)
        res.ok = saved.ok
        if not saved.ok:
            res.warnings.extend(saved.warnings)
        res.repaired = bool(res.warnings)
        return res

    def get(self) -> dict:
        """
        Current database, normalized on every call.

        Never raises: a corrupted value triggers the recovery path and a fresh
        default database is returned. When the store cannot be read the default
        is returned too, but safe_save() refuses to persist until a later read
        succeeds.
        """
        _, raw = self._read_raw()
        if not raw:
            return default_db()

        ok, value, error = safe_parse_json(raw)
        if not ok:
            return self._reset_corrupted(error, raw)

        db, report = normalize_db(value)
        self.last_report = report
        return db

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    def _snapshot_due(self, now_ms: float) -> bool:
        if self._last_snapshot_ms is None:
            return True
        return now_ms - self._last_snapshot_ms >= self.policy.cooldown_ms

    def safe_save(self, db: Any, *, force_snapshot: bool = False, skip_normalize: bool = False) -> SaveResult:
        """
        Normalize (unless skipped), write atomically and snapshot when due.

        Any failure enables recovery mode with reason storage_error and is
        returned as ok=False; nothing is raised past this method. The
        caller's object is never stamped or otherwise modified.
        """
        with self.lock:
            return self._save(db, force_snapshot=force_snapshot, skip_normalize=skip_normalize)

    def _save(self, db: Any, *, force_snapshot: bool, skip_normalize: bool) -> SaveResult:
        if self._read_failed:
            logger.warning("Refusing to save %s after a failed read", self.storage_key)
            return SaveResult(ok=False, warnings=[READ_FAILED_ERROR], error=READ_FAILED_ERROR)

        try:
            warnings: list[str] = []
            if skip_normalize:
                fixed = db
            else:
                fixed, report = normalize_db(db)
                self.last_report = report
                warnings = list(report.warnings)

            if isinstance(fixed, dict) and isinstance(fixed.get("meta"), dict):
                fixed = {**fixed, "meta": {**fixed["meta"], "updatedAt": now_iso()}}

            text = dumps_compact(fixed)
            self.kv.set(self.tmp_key, text)
            staged = self.kv.get(self.tmp_key)
            if staged != text:
                raise StorageError("Temporary write could not be verified")
            self.kv.set(self.storage_key, staged)
            self.kv.delete(self.tmp_key)

            now_ms = self.clock() * 1000
            snapshot_created = False
            if force_snapshot or self._snapshot_due(now_ms):
                create_snapshot(
                    self.kv,
                    self.storage_key,
                    fixed,
                    max_snapshots=self.policy.max_snapshots,
                    snapshot_id=self.ids.new("snap"),
                )
                self._last_snapshot_ms = now_ms
                snapshot_created = True

            return SaveResult(ok=True, warnings=warnings, snapshot_created=snapshot_created)
        except Exception as exc:
            logger.exception("Failed to persist database under %s", self.storage_key)
            self.enable_recovery(RECOVERY_STORAGE_ERROR, {"message": str(exc)})
            return SaveResult(ok=False, warnings=[str(exc)], error=str(exc))

    # =========================================================================
    # AUXILIARY VALUES
    # =========================================================================

    def read_json(self, key: str, default: Any = None) -> Any:
        """Parse an auxiliary value (snapshots, backups, sync state); `default` if absent or unreadable."""
        try:
            raw = self.kv.get(key)
        except Exception:
            logger.exception("Failed to read %s", key)
            return default
        if not raw:
            return default
        ok, value, _ = safe_parse_json(raw)
        return value if ok else default

    def write_json(self, key: str, value: Any) -> bool:
        try:
            self.kv.set(key, dumps_compact(value))
            return True
        except Exception as exc:
            logger.exception("Failed to write %s", key)
            self.enable_recovery(RECOVERY_STORAGE_ERROR, {"message": str(exc), "key": key})
            return False
