# Overview: Service-layer sync with the remote key-value service; pull+merge, replace, push, staleness check.

"""
Remote sync.

WHY: The remote service keeps one copy of each tenant's database. A device
that worked offline must reconcile with it rather than overwrite it, so
pulls go through the merge engine and the local copy is backed up first.

REMOTE RESPONSES:
- load:   {ok, exists, db, meta: {rev, updatedAt}} or {ok: false, error: "not_found"}
- save:   {ok, savedAt, bytes, rev}
- status: {ok, exists, rev, updatedAt, serverTime}
Any of them may carry {blocked: true}: the account is suspended and nothing
may be written, locally or remotely.

The last revision seen is kept under `<key>__sync` as {rev, updatedAt, syncedAt}.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import as_int, normalize_db
from .backup_service import push_backup
from .merge_service import PREFER_CURRENT, merge_databases
from .persistence_service import READ_FAILED_ERROR

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


ERROR_BLOCKED = "account_blocked"
ERROR_NOT_FOUND = "not_found"


class SyncError(Exception):
    """Raised when the remote answer cannot be used."""

    def __init__(self, message: str, *, blocked: bool = False):
        super().__init__(message)
        self.blocked = blocked


class RemoteStore(Protocol):
    def load(self, token: str) -> dict:
        ...

    def save(self, token: str, db: dict, meta: dict | None = None) -> dict:
        ...

    def status(self, token: str) -> dict:
        ...


class HttpRemoteStore:
    """
    RemoteStore over HTTP.

    Transport failures and non-JSON answers come back as {ok: False, error};
    nothing is raised to the sync operations.
    """

    def __init__(self, base_url: str, timeout: float = 15.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Remote %s %s failed: %s", method, path, exc)
            return {"ok": False, "error": str(exc) or exc.__class__.__name__}

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return {"ok": False, "error": f"Unexpected response (HTTP {response.status_code})"}
        if response.is_error and not data.get("blocked"):
            data = {**data, "ok": False}
            data.setdefault("error", f"HTTP {response.status_code}")
        return data

    def load(self, token: str) -> dict:
        return self._request("GET", "/api/data", params={"token": token})

    def save(self, token: str, db: dict, meta: dict | None = None) -> dict:
        return self._request("POST", "/api/data", json={"token": token, "db": db, "meta": meta or {}})

    def status(self, token: str) -> dict:
        return self._request("GET", "/api/sync/status", params={"token": token})

    def close(self) -> None:
        self.client.close()


# =============================================================================
# SYNC STATE
# =============================================================================

def get_sync_state(manager: "PersistenceManager") -> dict:
    state = manager.read_json(manager.sync_key, {})
    return state if isinstance(state, dict) else {}


def _record_sync(manager: "PersistenceManager", rev: int | None, updated_at: Any) -> None:
    state = get_sync_state(manager)
    if rev is not None:
        state["rev"] = rev
    if updated_at:
        state["updatedAt"] = updated_at
    state["syncedAt"] = now_iso()
    manager.write_json(manager.sync_key, state)


def _check(resp: Any, fallback: str) -> dict:
    if not isinstance(resp, dict):
        raise SyncError(fallback)
    if resp.get("blocked"):
        raise SyncError(ERROR_BLOCKED, blocked=True)
    if not resp.get("ok"):
        raise SyncError(str(resp.get("error") or fallback))
    return resp


def _load(remote: RemoteStore, token: str) -> dict | None:
    """Remote payload with a db object, or None when nothing is stored."""
    try:
        resp = _check(remote.load(token), "load_failed")
    except SyncError as e:
        if str(e) == ERROR_NOT_FOUND:
            return None
        raise
    if resp.get("exists") is False or resp.get("db") is None:
        return None
    if not isinstance(resp.get("db"), dict):
        raise SyncError("Remote database is not an object")
    return resp


def _remote_rev(payload: dict) -> tuple[int | None, Any]:
    meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
    rev = as_int(meta["rev"], 0) if "rev" in meta else None
    return rev, meta.get("updatedAt") or payload.get("savedAt")


# =============================================================================
# OPERATIONS
# =============================================================================

def check_status(manager: "PersistenceManager", remote: RemoteStore, token: str) -> OperationResult:
    """Compare the remote revision with the last one synced here."""
    try:
        resp = _check(remote.status(token), "status_failed")
    except SyncError as e:
        return OperationResult.failure(str(e), blocked=e.blocked)

    remote_rev = as_int(resp.get("rev"), 0)
    local_rev = as_int(get_sync_state(manager).get("rev"), 0)
    return OperationResult.success(
        exists=bool(resp.get("exists", remote_rev > 0)),
        rev=remote_rev,
        local_rev=local_rev,
        updated_at=resp.get("updatedAt"),
        server_time=resp.get("serverTime"),
        stale=remote_rev > local_rev,
    )


def pull_and_merge(
    manager: "PersistenceManager",
    remote: RemoteStore,
    token: str,
    prefer: str = PREFER_CURRENT,
    sum_stock_qty: bool = True,
) -> OperationResult:
    """
    Merge the remote database into the local one and persist the result.

    A blocked account or a failed load writes nothing. An empty remote is a
    successful no-op.
    """
    try:
        payload = _load(remote, token)
    except SyncError as e:
        return OperationResult.failure(str(e), blocked=e.blocked)
    if payload is None:
        return OperationResult.success(changed=False, report=None, rev=None)

    remote_db, norm = normalize_db(payload["db"])
    with manager.lock:
        current = manager.get()
        result = merge_databases(current, remote_db, prefer=prefer, sum_stock_qty=sum_stock_qty)

        push_backup(manager, current, "before_sync_merge")
        saved = manager.safe_save(result.db, force_snapshot=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", report=result.report.to_dict())

    rev, updated_at = _remote_rev(payload)
    _record_sync(manager, rev, updated_at)
    logger.info("Pulled and merged remote rev %s into %s", rev, manager.storage_key)
    return OperationResult.success(
        warnings=norm.warnings + result.report.warnings + saved.warnings,
        changed=True,
        report=result.report.to_dict(),
        rev=rev,
    )


def pull_and_replace(manager: "PersistenceManager", remote: RemoteStore, token: str) -> OperationResult:
    """Replace the local database with the remote one (local copy backed up first)."""
    try:
        payload = _load(remote, token)
    except SyncError as e:
        return OperationResult.failure(str(e), blocked=e.blocked)
    if payload is None:
        return OperationResult.failure("Nothing stored remotely")

    remote_db, norm = normalize_db(payload["db"])
    with manager.lock:
        push_backup(manager, manager.get(), "before_sync_replace")
        saved = manager.safe_save(remote_db, force_snapshot=True, skip_normalize=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=norm.warnings)

    rev, updated_at = _remote_rev(payload)
    _record_sync(manager, rev, updated_at)
    logger.info("Replaced %s with remote rev %s", manager.storage_key, rev)
    return OperationResult.success(warnings=norm.warnings, changed=True, rev=rev)


def push(
    manager: "PersistenceManager",
    remote: RemoteStore,
    token: str,
    meta: dict | None = None,
) -> OperationResult:
    """Send the local database to the remote service and remember the new rev."""
    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    try:
        resp = _check(
            remote.save(token, db, meta or {"savedAt": now_iso(), "source": "pdvstore"}),
            "save_failed",
        )
    except SyncError as e:
        return OperationResult.failure(str(e), blocked=e.blocked)

    rev = as_int(resp.get("rev"), 0)
    _record_sync(manager, rev, resp.get("savedAt"))
    logger.info("Pushed %s to remote as rev %s", manager.storage_key, rev)
    return OperationResult.success(rev=rev, saved_at=resp.get("savedAt"), bytes=resp.get("bytes"))
