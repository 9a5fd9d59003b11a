# Overview: Service-layer schema definition for the local database; versioned shapes and forward migrations.

"""
Local database schema and migration pipeline.

VERSIONS (closed set):
- v0: untagged legacy data, any shape.
- v1: base collections (meta, users, settings, estoque, vendas, caixa,
  devedores, auditLog).
- v2: ledger collections (stockMovements, cashSessions, saleVoids,
  fiscalQueue) and the open cash-session pointer on caixa.

RULES:
- Each step upgrades exactly one version (v -> v+1).
- A step only guarantees the shape introduced by its version; it never
  deletes or rewrites user data that is already valid.
- Migrating a database that is already at the target version is a no-op.
"""
from __future__ import annotations

import json
from typing import Any, Callable

from ..time_utils import now_iso


SCHEMA_VERSION = 2
SCHEMA_VERSIONS = (0, 1, 2)


def _is_obj(value: Any) -> bool:
    return isinstance(value, dict)


def safe_parse_json(text: str) -> tuple[bool, Any, Exception | None]:
    """
    Parse JSON without raising.

    Returns (ok, value, error). Used wherever persisted text may be corrupted.
    """
    try:
        return True, json.loads(text), None
    except (TypeError, ValueError, RecursionError) as exc:
        return False, None, exc


def default_db() -> dict:
    """A fresh database at the current schema version. Always a new object."""
    ts = now_iso()
    return {
        "schemaVersion": SCHEMA_VERSION,
        "meta": {"createdAt": ts, "updatedAt": ts},
        "users": [],
        "settings": {},
        "estoque": [],
        "vendas": [],
        "caixa": {"aberto": False, "currentSessionId": None, "movimentos": [], "aberturas": []},
        "cashSessions": [],
        "devedores": [],
        "auditLog": [],
        "stockMovements": [],
        "saleVoids": [],
        "fiscalQueue": [],
    }


# =============================================================================
# MIGRATION STEPS
# =============================================================================

def _v0_to_v1(db: dict) -> dict:
    meta = db.get("meta") if _is_obj(db.get("meta")) else {}
    meta["createdAt"] = meta.get("createdAt") or now_iso()
    meta["updatedAt"] = meta.get("updatedAt") or meta["createdAt"]
    db["meta"] = meta

    for key in ("users", "estoque", "vendas", "devedores", "auditLog"):
        if not isinstance(db.get(key), list):
            db[key] = []
    if not _is_obj(db.get("settings")):
        db["settings"] = {}

    caixa = db.get("caixa") if _is_obj(db.get("caixa")) else {"aberto": False}
    caixa["movimentos"] = caixa.get("movimentos") if isinstance(caixa.get("movimentos"), list) else []
    caixa["aberturas"] = caixa.get("aberturas") if isinstance(caixa.get("aberturas"), list) else []
    db["caixa"] = caixa
    return db


def _v1_to_v2(db: dict) -> dict:
    for key in ("stockMovements", "cashSessions", "saleVoids", "fiscalQueue"):
        if not isinstance(db.get(key), list):
            db[key] = []

    caixa = db.get("caixa") if _is_obj(db.get("caixa")) else {}
    caixa.setdefault("currentSessionId", None)
    caixa["aberto"] = bool(caixa.get("aberto")) and bool(caixa.get("currentSessionId"))
    db["caixa"] = caixa
    return db


MIGRATIONS: dict[int, Callable[[dict], dict]] = {
    0: _v0_to_v1,
    1: _v1_to_v2,
}


def _check_registry() -> None:
    for version in SCHEMA_VERSIONS[:-1]:
        if version not in MIGRATIONS:
            raise RuntimeError(f"Missing migration step v{version} -> v{version + 1}")
    if SCHEMA_VERSIONS[-1] != SCHEMA_VERSION:
        raise RuntimeError("SCHEMA_VERSIONS must end at SCHEMA_VERSION")


_check_registry()


def coerce_version(value: Any) -> int:
    """Stored schemaVersion as an int; anything unusable counts as v0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def migrate(
    db: Any,
    from_version: int | None = 0,
    to_version: int = SCHEMA_VERSION,
    report: dict | None = None,
) -> dict:
    """
    Upgrade `db` one version at a time from `from_version` to `to_version`.

    Every applied step is appended to report["migrations"] as {from, to, at}.
    Non-object input is replaced by an empty object before the first step.
    """
    if report is None:
        report = {}
    report.setdefault("migrations", [])

    version = max(0, from_version or 0)
    target = min(to_version, SCHEMA_VERSION)
    current = db if _is_obj(db) else {}

    while version < target:
        step = MIGRATIONS[version]
        current = step(current)
        current["schemaVersion"] = version + 1
        report["migrations"].append({"from": version, "to": version + 1, "at": now_iso()})
        version += 1

    return current
