from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field
from typing import Any

from .services.schema_service import SCHEMA_VERSION, coerce_version, default_db, migrate
from .time_utils import now_iso

"""
Normalization invariants (authoritative)

- normalize_db() never raises; it returns a database plus a report.
- Every collection is present with the right container type afterwards.
- Fixes are cumulative: already-valid data passes through unchanged.
- normalize_db(normalize_db(x)) == normalize_db(x) (fixed point), so the
  save path may normalize as often as it likes.
- meta.updatedAt is never rewritten here when present; the save path owns it.
"""


# FNV-1a 32-bit parameters
FNV_OFFSET = 2166136261
FNV_PRIME = 16777619

MOVEMENT_TYPES = ("entrada", "saida", "ajuste", "perda", "devolucao")
NEGATIVE_MOVEMENTS = ("saida", "perda")
POSITIVE_MOVEMENTS = ("entrada", "devolucao")

SALE_ACTIVE = "ativa"
SALE_CANCELLED = "cancelada"

LIST_COLLECTIONS = (
    "users",
    "estoque",
    "vendas",
    "cashSessions",
    "devedores",
    "auditLog",
    "stockMovements",
    "saleVoids",
    "fiscalQueue",
)
OBJECT_COLLECTIONS = ("settings", "caixa")
# Collections whose entries must be objects; anything else is dropped.
RECORD_COLLECTIONS = (
    "users",
    "estoque",
    "vendas",
    "cashSessions",
    "devedores",
    "auditLog",
    "stockMovements",
    "saleVoids",
)


@dataclass
class NormalizationReport:
    at: str
    ok: bool = True
    warnings: list[str] = field(default_factory=list)
    fixed: list[str] = field(default_factory=list)
    migrations: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "at": self.at,
            "warnings": list(self.warnings),
            "fixed": list(self.fixed),
            "migrations": list(self.migrations),
        }


# =============================================================================
# COERCION HELPERS
# =============================================================================

def is_obj(value: Any) -> bool:
    return isinstance(value, dict)


def as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def as_num(value: Any, default: Any = 0) -> Any:
    """
    Coerce to a finite number.

    Accepts native numbers and Brazilian-locale strings ("1.234,56" -> 1234.56).
    Booleans, non-finite values and garbage yield `default`.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        s = value.strip().replace(".", "").replace(",", ".", 1)
        try:
            n = float(s)
        except ValueError:
            return default
        return n if math.isfinite(n) else default
    return default


_MISSING = object()


def as_int(value: Any, default: int = 0) -> int:
    n = as_num(value, _MISSING)
    if n is _MISSING:
        return default
    return int(n)


def dumps_compact(value: Any) -> str:
    """Compact JSON: the form written to the store and hashed by checksum32."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def checksum32(text: str) -> str:
    """
    FNV-1a 32-bit hash of `text`, as 8 lowercase hex digits.

    One round per UTF-16 code unit (astral characters count as two), so the
    value matches checksums written by the browser client for the same text.
    Detects accidental corruption of backup files; not a security primitive.
    """
    data = text.encode("utf-16-le", "surrogatepass")
    h = FNV_OFFSET
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return f"{h:08x}"


def enforce_movement_sign(movement_type: str, delta: int) -> int:
    """Apply the stock-movement sign rule for `movement_type`."""
    if movement_type in NEGATIVE_MOVEMENTS and delta > 0:
        return -delta
    if movement_type in POSITIVE_MOVEMENTS and delta < 0:
        return -delta
    return delta


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_db(value: Any) -> tuple[dict, NormalizationReport]:
    """
    Validate + normalize an arbitrary parsed value into a database.

    The input is never mutated. Non-object input is discarded and replaced
    by a fresh default database.
    """
    report = NormalizationReport(at=now_iso())

    if not is_obj(value):
        report.warnings.append("Invalid database replaced with defaults.")
        report.fixed.append("replaced_with_defaults")
        return default_db(), report

    db = copy.deepcopy(value)

    _normalize_version(db, report)
    _normalize_meta(db, report)
    _normalize_containers(db, report)
    _normalize_products(db, report)
    _normalize_sales(db, report)
    _normalize_movements(db, report)
    _normalize_cash(db, report)
    _normalize_voids(db, report)

    return db, report


def _normalize_version(db: dict, report: NormalizationReport) -> None:
    version = coerce_version(db.get("schemaVersion"))
    if version > SCHEMA_VERSION:
        report.warnings.append(
            f"Schema version {version} is newer than supported {SCHEMA_VERSION}; treated as current."
        )
        db["schemaVersion"] = SCHEMA_VERSION
        return
    if version < SCHEMA_VERSION:
        mig_report: dict = {"migrations": []}
        migrate(db, version, SCHEMA_VERSION, mig_report)
        report.migrations.extend(mig_report["migrations"])
        report.fixed.append(f"migrated_v{version}_to_v{SCHEMA_VERSION}")
    db["schemaVersion"] = SCHEMA_VERSION


def _normalize_meta(db: dict, report: NormalizationReport) -> None:
    meta = db.get("meta")
    if not is_obj(meta):
        meta = {}
        report.fixed.append("meta")
    if not isinstance(meta.get("createdAt"), str) or not meta.get("createdAt"):
        meta["createdAt"] = now_iso()
    if not isinstance(meta.get("updatedAt"), str) or not meta.get("updatedAt"):
        meta["updatedAt"] = meta["createdAt"]
    db["meta"] = meta


def _normalize_containers(db: dict, report: NormalizationReport) -> None:
    for key in LIST_COLLECTIONS:
        current = db.get(key)
        if isinstance(current, list):
            continue
        if current is not None:
            report.warnings.append(f"Collection {key} had an invalid type and was reset.")
        report.fixed.append(key)
        db[key] = []

    for key in OBJECT_COLLECTIONS:
        current = db.get(key)
        if is_obj(current):
            continue
        if current is not None:
            report.warnings.append(f"Collection {key} had an invalid type and was reset.")
        report.fixed.append(key)
        db[key] = {}

    for key in RECORD_COLLECTIONS:
        entries = db[key]
        kept = [e for e in entries if is_obj(e)]
        if len(kept) != len(entries):
            report.warnings.append(f"{len(entries) - len(kept)} invalid entries removed from {key}.")
            db[key] = kept


def _normalize_products(db: dict, report: NormalizationReport) -> None:
    seen: set[str] = set()
    kept = []
    for p in db["estoque"]:
        p["cod"] = as_str(p.get("cod")).strip()
        p["nome"] = as_str(p.get("nome")).strip()
        p["qtd"] = as_int(p.get("qtd"), 0)
        p["min"] = as_int(p.get("min"), 0)
        p["custo_c"] = as_int(p.get("custo_c"), 0)
        p["preco_c"] = as_int(p.get("preco_c"), 0)
        p["lucro_p"] = as_num(p.get("lucro_p"), 0)

        code = p["cod"]
        label = code or "(no code)"
        if not code and p["nome"]:
            report.warnings.append(f'Product without code: "{p["nome"]}"')
        if not p["nome"] and code:
            report.warnings.append(f"Product without name: code {code}")
        if p["qtd"] < 0:
            p["qtd"] = 0
            report.warnings.append(f"Negative stock corrected for code {label}")
        if p["preco_c"] < 0:
            p["preco_c"] = 0
            report.warnings.append(f"Negative price corrected for code {label}")
        if p["custo_c"] < 0:
            p["custo_c"] = 0
            report.warnings.append(f"Negative cost corrected for code {label}")

        if code:
            if code in seen:
                report.warnings.append(f"Duplicate product code {code} removed.")
                continue
            seen.add(code)
        kept.append(p)
    db["estoque"] = kept


def _normalize_sales(db: dict, report: NormalizationReport) -> None:
    for v in db["vendas"]:
        sale_id = as_str(v.get("id")).strip()
        if sale_id:
            v["id"] = sale_id
        else:
            report.warnings.append("Sale without id found.")
        if not isinstance(v.get("dataIso"), str) or not v.get("dataIso"):
            v["dataIso"] = now_iso()

        items = v.get("itens") if isinstance(v.get("itens"), list) else []
        items = [i for i in items if is_obj(i)]
        for i in items:
            i["cod"] = as_str(i.get("cod")).strip()
            i["nome"] = as_str(i.get("nome")).strip()
            i["qtd"] = as_num(i.get("qtd"), 0)
            i["preco_c"] = as_int(i.get("preco_c"), 0)
        v["itens"] = items

        v["subtotal_c"] = as_int(v.get("subtotal_c"), 0)
        v["desconto_c"] = as_int(v.get("desconto_c"), 0)
        v["total_c"] = as_int(v.get("total_c"), max(0, v["subtotal_c"] - v["desconto_c"]))
        if v["total_c"] < 0:
            v["total_c"] = 0
            report.warnings.append(f"Sale {sale_id or '(no id)'} had a negative total; corrected.")

        status = v.get("status")
        if status not in (SALE_ACTIVE, SALE_CANCELLED):
            if status is not None:
                report.warnings.append(f"Sale {sale_id or '(no id)'} had unknown status {status!r}.")
            v["status"] = SALE_CANCELLED if v.get("canceledAtIso") else SALE_ACTIVE


def _normalize_movements(db: dict, report: NormalizationReport) -> None:
    for m in db["stockMovements"]:
        mtype = as_str(m.get("type")).strip() or "ajuste"
        if mtype not in MOVEMENT_TYPES:
            report.warnings.append(f"Stock movement {m.get('id')} had unknown type {mtype!r}; set to ajuste.")
            mtype = "ajuste"
        m["type"] = mtype
        m["productCod"] = as_str(m.get("productCod")).strip()
        delta = as_int(m.get("qtyDelta"), 0)
        signed = enforce_movement_sign(mtype, delta)
        if signed != delta:
            report.warnings.append(f"Stock movement {m.get('id')} sign corrected for type {mtype}.")
        m["qtyDelta"] = signed
        m["reason"] = as_str(m.get("reason"))
        if not isinstance(m.get("atIso"), str) or not m.get("atIso"):
            m["atIso"] = now_iso()
        if "meta" in m and m["meta"] is not None and not is_obj(m["meta"]):
            m["meta"] = {"value": m["meta"]}


def _normalize_cash(db: dict, report: NormalizationReport) -> None:
    for s in db["cashSessions"]:
        s["id"] = as_str(s.get("id")).strip()
        s["initial_c"] = as_int(s.get("initial_c"), 0)
        s["expected_c"] = as_int(s.get("expected_c"), s["initial_c"])
        if s.get("counted_c") is not None:
            s["counted_c"] = as_int(s.get("counted_c"), 0)
        if s.get("diff_c") is not None:
            s["diff_c"] = as_int(s.get("diff_c"), 0)
        if not isinstance(s.get("closedAtIso"), str) or not s.get("closedAtIso"):
            s["closedAtIso"] = None
        movements = s.get("movements") if isinstance(s.get("movements"), list) else []
        movements = [mv for mv in movements if is_obj(mv)]
        for mv in movements:
            mv["amount_c"] = as_int(mv.get("amount_c"), 0)
        s["movements"] = movements

    caixa = db["caixa"]
    caixa["movimentos"] = caixa.get("movimentos") if isinstance(caixa.get("movimentos"), list) else []
    caixa["aberturas"] = caixa.get("aberturas") if isinstance(caixa.get("aberturas"), list) else []

    pointer = caixa.get("currentSessionId") or None
    if pointer is not None:
        pointer = as_str(pointer).strip() or None
    if pointer is not None:
        target = next((s for s in db["cashSessions"] if s["id"] == pointer), None)
        if target is None or target["closedAtIso"] is not None:
            report.warnings.append(f"Open cash session pointer {pointer} was dangling; cleared.")
            pointer = None
    caixa["currentSessionId"] = pointer
    caixa["aberto"] = pointer is not None


def _normalize_voids(db: dict, report: NormalizationReport) -> None:
    seen: set[str] = set()
    kept = []
    for entry in db["saleVoids"]:
        sale_id = as_str(entry.get("saleId")).strip()
        entry["saleId"] = sale_id
        if not isinstance(entry.get("stockMovementsCreated"), list):
            entry["stockMovementsCreated"] = []
        if sale_id in seen:
            report.warnings.append(f"Duplicate void for sale {sale_id} removed.")
            continue
        seen.add(sale_id)
        kept.append(entry)
    db["saleVoids"] = kept
