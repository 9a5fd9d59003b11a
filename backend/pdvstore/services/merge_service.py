# Overview: Service-layer conflict-aware merge of two local databases (local vs remote or imported).

"""
Conflict-Aware Merge Engine

WHY: A device that worked offline and the copy held by the remote service
both carry real sales and stock changes. Replacing one with the other loses
data, so the two are reconciled instead and every value that had to be
picked over another is reported to the operator.

RULES:
- Inputs are deep-copied and never mutated.
- `prefer` is "current" or "incoming" ("import" is accepted as an alias).
  The same direction applies at every nesting level.
- Top-level keys only in incoming are copied and counted in report.added.
- Lists are unioned. Entries are matched by the first identifier an ordered
  extractor list yields for that collection; entries without one are
  matched by exact content. Matching objects merge recursively.
- Within one side, the first entry for an identifier wins; later ones are
  dropped with a warning.
- Sale lines (itens) pair up by product code and occurrence: the second X
  line of a sale meets the second X line on the other side. Repeated codes
  within one side are all kept; lines without a code match by content.
- Differing primitives, or values of different container types, are resolved
  by `prefer` and recorded as {path, current, incoming, chosen}.
- estoque is keyed by trimmed product code. qtd is summed when
  sum_stock_qty is set (independent stock deltas are additive), otherwise
  picked by `prefer`. Items without a code are dropped with a warning.
- schemaVersion becomes the max of both sides, meta.createdAt the earliest
  and meta.updatedAt the merge time. None of these count as conflicts.
"""
from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from ..time_utils import now_iso
from ..validation import as_int, as_str
from .schema_service import coerce_version

logger = logging.getLogger(__name__)


PREFER_CURRENT = "current"
PREFER_INCOMING = "incoming"

STOCK_CODE_FIELDS = ("cod", "codigo", "code", "sku")


@dataclass
class MergeConflict:
    path: str
    current: Any
    incoming: Any
    chosen: str

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "current": self.current,
            "incoming": self.incoming,
            "chosen": self.chosen,
        }


@dataclass
class MergeReport:
    at_iso: str
    added: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    conflicts: list[MergeConflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def bump_added(self, key: str) -> None:
        self.added[key] = self.added.get(key, 0) + 1

    def bump_updated(self, key: str) -> None:
        self.updated[key] = self.updated.get(key, 0) + 1

    def to_dict(self) -> dict:
        return {
            "at_iso": self.at_iso,
            "added": dict(self.added),
            "updated": dict(self.updated),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": list(self.warnings),
        }


@dataclass
class MergeResult:
    db: dict
    report: MergeReport


@dataclass
class _MergeContext:
    prefer: str
    sum_stock_qty: bool
    report: MergeReport


# =============================================================================
# IDENTIFIER EXTRACTORS
# =============================================================================

Extractor = Callable[[dict], "str | None"]


def _text(value: Any) -> str:
    return as_str(value).strip().lower()


def _digits(value: Any) -> str:
    return re.sub(r"\D+", "", as_str(value))


def _first_of(tag: str, fields: tuple[str, ...], clean: Callable[[Any], str] = _text) -> Extractor:
    """Extractor yielding `<tag>:<clean(value)>` for the first non-empty field."""
    def extract(item: dict) -> str | None:
        for name in fields:
            value = item.get(name)
            if value is None or value == "":
                continue
            cleaned = clean(value)
            if cleaned:
                return f"{tag}:{cleaned}"
        return None

    return extract


by_id = _first_of("id", ("id", "_id", "uuid"), clean=lambda v: as_str(v).strip())
by_code = _first_of("codigo", ("codigo", "code", "cod", "sku"))
by_document = _first_of("doc", ("cpf", "cnpj", "cpfCnpj", "documento"), clean=_digits)
by_email = _first_of("email", ("email",))
by_phone = _first_of("tel", ("telefone", "fone", "celular", "whatsapp"), clean=_digits)
by_name = _first_of("nome", ("nome", "name", "cliente", "produto", "descricao"))
by_username = _first_of("user", ("username", "login"))
by_sale = _first_of("sale", ("saleId",), clean=lambda v: as_str(v).strip())

DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (by_id, by_code, by_document, by_email, by_phone, by_name)

# Ledger entries are only ever matched by their own id; two movements that
# share a product code are still two movements.
COLLECTION_EXTRACTORS: dict[str, tuple[Extractor, ...]] = {
    "vendas": (by_id,),
    "stockMovements": (by_id,),
    "cashSessions": (by_id,),
    "movements": (by_id,),
    "movimentos": (by_id,),
    "aberturas": (by_id,),
    "auditLog": (by_id,),
    "fiscalQueue": (by_id,),
    "saleVoids": (by_id, by_sale),
    "devedores": (by_id, by_document, by_phone, by_email, by_name),
    "users": (by_id, by_username, by_email, by_name),
}


def _content_key(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def _identify(item: Any, extractors: tuple[Extractor, ...]) -> tuple[str, bool]:
    """(key, natural): natural is False when the key is the item's content."""
    if isinstance(item, dict):
        for extract in extractors:
            key = extract(item)
            if key:
                return key, True
    return "content:" + _content_key(item), False


def _sale_line_keys(items: list) -> list[tuple[str, bool]]:
    occurrences: dict[str, int] = {}
    keys = []
    for item in items:
        code = _stock_code(item) if isinstance(item, dict) else ""
        if not code:
            keys.append(_identify(item, ()))
            continue
        occurrences[code] = occurrences.get(code, 0) + 1
        keys.append((f"cod:{code}#{occurrences[code]}", True))
    return keys


def _keys_for(items: list, name: str) -> list[tuple[str, bool]]:
    """Match key of every entry of the list called `name`, in order."""
    if name == "itens":
        return _sale_line_keys(items)
    extractors = COLLECTION_EXTRACTORS.get(name, DEFAULT_EXTRACTORS)
    return [_identify(item, extractors) for item in items]


# =============================================================================
# GENERIC MERGE
# =============================================================================

def _conflict(cur: Any, inc: Any, path: str, ctx: _MergeContext) -> Any:
    chosen = inc if ctx.prefer == PREFER_INCOMING else cur
    ctx.report.conflicts.append(MergeConflict(
        path=path,
        current=copy.deepcopy(cur),
        incoming=copy.deepcopy(inc),
        chosen=ctx.prefer,
    ))
    return copy.deepcopy(chosen)


def _merge_value(cur: Any, inc: Any, path: str, ctx: _MergeContext, name: str) -> Any:
    if isinstance(cur, dict) and isinstance(inc, dict):
        return _merge_objects(cur, inc, path, ctx)
    if isinstance(cur, list) and isinstance(inc, list):
        return _merge_lists(cur, inc, path, ctx, name=name)
    if _content_key(cur) == _content_key(inc):
        return copy.deepcopy(cur)
    return _conflict(cur, inc, path, ctx)


def _merge_objects(cur: dict, inc: dict, path: str, ctx: _MergeContext) -> dict:
    out = copy.deepcopy(cur)
    for key, value in inc.items():
        sub = f"{path}.{key}" if path else key
        if key not in out:
            out[key] = copy.deepcopy(value)
            continue
        out[key] = _merge_value(out[key], value, sub, ctx, name=key)
    return out


def _merge_lists(
    cur: list,
    inc: list,
    path: str,
    ctx: _MergeContext,
    *,
    name: str,
    counter: str | None = None,
) -> list:
    """
    Union two lists.

    `counter` is the top-level collection name whose added/updated counters
    this merge feeds; nested lists pass None.
    """
    merged: dict[str, Any] = {}

    for item, (key, natural) in zip(cur, _keys_for(cur, name)):
        if key in merged:
            if natural:
                ctx.report.warnings.append(f"Duplicate entry {key} in current {path} ignored.")
            continue
        merged[key] = copy.deepcopy(item)

    seen: set[str] = set()
    for item, (key, natural) in zip(inc, _keys_for(inc, name)):
        if key in seen:
            if natural:
                ctx.report.warnings.append(f"Duplicate entry {key} in incoming {path} ignored.")
            continue
        seen.add(key)

        if key not in merged:
            merged[key] = copy.deepcopy(item)
            if counter:
                ctx.report.bump_added(counter)
            continue

        existing = merged[key]
        if _content_key(existing) == _content_key(item):
            continue
        merged[key] = _merge_value(existing, item, f"{path}[{key}]", ctx, name=name)
        if counter:
            ctx.report.bump_updated(counter)

    return list(merged.values())


# =============================================================================
# SPECIAL CASES
# =============================================================================

def _stock_code(item: dict) -> str:
    for name in STOCK_CODE_FIELDS:
        code = as_str(item.get(name)).strip()
        if code:
            return code
    return ""


def _index_stock(items: list, side: str, report: MergeReport) -> dict[str, dict]:
    indexed: dict[str, dict] = {}
    for item in items:
        if not isinstance(item, dict):
            report.warnings.append(f"Non-object stock entry in {side} ignored.")
            continue
        code = _stock_code(item)
        if not code:
            report.warnings.append(f"Stock item without code in {side} ignored.")
            continue
        if code in indexed:
            report.warnings.append(f"Duplicate stock code {code} in {side}; first entry kept.")
            continue
        entry = copy.deepcopy(item)
        entry["cod"] = code
        indexed[code] = entry
    return indexed


def _merge_estoque(cur: list, inc: list, ctx: _MergeContext) -> list:
    report = ctx.report
    out = _index_stock(cur, "current", report)

    for code, item in _index_stock(inc, "incoming", report).items():
        if code not in out:
            out[code] = item
            report.bump_added("estoque")
            continue

        existing = out[code]
        cur_qty = as_int(existing.get("qtd"))
        inc_qty = as_int(item.get("qtd"))

        rest_cur = {k: v for k, v in existing.items() if k != "qtd"}
        rest_inc = {k: v for k, v in item.items() if k != "qtd"}
        merged = _merge_objects(rest_cur, rest_inc, f"estoque[{code}]", ctx)

        if ctx.sum_stock_qty:
            merged["qtd"] = cur_qty + inc_qty
        else:
            merged["qtd"] = inc_qty if ctx.prefer == PREFER_INCOMING else cur_qty

        out[code] = merged
        report.bump_updated("estoque")

    return list(out.values())


def _merge_meta(cur: Any, inc: Any, ctx: _MergeContext) -> dict:
    a = cur if isinstance(cur, dict) else {}
    b = inc if isinstance(inc, dict) else {}
    stamps = ("createdAt", "updatedAt")

    out = _merge_objects(
        {k: v for k, v in a.items() if k not in stamps},
        {k: v for k, v in b.items() if k not in stamps},
        "meta",
        ctx,
    )
    created = [v for v in (a.get("createdAt"), b.get("createdAt")) if isinstance(v, str) and v]
    if created:
        out["createdAt"] = min(created)
    out["updatedAt"] = ctx.report.at_iso
    return out


# =============================================================================
# PUBLIC API
# =============================================================================

def resolve_prefer(prefer: Any) -> str:
    if prefer in ("import", "incoming"):
        return PREFER_INCOMING
    return PREFER_CURRENT


def merge_databases(
    current: Any,
    incoming: Any,
    prefer: str = PREFER_CURRENT,
    sum_stock_qty: bool = True,
) -> MergeResult:
    """
    Merge `incoming` into `current`.

    Non-object inputs count as empty databases. The result is not
    normalized; callers persist it through PersistenceManager.safe_save.
    """
    a = copy.deepcopy(current) if isinstance(current, dict) else {}
    b = copy.deepcopy(incoming) if isinstance(incoming, dict) else {}
    ctx = _MergeContext(
        prefer=resolve_prefer(prefer),
        sum_stock_qty=bool(sum_stock_qty),
        report=MergeReport(at_iso=now_iso()),
    )

    out = copy.deepcopy(a)
    for key, value in b.items():
        if key in ("schemaVersion", "meta"):
            continue
        if key not in out:
            out[key] = copy.deepcopy(value)
            ctx.report.bump_added(key)
            continue

        existing = out[key]
        if key == "estoque" and isinstance(existing, list) and isinstance(value, list):
            out[key] = _merge_estoque(existing, value, ctx)
        elif isinstance(existing, list) and isinstance(value, list):
            out[key] = _merge_lists(existing, value, key, ctx, name=key, counter=key)
        else:
            out[key] = _merge_value(existing, value, key, ctx, name=key)

    if "schemaVersion" in a or "schemaVersion" in b:
        out["schemaVersion"] = max(coerce_version(a.get("schemaVersion")), coerce_version(b.get("schemaVersion")))
    out["meta"] = _merge_meta(a.get("meta"), b.get("meta"), ctx)

    logger.info(
        "Merged databases: added=%s updated=%s conflicts=%d",
        ctx.report.added, ctx.report.updated, len(ctx.report.conflicts),
    )
    return MergeResult(db=out, report=ctx.report)
