# Overview: Service-layer read-only reports over the local database (stock levels, movements, cash sessions).

"""
Reports.

Nothing here writes. Every report reads the database once through the
manager and derives its rows from that copy.

Period filters take inclusive ISO-8601 boundaries ("...Z", an offset or
naive UTC). A record whose own date cannot be parsed never falls inside a
period, bounded or not.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..time_utils import parse_iso
from ..validation import as_int, as_str

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager


# Fields a record may keep its date under, most specific first.
DATE_FIELDS = (
    "dataIso", "dateIso", "createdAt", "updatedAt",
    "data", "date", "atIso", "openedAtIso", "closedAtIso",
)


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def money_br(cents: Any) -> str:
    """Centavos as Brazilian currency text: 123456 -> "R$ 1.234,56"."""
    c = as_int(cents, 0)
    sign = "-" if c < 0 else ""
    reais, centavos = divmod(abs(c), 100)
    return f"{sign}R$ {reais:,}".replace(",", ".") + f",{centavos:02d}"


def _parse_range(start_iso: str | None, end_iso: str | None) -> tuple[datetime | None, datetime | None]:
    start = parse_iso(start_iso) if start_iso else None
    end = parse_iso(end_iso) if end_iso else None
    if start_iso and start is None:
        raise ReportError(f"Invalid start date: {start_iso!r}")
    if end_iso and end is None:
        raise ReportError(f"Invalid end date: {end_iso!r}")
    return start, end


def _record_date(record: dict, preferred: str) -> datetime | None:
    value = record.get(preferred)
    if not value:
        value = next((record.get(name) for name in DATE_FIELDS if record.get(name)), None)
    return parse_iso(value) if isinstance(value, str) else None


def _in_period(when: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    if when is None:
        return False
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


# =============================================================================
# STOCK
# =============================================================================

def stock_summary(manager: "PersistenceManager", *, low_stock_only: bool = False) -> dict:
    """
    Product count and the low-stock list.

    A product is low on stock when it has a minimum (min > 0) and its
    quantity is at or below it. With low_stock_only the product count is
    left out.
    """
    estoque = [p for p in manager.get()["estoque"] if isinstance(p, dict)]
    low = [
        {
            "cod": as_str(p.get("cod")),
            "nome": as_str(p.get("nome")),
            "qtd": as_int(p.get("qtd"), 0),
            "min": as_int(p.get("min"), 0),
        }
        for p in estoque
        if as_int(p.get("min"), 0) > 0 and as_int(p.get("qtd"), 0) <= as_int(p.get("min"), 0)
    ]
    summary = {"low_stock": low, "low_stock_count": len(low)}
    if not low_stock_only:
        summary["total_items"] = len(estoque)
    return summary


def movement_rows(
    manager: "PersistenceManager",
    start_iso: str | None = None,
    end_iso: str | None = None,
) -> list[dict]:
    start, end = _parse_range(start_iso, end_iso)
    rows = []
    for m in manager.get()["stockMovements"]:
        if not isinstance(m, dict):
            continue
        when = _record_date(m, "atIso")
        if not _in_period(when, start, end):
            continue
        rows.append({
            "id": as_str(m.get("id")),
            "atIso": as_str(m.get("atIso")),
            "type": as_str(m.get("type")),
            "productCod": as_str(m.get("productCod")),
            "qtyDelta": as_int(m.get("qtyDelta"), 0),
            "reason": as_str(m.get("reason")),
        })
    return rows


# =============================================================================
# CASH
# =============================================================================

def cash_rows(
    manager: "PersistenceManager",
    start_iso: str | None = None,
    end_iso: str | None = None,
) -> list[dict]:
    """Cash sessions opened inside the period; counted/diff stay None while open."""
    start, end = _parse_range(start_iso, end_iso)
    rows = []
    for s in manager.get()["cashSessions"]:
        if not isinstance(s, dict):
            continue
        if not _in_period(_record_date(s, "openedAtIso"), start, end):
            continue
        rows.append({
            "id": as_str(s.get("id")),
            "openedAtIso": as_str(s.get("openedAtIso")),
            "closedAtIso": as_str(s.get("closedAtIso")),
            "initial_c": as_int(s.get("initial_c"), 0),
            "expected_c": as_int(s.get("expected_c"), 0),
            "counted_c": None if s.get("counted_c") is None else as_int(s.get("counted_c"), 0),
            "diff_c": None if s.get("diff_c") is None else as_int(s.get("diff_c"), 0),
        })
    return rows


def cash_summary(
    manager: "PersistenceManager",
    start_iso: str | None = None,
    end_iso: str | None = None,
) -> dict:
    rows = cash_rows(manager, start_iso, end_iso)
    expected = sum(r["expected_c"] for r in rows)
    counted = sum(r["counted_c"] or 0 for r in rows)
    diff = sum(r["diff_c"] or 0 for r in rows)
    return {
        "sessions": len(rows),
        "expected_c": expected,
        "expected_fmt": money_br(expected),
        "counted_c": counted,
        "counted_fmt": money_br(counted),
        "diff_c": diff,
        "diff_fmt": money_br(diff),
    }
