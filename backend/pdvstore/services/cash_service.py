# Overview: Service-layer cash register sessions; open, record movements, close with counted totals.

"""
Cash register sessions.

WHY: At close the operator counts the drawer; comparing that against what
the system expected (opening float plus every sale, refund, withdrawal and
top-up) is how shortages are caught.

LIFECYCLE:
1. open: session created, caixa.currentSessionId points at it
2. movements: venda/reforco add to expected_c, estorno/sangria subtract
3. close: counted_c and diff_c recorded, pointer cleared

RULES:
- At most one open session.
- A closed session is never modified again.
- diff_c = counted_c - expected_c (negative means cash is missing).
"""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import as_int
from .audit_service import INVALID_ACTOR, Actor, actor_dict, record_audit
from .concurrency import serialized
from .persistence_service import READ_FAILED_ERROR

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager


MOVEMENT_SALE = "venda"
MOVEMENT_VOID = "estorno"
MOVEMENT_WITHDRAW = "sangria"
MOVEMENT_REINFORCE = "reforco"

CASH_MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_VOID, MOVEMENT_WITHDRAW, MOVEMENT_REINFORCE)
NEGATIVE_CASH_MOVEMENTS = (MOVEMENT_VOID, MOVEMENT_WITHDRAW)


class CashSessionError(Exception):
    """Raised when a cash session operation is not allowed."""
    pass


def current_session(db: dict) -> dict | None:
    pointer = db["caixa"].get("currentSessionId")
    if not pointer:
        return None
    session = next((s for s in db["cashSessions"] if s.get("id") == pointer), None)
    if session is None or session.get("closedAtIso"):
        return None
    return session


def post_movement(
    db: dict,
    manager: "PersistenceManager",
    movement_type: str,
    amount_c: Any,
    meta: dict | None = None,
) -> tuple[dict, dict]:
    """
    Append a signed movement to the open session and update expected_c.

    Returns (session, movement). Nothing is persisted here.

    Raises:
        CashSessionError: No open session or unknown type
    """
    if movement_type not in CASH_MOVEMENT_TYPES:
        raise CashSessionError(f"Invalid cash movement type: {movement_type!r}")

    session = current_session(db)
    if session is None:
        raise CashSessionError("Register not open")

    amount = abs(as_int(amount_c, 0))
    if movement_type in NEGATIVE_CASH_MOVEMENTS:
        amount = -amount

    movement = {
        "id": manager.ids.new("cm"),
        "atIso": now_iso(),
        "type": movement_type,
        "amount_c": amount,
        "meta": meta or None,
    }
    session["movements"].append(movement)
    session["expected_c"] = as_int(session.get("expected_c"), 0) + amount
    return session, movement


def _save(manager: "PersistenceManager", db: dict) -> OperationResult | None:
    saved = manager.safe_save(db)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=saved.warnings)
    return None


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@serialized
def open_session(
    manager: "PersistenceManager",
    initial_c: Any = 0,
    note: str = "",
    *,
    actor: Actor | dict | None = None,
) -> OperationResult:
    try:
        actor = Actor.from_value(actor)
    except TypeError:
        return OperationResult.failure(INVALID_ACTOR)

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    if current_session(db) is not None:
        return OperationResult.failure("Register already open")

    initial = as_int(initial_c, 0)
    session = {
        "id": manager.ids.new("cs"),
        "openedAtIso": now_iso(),
        "closedAtIso": None,
        "openedBy": actor_dict(actor),
        "closedBy": None,
        "initial_c": initial,
        "expected_c": initial,
        "counted_c": None,
        "diff_c": None,
        "note": note or "",
        "movements": [],
    }
    db["cashSessions"].append(session)
    db["caixa"]["currentSessionId"] = session["id"]
    db["caixa"]["aberto"] = True

    failed = _save(manager, db)
    if failed:
        return failed

    record_audit(
        manager, "caixa.abrir", "caixa", session["id"],
        actor=actor, after={"initial_c": initial}, meta={"note": note},
    )
    return OperationResult.success(session_id=session["id"])


@serialized
def _movement(
    manager: "PersistenceManager",
    movement_type: str,
    amount_c: Any,
    meta: dict,
    actor: Actor | dict | None,
) -> OperationResult:
    try:
        actor = Actor.from_value(actor)
    except TypeError:
        return OperationResult.failure(INVALID_ACTOR)

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    try:
        session, movement = post_movement(db, manager, movement_type, amount_c, meta)
    except CashSessionError as e:
        return OperationResult.failure(str(e))

    failed = _save(manager, db)
    if failed:
        return failed

    record_audit(
        manager, f"caixa.movimento.{movement_type}", "caixa", session["id"],
        actor=actor, after={"amount_c": movement["amount_c"]}, meta=meta,
    )
    return OperationResult.success(movement_id=movement["id"], expected_c=session["expected_c"])


def add_sale(manager: "PersistenceManager", sale_id: Any, amount_c: Any, *, actor=None) -> OperationResult:
    return _movement(manager, MOVEMENT_SALE, amount_c, {"saleId": sale_id}, actor)


def add_void(manager: "PersistenceManager", sale_id: Any, amount_c: Any, reason: str = "", *, actor=None) -> OperationResult:
    """Refund; amount_c is given positive and stored negated."""
    return _movement(manager, MOVEMENT_VOID, amount_c, {"saleId": sale_id, "reason": reason}, actor)


def withdraw(manager: "PersistenceManager", amount_c: Any, reason: str = "Sangria", *, actor=None) -> OperationResult:
    return _movement(manager, MOVEMENT_WITHDRAW, amount_c, {"reason": reason}, actor)


def reinforce(manager: "PersistenceManager", amount_c: Any, reason: str = "Reforço", *, actor=None) -> OperationResult:
    return _movement(manager, MOVEMENT_REINFORCE, amount_c, {"reason": reason}, actor)


@serialized
def close_session(
    manager: "PersistenceManager",
    counted_c: Any,
    note: str = "",
    *,
    actor: Actor | dict | None = None,
) -> OperationResult:
    try:
        actor = Actor.from_value(actor)
    except TypeError:
        return OperationResult.failure(INVALID_ACTOR)

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    session = current_session(db)
    if session is None:
        return OperationResult.failure("Register not open")

    session["closedAtIso"] = now_iso()
    session["closedBy"] = actor_dict(actor)
    session["counted_c"] = as_int(counted_c, 0)
    session["diff_c"] = session["counted_c"] - as_int(session.get("expected_c"), 0)
    session["note"] = note or session.get("note") or ""
    db["caixa"]["currentSessionId"] = None
    db["caixa"]["aberto"] = False

    failed = _save(manager, db)
    if failed:
        return failed

    record_audit(
        manager, "caixa.fechar", "caixa", session["id"],
        actor=actor,
        after={
            "expected_c": session["expected_c"],
            "counted_c": session["counted_c"],
            "diff_c": session["diff_c"],
        },
        meta={"note": note},
    )
    return OperationResult.success(
        session_id=session["id"],
        expected_c=session["expected_c"],
        counted_c=session["counted_c"],
        diff_c=session["diff_c"],
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_current(manager: "PersistenceManager") -> dict | None:
    """Copy of the open session, or None."""
    session = current_session(manager.get())
    return copy.deepcopy(session) if session else None


def list_sessions(manager: "PersistenceManager", limit: int = 30) -> list[dict]:
    """Most recent `limit` sessions, oldest first."""
    sessions = manager.get()["cashSessions"]
    if limit <= 0:
        return []
    return sessions[-limit:]
