# Overview: Service-layer stock movement ledger; append-only movements driving product quantities.

"""
Stock movement ledger.

WHY: Product quantities change only through movements, so every unit that
enters or leaves the shelf is traceable (who, when, why).

DESIGN PRINCIPLES:
- Movements are append-only. A mistake is fixed with a compensating
  movement, never by editing one.
- The sign of qtyDelta follows the type: saida/perda never add stock,
  entrada/devolucao never remove it, ajuste may go either way.
- Quantity is clamped at zero; stock never goes negative.
- apply_movement() mutates an in-memory database and raises StockError.
  Other ledgers (inventory, sale voids) call it and save once.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import MOVEMENT_TYPES, as_int, as_str, enforce_movement_sign
from .audit_service import INVALID_ACTOR, Actor, actor_dict, record_audit
from .concurrency import serialized
from .persistence_service import READ_FAILED_ERROR

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager


class StockError(Exception):
    """Raised when a stock movement cannot be applied."""
    pass


def find_product(db: dict, product_cod: Any) -> dict | None:
    code = as_str(product_cod).strip()
    if not code:
        return None
    return next((p for p in db["estoque"] if as_str(p.get("cod")).strip() == code), None)


def apply_movement(
    db: dict,
    manager: "PersistenceManager",
    *,
    type: str,
    product_cod: Any,
    qty_delta: Any = None,
    qty: Any = None,
    reason: str = "",
    meta: dict | None = None,
    actor: Actor | dict | None = None,
) -> tuple[dict, dict]:
    """
    Append a movement to db["stockMovements"] and update the product.

    Returns (movement, product). Nothing is persisted here.

    Raises:
        StockError: Unknown type or product
    """
    movement_type = as_str(type).strip()
    if movement_type not in MOVEMENT_TYPES:
        raise StockError(f"Invalid movement type: {type!r}")

    product = find_product(db, product_cod)
    if product is None:
        raise StockError("Product not found")

    raw = qty_delta if qty_delta is not None else qty
    delta = enforce_movement_sign(movement_type, as_int(raw, 0))

    movement = {
        "id": manager.ids.new("sm"),
        "atIso": now_iso(),
        "type": movement_type,
        "productCod": product["cod"],
        "qtyDelta": delta,
        "reason": reason or "",
        "user": actor_dict(actor),
        "meta": meta or None,
    }

    product["qtd"] = max(0, as_int(product.get("qtd"), 0) + delta)
    db["stockMovements"].append(movement)
    return movement, product


@serialized
def add_movement(
    manager: "PersistenceManager",
    *,
    type: str,
    product_cod: Any,
    qty_delta: Any = None,
    qty: Any = None,
    reason: str = "",
    meta: dict | None = None,
    actor: Actor | dict | None = None,
) -> OperationResult:
    """
    Record one stock movement and persist it.

    `qty_delta` wins over `qty` when both are given; either way the sign is
    forced by the movement type.

    Returns:
        OperationResult with movement_id and new_qty
    """
    try:
        actor = Actor.from_value(actor)
    except TypeError:
        return OperationResult.failure(INVALID_ACTOR)

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    try:
        movement, product = apply_movement(
            db, manager,
            type=type, product_cod=product_cod, qty_delta=qty_delta, qty=qty,
            reason=reason, meta=meta, actor=actor,
        )
    except StockError as e:
        return OperationResult.failure(str(e))

    saved = manager.safe_save(db)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=saved.warnings)

    record_audit(
        manager, "estoque.movimento", "produto", movement["productCod"],
        actor=actor,
        after={"qtyDelta": movement["qtyDelta"], "type": movement["type"]},
        meta={"reason": reason, "movementId": movement["id"]},
    )
    return OperationResult.success(
        warnings=saved.warnings,
        movement_id=movement["id"],
        new_qty=product["qtd"],
    )


def list_movements(
    manager: "PersistenceManager",
    product_cod: Any = None,
    limit: int = 200,
) -> list[dict]:
    """Most recent `limit` movements (optionally for one product), oldest first."""
    movements = manager.get()["stockMovements"]
    code = as_str(product_cod).strip()
    if code:
        movements = [m for m in movements if m.get("productCod") == code]
    if limit <= 0:
        return []
    return movements[-limit:]
