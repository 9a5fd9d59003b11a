# Overview: Service-layer sale cancellation; restock, void record, cash refund in a single save.

"""
Sale voids (cancellation / refund).

WHY: Cancelling a sale touches three ledgers at once: stock comes back to
the shelf, the sale is flagged, and the register gives the money back. All
of it is applied to one in-memory database and saved once, so a partial
cancellation is never persisted.

RULES:
- A sale can be voided once. saleVoids is unique by saleId.
- restock=True emits one devolucao movement per line with a positive
  quantity. Lines whose product no longer exists are skipped with a warning.
- The estorno of -total_c goes to the open cash session; when the register
  is closed the refund is simply not recorded there.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import SALE_CANCELLED, as_int, as_num, as_str
from .audit_service import INVALID_ACTOR, Actor, actor_dict, record_audit
from .cash_service import MOVEMENT_VOID, CashSessionError, post_movement
from .concurrency import serialized
from .persistence_service import READ_FAILED_ERROR
from .stock_service import StockError, apply_movement

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


class VoidError(Exception):
    """Raised when a sale cannot be voided."""
    pass


def find_sale(db: dict, sale_id: Any) -> dict | None:
    target = as_str(sale_id).strip()
    if not target:
        return None
    return next((v for v in db["vendas"] if as_str(v.get("id")).strip() == target), None)


def _restock(db: dict, manager: "PersistenceManager", sale: dict, void_id: str, reason: str, actor) -> tuple[list[str], list[str]]:
    created: list[str] = []
    warnings: list[str] = []
    for line in sale.get("itens") or []:
        code = as_str(line.get("cod")).strip()
        qty = int(as_num(line.get("qtd"), 0))
        if not code or qty <= 0:
            continue
        try:
            movement, _ = apply_movement(
                db, manager,
                type="devolucao",
                product_cod=code,
                qty_delta=qty,
                reason=f"Estorno venda {sale['id']}: {reason}",
                meta={"saleId": sale["id"], "voidId": void_id},
                actor=actor,
            )
        except StockError:
            warnings.append(f"Product {code} not found; line not restocked.")
            continue
        created.append(movement["id"])
    return created, warnings


@serialized
def cancel_sale(
    manager: "PersistenceManager",
    sale_id: Any,
    reason: str = "Cancelado",
    restock: bool = True,
    *,
    actor: Actor | dict | None = None,
) -> OperationResult:
    """
    Void a sale.

    Returns:
        OperationResult with void_id and stock_movements (ids created)
    """
    try:
        actor = Actor.from_value(actor)
    except TypeError:
        return OperationResult.failure(INVALID_ACTOR)

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    try:
        sale = find_sale(db, sale_id)
        if sale is None:
            raise VoidError("Sale not found")
        if any(v.get("saleId") == sale["id"] for v in db["saleVoids"]):
            raise VoidError("Sale already voided")
    except VoidError as e:
        return OperationResult.failure(str(e))

    void_id = manager.ids.new("void")
    created: list[str] = []
    warnings: list[str] = []
    if restock:
        created, warnings = _restock(db, manager, sale, void_id, reason, actor)

    entry = {
        "id": void_id,
        "atIso": now_iso(),
        "saleId": sale["id"],
        "reason": reason or "",
        "createdBy": actor_dict(actor),
        "stockMovementsCreated": created,
    }
    db["saleVoids"].append(entry)

    sale["status"] = SALE_CANCELLED
    sale["cancelReason"] = reason or ""
    sale["canceledAtIso"] = entry["atIso"]
    sale["canceledBy"] = entry["createdBy"]

    refunded = False
    try:
        post_movement(
            db, manager, MOVEMENT_VOID, as_int(sale.get("total_c"), 0),
            {"saleId": sale["id"], "reason": reason},
        )
        refunded = True
    except CashSessionError:
        logger.info("No open cash session; refund for sale %s not posted", sale["id"])

    saved = manager.safe_save(db, force_snapshot=True)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=warnings)
    warnings.extend(saved.warnings)

    record_audit(
        manager, "vendas.cancelar", "venda", sale["id"],
        actor=actor, after={"status": SALE_CANCELLED}, meta={"reason": reason, "voidId": void_id},
    )
    return OperationResult.success(
        warnings=warnings,
        void_id=void_id,
        stock_movements=created,
        cash_refunded=refunded,
    )
