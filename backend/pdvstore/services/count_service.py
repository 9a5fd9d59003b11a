# Overview: Service-layer physical inventory count; in-memory counting session posting ajuste movements.

"""
Physical inventory count (reconciliation).

WHY: Regular physical counts keep the system quantity honest. The operator
counts the shelf, the counter compares against the quantity captured when
the count started, and every difference is posted as an ajuste movement.

LIFECYCLE:
1. start: snapshot system quantities for all or some products
2. set_count: record counted quantities, one product at a time
3. compute_diffs: items whose counted quantity differs from the system one
4. apply_adjustments: one ajuste per non-zero diff, single save, state cleared

The counting session lives only on the InventoryCounter instance. It is not
persisted; an interrupted count is lost and has to be started again.
"""
from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, Iterable

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import as_int, as_str
from .audit_service import INVALID_ACTOR, Actor, record_audit
from .persistence_service import READ_FAILED_ERROR
from .stock_service import StockError, apply_movement

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


class CountError(Exception):
    """Raised when count operations fail."""
    pass


class InventoryCounter:
    """One counting session at a time over a PersistenceManager."""

    def __init__(self, manager: "PersistenceManager"):
        self.manager = manager
        self._reset()

    def _reset(self) -> None:
        self.active = False
        self.inventory_id: str | None = None
        self.started_at: str | None = None
        self.items: list[dict] = []

    def _require_active(self) -> None:
        if not self.active:
            raise CountError("Inventory not started")

    def start(self, product_cods: Iterable[Any] | None = None) -> OperationResult:
        """Begin counting `product_cods`, or every product when None/empty."""
        estoque = self.manager.get()["estoque"]
        codes = {as_str(c).strip() for c in (product_cods or [])}
        codes.discard("")
        selected = [p for p in estoque if p["cod"] in codes] if codes else list(estoque)

        self._reset()
        self.active = True
        self.inventory_id = self.manager.ids.new("inv")
        self.started_at = now_iso()
        self.items = [
            {"productCod": p["cod"], "systemQty": as_int(p.get("qtd"), 0), "countedQty": None}
            for p in selected
            if p.get("cod")
        ]
        return OperationResult.success(inventory_id=self.inventory_id, count=len(self.items))

    def set_count(self, product_cod: Any, counted_qty: Any) -> OperationResult:
        try:
            self._require_active()
            code = as_str(product_cod).strip()
            item = next((i for i in self.items if i["productCod"] == code), None)
            if item is None:
                raise CountError("Product not in inventory")
            qty = as_int(counted_qty, 0)
            if qty < 0:
                raise CountError("Counted quantity cannot be negative")
        except CountError as e:
            return OperationResult.failure(str(e))

        item["countedQty"] = qty
        return OperationResult.success(product_cod=code, counted_qty=qty)

    def _diffs(self) -> list[dict]:
        out = []
        for item in self.items:
            if item["countedQty"] is None:
                continue
            diff = item["countedQty"] - item["systemQty"]
            if diff != 0:
                out.append({**item, "diff": diff})
        return out

    def compute_diffs(self) -> OperationResult:
        try:
            self._require_active()
        except CountError as e:
            return OperationResult.failure(str(e))
        return OperationResult.success(diffs=self._diffs())

    def apply_adjustments(
        self,
        reason: str = "Inventário",
        meta: dict | None = None,
        *,
        actor: Actor | dict | None = None,
    ) -> OperationResult:
        """
        Post every non-zero diff as an ajuste movement in one save.

        Products removed since the count started are skipped with a warning.
        The counting session is cleared once the adjustments are saved.
        """
        try:
            self._require_active()
        except CountError as e:
            return OperationResult.failure(str(e))

        try:
            actor = Actor.from_value(actor)
        except TypeError:
            return OperationResult.failure(INVALID_ACTOR)

        inventory_id = self.inventory_id
        diffs = self._diffs()
        warnings: list[str] = []
        created: list[str] = []

        if diffs:
            with self.manager.lock:
                db = self.manager.get()
                if self.manager.read_failed:
                    return OperationResult.failure(READ_FAILED_ERROR)
                for d in diffs:
                    try:
                        movement, _ = apply_movement(
                            db, self.manager,
                            type="ajuste",
                            product_cod=d["productCod"],
                            qty_delta=d["diff"],
                            reason=reason,
                            meta={**(meta or {}), "inventoryId": inventory_id},
                            actor=actor,
                        )
                    except StockError as e:
                        warnings.append(f"{d['productCod']}: {e}")
                        continue
                    created.append(movement["id"])

                saved = self.manager.safe_save(db, force_snapshot=True)
                if not saved.ok:
                    return OperationResult.failure(saved.error or "Failed to save database", warnings=warnings)
                warnings.extend(saved.warnings)

                record_audit(
                    self.manager, "inventario.ajustar", "inventario", inventory_id,
                    actor=actor,
                    after={"movements": list(created), "diffsCount": len(diffs)},
                    meta={"reason": reason},
                )

        logger.info("Inventory %s applied: %d movements", inventory_id, len(created))
        self._reset()
        return OperationResult.success(
            warnings=warnings,
            inventory_id=inventory_id,
            created_movements=created,
            diffs_count=len(diffs),
        )

    def state(self) -> dict:
        """Copy of the counting session."""
        return copy.deepcopy({
            "active": self.active,
            "id": self.inventory_id,
            "startedAtIso": self.started_at,
            "items": self.items,
        })
