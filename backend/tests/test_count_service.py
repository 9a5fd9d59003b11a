"""
Physical inventory count tests.
"""

from pdvstore.services.backup_service import list_snapshots
from pdvstore.services.count_service import InventoryCounter


def _qty(stored, code):
    return next(p["qtd"] for p in stored()["estoque"] if p["cod"] == code)


def test_operations_require_started_count(manager):
    counter = InventoryCounter(manager)
    for result in (counter.set_count("A", 1), counter.compute_diffs(), counter.apply_adjustments()):
        assert result.ok is False
        assert result.error == "Inventory not started"


def test_start_captures_system_quantities(seed, manager, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)

    result = counter.start()

    assert result.ok is True
    assert result["count"] == 3
    state = counter.state()
    assert state["active"] is True
    assert state["id"] == result["inventory_id"]
    assert {i["productCod"]: i["systemQty"] for i in state["items"]} == {"A": 10, "X": 3, "C": 0}


def test_start_with_subset(seed, manager, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)

    assert counter.start(["X", " C ", "missing"])["count"] == 2
    assert counter.set_count("A", 1).error == "Product not in inventory"


def test_negative_count_rejected(seed, manager, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    counter.start()
    result = counter.set_count("A", -1)
    assert result.ok is False
    assert result.error == "Counted quantity cannot be negative"


def test_diffs_skip_uncounted_and_equal_items(seed, manager, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    counter.start()
    counter.set_count("A", 8)
    counter.set_count("X", 3)

    diffs = counter.compute_diffs()["diffs"]

    assert diffs == [{"productCod": "A", "systemQty": 10, "countedQty": 8, "diff": -2}]


def test_apply_posts_adjustments_and_resets(seed, manager, stored, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    inventory_id = counter.start()["inventory_id"]
    counter.set_count("A", 8)
    counter.set_count("C", 4)

    result = counter.apply_adjustments(actor={"id": "u1", "username": "ana", "role": "gerente"})

    assert result.ok is True
    assert result["inventory_id"] == inventory_id
    assert result["diffs_count"] == 2
    assert len(result["created_movements"]) == 2
    assert _qty(stored, "A") == 8
    assert _qty(stored, "C") == 4

    movements = stored()["stockMovements"]
    assert [(m["type"], m["productCod"], m["qtyDelta"]) for m in movements] == [
        ("ajuste", "A", -2),
        ("ajuste", "C", 4),
    ]
    assert all(m["meta"]["inventoryId"] == inventory_id for m in movements)
    assert all(m["reason"] == "Inventário" for m in movements)
    assert stored()["auditLog"][-1]["action"] == "inventario.ajustar"
    assert counter.state()["active"] is False


def test_apply_uses_captured_quantity(seed, manager, stored, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    counter.start(["A"])
    counter.set_count("A", 7)

    db = manager.get()
    db["estoque"][0]["qtd"] = 12
    manager.safe_save(db)

    counter.apply_adjustments()

    assert stored()["stockMovements"][0]["qtyDelta"] == -3
    assert _qty(stored, "A") == 9


def test_apply_skips_removed_products(seed, manager, stored, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    counter.start()
    counter.set_count("X", 1)
    counter.set_count("A", 11)

    db = manager.get()
    db["estoque"] = [p for p in db["estoque"] if p["cod"] != "X"]
    manager.safe_save(db)

    result = counter.apply_adjustments()

    assert result.ok is True
    assert result["diffs_count"] == 2
    assert len(result["created_movements"]) == 1
    assert any(w.startswith("X:") for w in result.warnings)


def test_apply_forces_a_snapshot(seed, manager, kv, clock, products):
    seed(estoque=products)
    before = len(list_snapshots(kv, "test_db"))

    counter = InventoryCounter(manager)
    counter.start()
    counter.set_count("A", 1)
    counter.apply_adjustments()

    assert len(list_snapshots(kv, "test_db")) == before + 1


def test_apply_without_diffs_writes_nothing(seed, manager, stored, products):
    seed(estoque=products)
    before = stored()
    counter = InventoryCounter(manager)
    counter.start()
    counter.set_count("A", 10)

    result = counter.apply_adjustments()

    assert result.ok is True
    assert result["created_movements"] == []
    assert stored() == before


def test_invalid_actor_keeps_the_count_open(seed, manager, stored, products):
    seed(estoque=products)
    counter = InventoryCounter(manager)
    counter.start()
    counter.set_count("A", 8)
    before = stored()

    result = counter.apply_adjustments(actor="ana")

    assert result.ok is False
    assert result.error == "Invalid actor"
    assert stored() == before
    assert counter.state()["active"] is True
    assert counter.apply_adjustments().ok is True
