# backend/pdvstore/routes/inventory.py
"""
Physical inventory count API routes.

The counting session lives in memory on the app's InventoryCounter; a
restart of the process discards it.
"""
from flask import Blueprint, current_app, jsonify

from ..runtime import get_runtime
from . import json_body, require_fields, result_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/start")
def start_count():
    """
    Request body:
    {
        "product_cods": [str] (optional, default all products)
    }
    """
    data = json_body()
    product_cods = data.get("product_cods")
    if product_cods is not None and not isinstance(product_cods, list):
        return jsonify({"ok": False, "error": "product_cods must be a list"}), 400
    return result_response(get_runtime().counter.start(product_cods), 201)


@inventory_bp.post("/count")
def set_count():
    """
    Request body:
    {
        "product_cod": str,
        "counted_qty": int
    }
    """
    data = json_body()
    try:
        require_fields(data, "product_cod", "counted_qty")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return result_response(get_runtime().counter.set_count(data["product_cod"], data["counted_qty"]))


@inventory_bp.get("/diffs")
def compute_diffs():
    return result_response(get_runtime().counter.compute_diffs())


@inventory_bp.get("/state")
def count_state():
    return jsonify(get_runtime().counter.state()), 200


@inventory_bp.post("/apply")
def apply_adjustments():
    """
    Post every counted difference as an ajuste movement.

    Request body:
    {
        "reason": str (optional),
        "meta": object (optional),
        "actor": object (optional)
    }
    """
    data = json_body()
    try:
        result = get_runtime().counter.apply_adjustments(
            reason=data.get("reason") or "Inventário",
            meta=data.get("meta"),
            actor=data.get("actor"),
        )
        return result_response(result)
    except Exception:
        current_app.logger.exception("Inventory adjustment failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
