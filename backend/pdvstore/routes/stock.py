# backend/pdvstore/routes/stock.py
"""
Stock movement API routes.
"""
from flask import Blueprint, current_app, jsonify, request

from ..runtime import get_runtime
from ..services import stock_service
from . import json_body, require_fields, result_response


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/movements")
def list_movements():
    """
    Query params:
        product_cod: filter by product (optional)
        limit: most recent N movements (default 200)
    """
    limit = request.args.get("limit", 200, type=int)
    movements = stock_service.list_movements(
        get_runtime().manager,
        product_cod=request.args.get("product_cod"),
        limit=limit,
    )
    return jsonify({"movements": movements}), 200


@stock_bp.post("/movements")
def add_movement():
    """
    Record a stock movement.

    Request body:
    {
        "type": str,  // entrada | saida | ajuste | perda | devolucao
        "product_cod": str,
        "qty_delta": int (optional),
        "qty": int (optional, used when qty_delta is absent),
        "reason": str (optional),
        "meta": object (optional),
        "actor": {"id", "username", "role"} (optional)
    }

    Returns:
        201: Movement recorded
        400: Invalid request or product not found
    """
    data = json_body()

    try:
        require_fields(data, "type", "product_cod")
        result = stock_service.add_movement(
            get_runtime().manager,
            type=data["type"],
            product_cod=data["product_cod"],
            qty_delta=data.get("qty_delta"),
            qty=data.get("qty"),
            reason=data.get("reason") or "",
            meta=data.get("meta"),
            actor=data.get("actor"),
        )
        return result_response(result, 201)

    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    except Exception:
        current_app.logger.exception("Stock movement failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
