# backend/pdvstore/routes/sales.py
"""
Sale cancellation API routes.
"""
from flask import Blueprint, current_app, jsonify

from ..runtime import get_runtime
from ..services import void_service
from . import json_body, result_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/<sale_id>/cancel")
def cancel_sale(sale_id: str):
    """
    Void a sale: restock its lines, record the void, refund the register.

    Request body:
    {
        "reason": str (optional, default "Cancelado"),
        "restock": bool (optional, default true),
        "actor": object (optional)
    }

    Returns:
        200: Sale voided
        400: Sale not found or already voided
    """
    data = json_body()
    try:
        result = void_service.cancel_sale(
            get_runtime().manager,
            sale_id,
            reason=data.get("reason") or "Cancelado",
            restock=bool(data.get("restock", True)),
            actor=data.get("actor"),
        )
        return result_response(result)
    except Exception:
        current_app.logger.exception("Sale cancellation failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
