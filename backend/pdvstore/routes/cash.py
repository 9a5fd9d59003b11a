# backend/pdvstore/routes/cash.py
"""
Cash register session API routes.
"""
from flask import Blueprint, current_app, jsonify, request

from ..runtime import get_runtime
from ..services import cash_service
from . import json_body, require_fields, result_response


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _run(operation, *args, status: int = 200, **kwargs):
    try:
        return result_response(operation(get_runtime().manager, *args, **kwargs), status)
    except Exception:
        current_app.logger.exception("Cash operation %s failed", operation.__name__)
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@cash_bp.get("/current")
def current_session():
    return jsonify({"session": cash_service.get_current(get_runtime().manager)}), 200


@cash_bp.get("/sessions")
def list_sessions():
    limit = request.args.get("limit", 30, type=int)
    return jsonify({"sessions": cash_service.list_sessions(get_runtime().manager, limit=limit)}), 200


@cash_bp.post("/open")
def open_session():
    """
    Request body:
    {
        "initial_c": int (optional, cents),
        "note": str (optional),
        "actor": object (optional)
    }
    """
    data = json_body()
    return _run(
        cash_service.open_session,
        data.get("initial_c", 0), data.get("note") or "",
        actor=data.get("actor"), status=201,
    )


@cash_bp.post("/sale")
def add_sale():
    data = json_body()
    try:
        require_fields(data, "sale_id", "amount_c")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return _run(cash_service.add_sale, data["sale_id"], data["amount_c"], actor=data.get("actor"))


@cash_bp.post("/void")
def add_void():
    data = json_body()
    try:
        require_fields(data, "sale_id", "amount_c")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return _run(
        cash_service.add_void,
        data["sale_id"], data["amount_c"], data.get("reason") or "",
        actor=data.get("actor"),
    )


@cash_bp.post("/withdraw")
def withdraw():
    data = json_body()
    try:
        require_fields(data, "amount_c")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return _run(
        cash_service.withdraw,
        data["amount_c"], data.get("reason") or "Sangria",
        actor=data.get("actor"),
    )


@cash_bp.post("/reinforce")
def reinforce():
    data = json_body()
    try:
        require_fields(data, "amount_c")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return _run(
        cash_service.reinforce,
        data["amount_c"], data.get("reason") or "Reforço",
        actor=data.get("actor"),
    )


@cash_bp.post("/close")
def close_session():
    """
    Request body:
    {
        "counted_c": int (cents counted in the drawer),
        "note": str (optional)
    }
    """
    data = json_body()
    try:
        require_fields(data, "counted_c")
    except KeyError as e:
        return jsonify({"ok": False, "error": f"Missing required field: {e}"}), 400
    return _run(
        cash_service.close_session,
        data["counted_c"], data.get("note") or "",
        actor=data.get("actor"),
    )
