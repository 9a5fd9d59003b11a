# backend/pdvstore/routes/reports.py
"""
Read-only report API routes.
"""
from flask import Blueprint, jsonify, request

from ..runtime import get_runtime
from ..services import report_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/stock")
def stock_report():
    """
    Query params:
        low_stock_only: "true" to return only the low-stock list
    """
    low_stock_only = request.args.get("low_stock_only", "false").lower() == "true"
    report = report_service.stock_summary(get_runtime().manager, low_stock_only=low_stock_only)
    return jsonify(report), 200


@reports_bp.get("/stock/movements")
def stock_movements_report():
    """
    Query params:
        start, end: inclusive ISO-8601 boundaries (optional)
    """
    try:
        rows = report_service.movement_rows(
            get_runtime().manager,
            request.args.get("start"),
            request.args.get("end"),
        )
        return jsonify({"rows": rows}), 200
    except report_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/cash")
def cash_report():
    """
    Query params:
        start, end: inclusive ISO-8601 boundaries on openedAtIso (optional)
    """
    manager = get_runtime().manager
    start = request.args.get("start")
    end = request.args.get("end")

    try:
        return jsonify({
            "summary": report_service.cash_summary(manager, start, end),
            "rows": report_service.cash_rows(manager, start, end),
        }), 200
    except report_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
