# backend/pdvstore/routes/fiscal.py
"""
Offline fiscal queue API routes.
"""
from flask import Blueprint, current_app, jsonify

from ..runtime import get_runtime
from ..services import fiscal_service
from . import json_body, result_response


fiscal_bp = Blueprint("fiscal", __name__, url_prefix="/api/fiscal")


@fiscal_bp.get("/queue")
def queue_summary():
    return jsonify(fiscal_service.queue_summary(get_runtime().manager)), 200


@fiscal_bp.post("/queue")
def enqueue():
    """
    Queue a document for later emission.

    Request body: the queue entry, e.g.
    {
        "saleId": str,
        "key": str (optional),
        "status": str (optional, default "pending")
    }

    Returns:
        201: Entry queued
        400: Body is not an object or could not be saved
    """
    try:
        result = fiscal_service.enqueue(get_runtime().manager, json_body())
        return result_response(result, 201)
    except Exception:
        current_app.logger.exception("Fiscal enqueue failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@fiscal_bp.delete("/queue/<key_or_id>")
def remove_from_queue(key_or_id: str):
    try:
        result = fiscal_service.remove_from_queue(get_runtime().manager, key_or_id)
        return result_response(result)
    except Exception:
        current_app.logger.exception("Fiscal queue removal failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
