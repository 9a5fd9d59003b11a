# backend/pdvstore/routes/sync.py
"""
Remote sync API routes.

The remote client and default token come from PDV_REMOTE_URL and
PDV_REMOTE_TOKEN; a request may pass its own token.
"""
from flask import Blueprint, current_app, jsonify, request

from ..runtime import get_runtime
from ..services import sync_service
from . import json_body, result_response


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


def _remote_and_token(token: str | None):
    runtime = get_runtime()
    if runtime.remote is None:
        return None, None, (jsonify({"ok": False, "error": "Remote sync is not configured"}), 400)
    token = (token or runtime.remote_token or "").strip()
    if not token:
        return None, None, (jsonify({"ok": False, "error": "Missing required field: 'token'"}), 400)
    return runtime.remote, token, None


def _run(operation, token: str | None, **kwargs):
    remote, token, error = _remote_and_token(token)
    if error:
        return error
    try:
        return result_response(operation(get_runtime().manager, remote, token, **kwargs))
    except Exception:
        current_app.logger.exception("Sync operation %s failed", operation.__name__)
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@sync_bp.get("/status")
def status():
    return _run(sync_service.check_status, request.args.get("token"))


@sync_bp.post("/merge")
def pull_and_merge():
    """
    Request body:
    {
        "token": str (optional),
        "prefer": "current" | "incoming" (optional),
        "sum_stock_qty": bool (optional, default true)
    }
    """
    data = json_body()
    return _run(
        sync_service.pull_and_merge,
        data.get("token"),
        prefer=data.get("prefer") or "current",
        sum_stock_qty=bool(data.get("sum_stock_qty", True)),
    )


@sync_bp.post("/pull")
def pull_and_replace():
    data = json_body()
    return _run(sync_service.pull_and_replace, data.get("token"))


@sync_bp.post("/push")
def push():
    data = json_body()
    return _run(sync_service.push, data.get("token"), meta=data.get("meta"))
