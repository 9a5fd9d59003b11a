# backend/pdvstore/routes/system.py
"""
System health and recovery endpoints.

Health reports the local store's state; recovery exposes the sticky
recovery flag so the UI can tell the operator the data was reset.
"""
import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import KeyValueEntry
from ..runtime import get_runtime
from ..services.schema_service import SCHEMA_VERSION
from ..time_utils import now_iso

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check the kv_entries table is reachable.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        entries = db.session.query(KeyValueEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"kv_entries": entries},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Health of the local store.

    Returns:
    - 200: healthy, or degraded while recovery mode is active
    - 503: database unreachable
    """
    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        return jsonify({
            "status": "unhealthy",
            "timestamp": now_iso(),
            "checks": {"database": database_health},
        }), 503

    runtime = get_runtime()
    recovery = runtime.manager.recovery_status()
    return jsonify({
        "status": "degraded" if recovery["active"] else "healthy",
        "timestamp": now_iso(),
        "storage_key": runtime.manager.storage_key,
        "schema_version": SCHEMA_VERSION,
        "recovery": recovery,
        "remote_configured": runtime.remote is not None,
        "checks": {"database": database_health},
    }), 200


@system_bp.get("/recovery")
def recovery_status():
    runtime = get_runtime()
    return jsonify({
        "recovery": runtime.manager.recovery_status(),
        "init": runtime.init_result.to_dict() if runtime.init_result else None,
    }), 200


@system_bp.post("/recovery/clear")
def clear_recovery():
    """Operator acknowledged the reset; drop the recovery flag."""
    runtime = get_runtime()
    runtime.manager.clear_recovery()
    current_app.logger.info("Recovery mode cleared for %s", runtime.manager.storage_key)
    return jsonify({"ok": True, "recovery": runtime.manager.recovery_status()}), 200
