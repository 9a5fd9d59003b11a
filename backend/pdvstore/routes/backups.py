# backend/pdvstore/routes/backups.py
"""
Snapshot, safety backup and export/import API routes.
"""
from flask import Blueprint, Response, current_app, jsonify, request

from ..runtime import get_runtime
from ..services import backup_service
from . import result_response


backups_bp = Blueprint("backups", __name__, url_prefix="/api")


def _backup_text() -> str:
    """
    Backup file from the request.

    Accepts a JSON body {"text": "<file contents>"}, a JSON body that is
    the backup itself, or the raw file as the request body.
    """
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        if isinstance(data.get("text"), str):
            return data["text"]
        if "db" in data:
            return request.get_data(as_text=True)
    return request.get_data(as_text=True)


@backups_bp.get("/snapshots")
def list_snapshots():
    manager = get_runtime().manager
    return jsonify({"snapshots": backup_service.list_snapshots(manager.kv, manager.storage_key)}), 200


@backups_bp.post("/snapshots/<snapshot_id>/restore")
def restore_snapshot(snapshot_id: str):
    try:
        result = backup_service.restore_snapshot(get_runtime().manager, snapshot_id)
        return result_response(result)
    except Exception:
        current_app.logger.exception("Snapshot restore failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@backups_bp.get("/backups")
def list_backups():
    return jsonify({"backups": backup_service.list_backups(get_runtime().manager)}), 200


@backups_bp.post("/backups/<backup_id>/restore")
def restore_backup(backup_id: str):
    try:
        result = backup_service.restore_backup(get_runtime().manager, backup_id)
        return result_response(result)
    except Exception:
        current_app.logger.exception("Backup restore failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@backups_bp.get("/backup/export")
def export_backup():
    """
    Download the current database as a checksummed backup file.

    Query params:
        pretty: "0" for compact output (default indented)
    """
    pretty = request.args.get("pretty", "1") not in ("0", "false")
    text = backup_service.export_db(get_runtime().manager.get(), pretty=pretty)
    return Response(
        text,
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=erp_backup.json"},
    )


@backups_bp.post("/backup/preview")
def preview_backup():
    """Inspect a backup file; nothing is written."""
    return result_response(backup_service.preview_import(_backup_text()))


@backups_bp.post("/backup/import")
def import_backup():
    """
    Replace the local database with a backup file.

    Query params:
        merge: "1" is rejected; use /api/backup/merge
    """
    merge = request.args.get("merge", "0") in ("1", "true")
    try:
        result = backup_service.import_db(get_runtime().manager, _backup_text(), merge=merge)
        return result_response(result)
    except Exception:
        current_app.logger.exception("Backup import failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500


@backups_bp.post("/backup/merge")
def merge_backup():
    """
    Merge a backup file into the local database.

    Query params:
        prefer: "current" (default) or "incoming"
        sum_stock_qty: "0" to pick quantities by preference instead of summing
    """
    prefer = request.args.get("prefer", "current")
    sum_stock_qty = request.args.get("sum_stock_qty", "1") not in ("0", "false")
    try:
        result = backup_service.merge_backup(
            get_runtime().manager, _backup_text(),
            prefer=prefer, sum_stock_qty=sum_stock_qty,
        )
        return result_response(result)
    except Exception:
        current_app.logger.exception("Backup merge failed")
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
