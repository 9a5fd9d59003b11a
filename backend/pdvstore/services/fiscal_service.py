# Overview: Service-layer offline fiscal queue; documents waiting to be emitted by the fiscal provider.

"""
Fiscal emission queue.

WHY: When the fiscal provider is unreachable the sale still goes through;
the document to emit is queued on the database and sent later.

RULES:
- An entry is pending while its status is pending, offline_queue or error.
- Entries are removed by document key or by sale id; the first match goes.
- Emission itself (providers, certificates) is not done here.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..results import OperationResult
from ..time_utils import now_iso
from ..validation import as_str
from .concurrency import serialized
from .persistence_service import READ_FAILED_ERROR

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


STATUS_PENDING = "pending"
PENDING_STATUSES = (STATUS_PENDING, "offline_queue", "error")


def ensure_fiscal_queue(db: dict) -> list:
    queue = db.get("fiscalQueue")
    if not isinstance(queue, list):
        queue = []
        db["fiscalQueue"] = queue
    return queue


def _matches(entry: Any, key_or_id: str) -> bool:
    if not isinstance(entry, dict):
        return False
    return as_str(entry.get("key")) == key_or_id or as_str(entry.get("saleId")) == key_or_id


@serialized
def enqueue(manager: "PersistenceManager", item: dict) -> OperationResult:
    """
    Append a document to the queue.

    id, status ("pending") and createdAtIso are filled in when missing.
    """
    if not isinstance(item, dict):
        return OperationResult.failure("Queue entry must be an object")

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    entry = {
        **item,
        "id": item.get("id") or manager.ids.new("fq"),
        "status": item.get("status") or STATUS_PENDING,
        "createdAtIso": item.get("createdAtIso") or now_iso(),
    }
    ensure_fiscal_queue(db).append(entry)

    saved = manager.safe_save(db)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=saved.warnings)
    logger.info("Fiscal document %s queued (sale %s)", entry["id"], entry.get("saleId"))
    return OperationResult.success(warnings=saved.warnings, queue_id=entry["id"])


@serialized
def remove_from_queue(manager: "PersistenceManager", key_or_id: Any) -> OperationResult:
    target = as_str(key_or_id).strip()
    if not target:
        return OperationResult.failure("Document key or sale id is required")

    db = manager.get()
    if manager.read_failed:
        return OperationResult.failure(READ_FAILED_ERROR)
    queue = ensure_fiscal_queue(db)
    index = next((i for i, entry in enumerate(queue) if _matches(entry, target)), None)
    if index is None:
        return OperationResult.failure("Queue entry not found")
    removed = queue.pop(index)

    saved = manager.safe_save(db)
    if not saved.ok:
        return OperationResult.failure(saved.error or "Failed to save database", warnings=saved.warnings)
    return OperationResult.success(warnings=saved.warnings, removed_id=removed.get("id"))


def queue_summary(manager: "PersistenceManager") -> dict:
    queue = ensure_fiscal_queue(manager.get())
    pending = [e for e in queue if isinstance(e, dict) and e.get("status") in PENDING_STATUSES]
    return {
        "total": len(queue),
        "pending": len(pending),
        "last": queue[-1] if queue else None,
    }
