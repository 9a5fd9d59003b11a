# Overview: Service-layer audit trail; best-effort append-only log of ledger operations.

"""
Audit trail.

WHY: Stock, cash and sale changes must be traceable to an operator. The
actor is always passed in explicitly by the caller; the engine has no notion
of a "current user".

Audit is best-effort: it runs after the primary operation has been saved
and a failure here is logged, never reported as a failed operation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..time_utils import now_iso
from .concurrency import serialized

if TYPE_CHECKING:
    from .persistence_service import PersistenceManager

logger = logging.getLogger(__name__)


INVALID_ACTOR = "Invalid actor"


@dataclass(frozen=True)
class Actor:
    id: str | None = None
    username: str | None = None
    role: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> "Actor | None":
        """Accept an Actor, a {id, username, role} mapping or None."""
        if value is None or isinstance(value, Actor):
            return value
        if isinstance(value, dict):
            return cls(
                id=value.get("id"),
                username=value.get("username"),
                role=value.get("role"),
            )
        raise TypeError(f"Unsupported actor: {value!r}")

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "role": self.role}


def actor_dict(actor: Actor | dict | None) -> dict | None:
    resolved = Actor.from_value(actor)
    return resolved.to_dict() if resolved else None


def build_entry(
    manager: "PersistenceManager",
    action: str,
    entity: str,
    entity_id: Any,
    *,
    actor: Actor | dict | None = None,
    before: Any = None,
    after: Any = None,
    meta: Any = None,
) -> dict:
    return {
        "id": manager.ids.new("aud"),
        "atIso": now_iso(),
        "action": action,
        "entity": entity,
        "entityId": entity_id,
        "actor": actor_dict(actor),
        "before": before,
        "after": after,
        "meta": meta,
    }


@serialized
def record_audit(
    manager: "PersistenceManager",
    action: str,
    entity: str,
    entity_id: Any,
    *,
    actor: Actor | dict | None = None,
    before: Any = None,
    after: Any = None,
    meta: Any = None,
) -> bool:
    """
    Append an audit entry.

    Goes to manager.audit_sink when one is configured, otherwise to the
    database's own auditLog. Returns False (after logging a warning) when
    the entry could not be recorded.
    """
    try:
        entry = build_entry(
            manager, action, entity, entity_id,
            actor=actor, before=before, after=after, meta=meta,
        )
        if manager.audit_sink is not None:
            manager.audit_sink(entry)
            return True

        db = manager.get()
        db["auditLog"].append(entry)
        saved = manager.safe_save(db, skip_normalize=True)
        if not saved.ok:
            logger.warning("Audit entry %s for %s not saved: %s", action, entity_id, saved.error)
            return False
        return True
    except Exception as exc:
        logger.warning("Audit entry %s for %s failed: %s", action, entity_id, exc)
        return False


def list_audit(manager: "PersistenceManager", *, entity: str | None = None, limit: int = 200) -> list[dict]:
    """Most recent `limit` entries, oldest first."""
    entries = manager.get().get("auditLog", [])
    if entity:
        entries = [e for e in entries if e.get("entity") == entity]
    if limit <= 0:
        return []
    return entries[-limit:]
