# Overview: Service-layer key-value store adapters; the synchronous key -> string collaborator.

from __future__ import annotations

from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import KeyValueEntry
from .concurrency import run_with_retry


class KeyValueStore(Protocol):
    """
    Synchronous key -> string storage.

    No size or type negotiation: the engine serializes everything itself.
    Implementations raise on write failure (e.g. quota, I/O); the
    persistence manager absorbs those errors.
    """

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store. One instance per tenant/test keeps data isolated."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("KeyValueStore values must be strings")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqlKeyValueStore:
    """
    SQLAlchemy-backed store over the kv_entries table.

    Requires an active Flask app context. Each write commits on its own and
    is retried on transient OperationalError.
    """

    def __init__(self, *, attempts: int = 3, backoff_base: float = 0.1):
        self.attempts = attempts
        self.backoff_base = backoff_base

    def get(self, key: str) -> str | None:
        row = db.session.query(KeyValueEntry).filter_by(key=key).first()
        return row.value if row else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("KeyValueStore values must be strings")

        def _op():
            row = db.session.query(KeyValueEntry).filter_by(key=key).first()
            if row is None:
                row = KeyValueEntry(key=key, value=value)
                db.session.add(row)
            else:
                row.value = value
            db.session.commit()

        self._run(_op)

    def delete(self, key: str) -> None:
        def _op():
            db.session.query(KeyValueEntry).filter_by(key=key).delete()
            db.session.commit()

        self._run(_op)

    def _run(self, op) -> None:
        try:
            run_with_retry(op, attempts=self.attempts, backoff_base=self.backoff_base)
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def keys(self) -> list[str]:
        rows = db.session.query(KeyValueEntry.key).order_by(KeyValueEntry.key).all()
        return [r[0] for r in rows]
