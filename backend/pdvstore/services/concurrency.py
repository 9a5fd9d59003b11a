# Overview: Write serialization for the local store: kv_entries retries and the ledger lock.

from __future__ import annotations

import functools
import time

from sqlalchemy.exc import OperationalError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one kv_entries upsert/delete, retrying when SQLite reports the file locked.

    Only OperationalError is retried. The session is rolled back before each
    new attempt so the next flush starts clean; the last error is re-raised
    to the key-value store, which turns it into a failed save.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def serialized(func):
    """
    Hold the manager's lock for the whole call.

    Wraps ledger entry points whose first argument is a PersistenceManager,
    so the get() -> modify -> safe_save() cycle of one call never interleaves
    with another's and no write is lost.
    """
    @functools.wraps(func)
    def wrapper(manager, *args, **kwargs):
        with manager.lock:
            return func(manager, *args, **kwargs)
    return wrapper
