"""
Retry helper and ledger lock tests.
"""

import pytest
from sqlalchemy.exc import OperationalError

from pdvstore.services.concurrency import run_with_retry, serialized


def _locked():
    return OperationalError("UPDATE kv_entries", {}, Exception("database is locked"))


def test_retries_until_success(app):
    calls = []

    def op():
        calls.append(1)
        if len(calls) < 3:
            raise _locked()
        return "done"

    assert run_with_retry(op, attempts=3, backoff_base=0) == "done"
    assert len(calls) == 3


def test_gives_up_after_attempts(app):
    calls = []

    def op():
        calls.append(1)
        raise _locked()

    with pytest.raises(OperationalError):
        run_with_retry(op, attempts=2, backoff_base=0)
    assert len(calls) == 2


def test_other_errors_are_not_retried(app):
    calls = []

    def op():
        calls.append(1)
        raise ValueError("bad value")

    with pytest.raises(ValueError):
        run_with_retry(op, attempts=3, backoff_base=0)
    assert len(calls) == 1


def test_serialized_holds_the_manager_lock(manager):
    seen = []

    @serialized
    def op(m, value, *, flag=False):
        # RLock is re-entrant; acquiring again from the holder succeeds
        seen.append((value, flag, m.lock.acquire(blocking=False)))
        m.lock.release()
        return value * 2

    assert op(manager, 21, flag=True) == 42
    assert seen == [(21, True, True)]
    assert op.__name__ == "op"
