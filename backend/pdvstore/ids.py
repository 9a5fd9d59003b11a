# Overview: Identifier generators injected into the persistence manager and ledgers.

from __future__ import annotations

import itertools
import threading
import uuid
from typing import Protocol


class IdGenerator(Protocol):
    def new(self, prefix: str = "id") -> str:
        ...


class UuidIdGenerator:
    """Random identifiers: `<prefix>_<uuid4 hex>`."""

    def new(self, prefix: str = "id") -> str:
        return f"{prefix}_{uuid.uuid4().hex}"


class SequentialIdGenerator:
    """
    Monotonic identifiers: `<prefix>_000001`, `<prefix>_000002`, ...

    One counter is shared by all prefixes so ids sort in creation order.
    Used where ids must be deterministic (tests, replays).
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def new(self, prefix: str = "id") -> str:
        with self._lock:
            n = next(self._counter)
        return f"{prefix}_{str(n).zfill(6)}"
