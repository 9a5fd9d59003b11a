"""
Pytest fixtures for pdvstore tests.

Provides in-memory stores, a persistence manager with deterministic ids and
a controllable clock, and a Flask app/test client on sqlite in memory.
"""

import json

import pytest

from pdvstore import create_app
from pdvstore.ids import SequentialIdGenerator
from pdvstore.services.kv_service import MemoryKeyValueStore
from pdvstore.services.persistence_service import BackupPolicy, PersistenceManager
from pdvstore.services.sync_service import ERROR_BLOCKED


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingKeyValueStore(MemoryKeyValueStore):
    """Memory store whose writes can be switched to fail (quota, I/O) and whose next reads can be made to raise."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_writes = False
        self.fail_next_reads = 0

    def get(self, key):
        if self.fail_next_reads > 0:
            self.fail_next_reads -= 1
            raise OSError("storage unavailable")
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("quota exceeded")
        super().set(key, value)


class FakeRemote:
    """In-memory remote service keeping one database per token."""

    def __init__(self):
        self.data = {}
        self.rev = {}
        self.blocked = False
        self.calls = []

    def load(self, token):
        self.calls.append("load")
        if self.blocked:
            return {"ok": False, "blocked": True, "error": ERROR_BLOCKED}
        if token not in self.data:
            return {"ok": False, "error": "not_found"}
        return {
            "ok": True,
            "exists": True,
            "db": json.loads(json.dumps(self.data[token])),
            "meta": {"rev": self.rev[token], "updatedAt": "2026-03-01T10:00:00.000Z"},
        }

    def save(self, token, db, meta=None):
        self.calls.append("save")
        if self.blocked:
            return {"ok": False, "blocked": True}
        self.data[token] = json.loads(json.dumps(db))
        self.rev[token] = self.rev.get(token, 0) + 1
        return {"ok": True, "savedAt": "2026-03-01T10:00:00.000Z", "bytes": len(json.dumps(db)), "rev": self.rev[token]}

    def status(self, token):
        self.calls.append("status")
        if self.blocked:
            return {"ok": False, "blocked": True}
        return {
            "ok": True,
            "exists": token in self.data,
            "rev": self.rev.get(token, 0),
            "updatedAt": None,
            "serverTime": "2026-03-01T10:00:00.000Z",
        }


def make_manager(kv, clock, **kwargs) -> PersistenceManager:
    kwargs.setdefault("storage_key", "test_db")
    kwargs.setdefault("policy", BackupPolicy(max_snapshots=5, cooldown_ms=3000))
    return PersistenceManager(kv, ids=SequentialIdGenerator(), clock=clock, **kwargs)


@pytest.fixture
def kv():
    return FailingKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(kv, clock):
    """Initialized manager over an empty in-memory store."""
    m = make_manager(kv, clock)
    m.init()
    return m


@pytest.fixture
def stored(kv):
    """Parsed database currently under the test storage key."""
    def _stored(key: str = "test_db"):
        raw = kv.get(key)
        return json.loads(raw) if raw else None
    return _stored


@pytest.fixture
def seed(manager):
    """Replace collections of the stored database and save."""
    def _seed(**collections):
        db = manager.get()
        db.update(collections)
        saved = manager.safe_save(db)
        assert saved.ok
        return manager.get()
    return _seed


@pytest.fixture
def products():
    return [
        {"cod": "A", "nome": "Arroz 5kg", "qtd": 10, "min": 2, "custo_c": 1800, "preco_c": 2590, "lucro_p": 43.9},
        {"cod": "X", "nome": "Feijão 1kg", "qtd": 3, "min": 5, "custo_c": 600, "preco_c": 899, "lucro_p": 49.8},
        {"cod": "C", "nome": "Café 500g", "qtd": 0, "min": 1, "custo_c": 1200, "preco_c": 1790, "lucro_p": 49.1},
    ]


@pytest.fixture
def sale():
    return {
        "id": "v_0001",
        "dataIso": "2026-03-02T14:05:00.000Z",
        "itens": [
            {"cod": "X", "nome": "Feijão 1kg", "qtd": 2, "preco_c": 899},
            {"cod": "X", "nome": "Feijão 1kg", "qtd": 1, "preco_c": 899},
        ],
        "subtotal_c": 2697,
        "desconto_c": 0,
        "total_c": 2697,
        "status": "ativa",
    }


@pytest.fixture
def app():
    """Fresh app per test, kv_entries on sqlite in memory."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "PDV_STORAGE_KEY": "route_db",
        "PDV_REMOTE_URL": "",
    })
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def remote():
    return FakeRemote()
