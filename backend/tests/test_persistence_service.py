"""
Persistence manager tests: init paths, atomic save, snapshot policy and
recovery mode.
"""

import json

from pdvstore.services.backup_service import list_snapshots
from pdvstore.services.persistence_service import (
    RECOVERY_CORRUPTED_JSON,
    READ_FAILED_ERROR,
    RECOVERY_STORAGE_ERROR,
    BackupPolicy,
)
from pdvstore.services.schema_service import SCHEMA_VERSION

from .conftest import FailingKeyValueStore, FakeClock, make_manager


def test_first_run_writes_default(kv, clock, stored):
    manager = make_manager(kv, clock)
    res = manager.init()

    assert res.ok is True
    assert res.version_from == 0
    assert res.version_to == SCHEMA_VERSION
    assert res.repaired is False
    assert stored()["schemaVersion"] == SCHEMA_VERSION
    assert manager.in_recovery is False


def test_corrupted_json_resets_and_enters_recovery(kv, clock, stored):
    kv.set("test_db", "{this is not json")
    manager = make_manager(kv, clock)

    res = manager.init()

    assert res.repaired is True
    assert res.warnings
    status = manager.recovery_status()
    assert status["active"] is True
    assert status["reason"] == RECOVERY_CORRUPTED_JSON
    assert status["since"]
    assert stored()["estoque"] == []
    assert len(list_snapshots(kv, "test_db")) == 1


def test_legacy_data_is_migrated_and_normalized(kv, clock, stored):
    kv.set("test_db", json.dumps({"estoque": [{"cod": "A", "nome": "Arroz", "qtd": -4}]}))
    manager = make_manager(kv, clock)

    res = manager.init()

    assert res.ok is True
    assert res.version_from == 0
    assert res.repaired is True
    assert [(m["from"], m["to"]) for m in res.migrations] == [(0, 1), (1, 2)]
    assert "Negative stock corrected for code A" in res.warnings
    db = stored()
    assert db["schemaVersion"] == SCHEMA_VERSION
    assert db["estoque"][0]["qtd"] == 0
    assert manager.in_recovery is False


def test_clean_data_init_reports_nothing(manager, clock):
    res = manager.init()
    assert res.ok is True
    assert res.version_from == SCHEMA_VERSION
    assert res.warnings == []
    assert res.repaired is False


def test_get_on_corrupted_value_returns_default(manager, kv):
    kv.set("test_db", "[[[")
    db = manager.get()
    assert db["estoque"] == []
    assert manager.recovery_status()["reason"] == RECOVERY_CORRUPTED_JSON


def test_get_missing_value_returns_default(kv, clock):
    manager = make_manager(kv, clock)
    assert manager.get()["schemaVersion"] == SCHEMA_VERSION
    assert kv.get("test_db") is None


def test_safe_save_goes_through_tmp_and_stamps_updated_at(manager, kv, stored, products):
    db = manager.get()
    db["meta"]["updatedAt"] = "2000-01-01T00:00:00.000Z"
    db["estoque"] = products

    res = manager.safe_save(db)

    assert res.ok is True
    assert kv.get("test_db__tmp") is None
    saved = stored()
    assert saved["estoque"] == products
    assert saved["meta"]["updatedAt"] != "2000-01-01T00:00:00.000Z"


def test_safe_save_normalizes_and_returns_warnings(manager, stored):
    db = manager.get()
    db["estoque"] = [{"cod": "A", "nome": "Arroz", "qtd": -1}]
    res = manager.safe_save(db)
    assert res.ok is True
    assert "Negative stock corrected for code A" in res.warnings
    assert stored()["estoque"][0]["qtd"] == 0


def test_snapshot_cooldown(manager, kv, clock):
    # init took the first snapshot
    assert len(list_snapshots(kv, "test_db")) == 1

    res = manager.safe_save(manager.get())
    assert res.snapshot_created is False

    clock.advance(3.0)
    res = manager.safe_save(manager.get())
    assert res.snapshot_created is True
    assert len(list_snapshots(kv, "test_db")) == 2

    res = manager.safe_save(manager.get(), force_snapshot=True)
    assert res.snapshot_created is True
    assert len(list_snapshots(kv, "test_db")) == 3


def test_snapshot_list_is_capped_most_recent_first(manager, kv):
    for _ in range(8):
        manager.safe_save(manager.get(), force_snapshot=True)

    snapshots = list_snapshots(kv, "test_db")
    assert len(snapshots) == 5
    ids = [s["id"] for s in snapshots]
    assert ids == sorted(ids, reverse=True)
    assert "data" not in snapshots[0]


def test_storage_failure_enables_recovery_without_raising(manager, kv):
    kv.fail_writes = True

    res = manager.safe_save(manager.get())

    assert res.ok is False
    assert "quota exceeded" in res.error
    assert manager.recovery_status()["reason"] == RECOVERY_STORAGE_ERROR


def test_recovery_is_sticky_until_cleared(manager, kv):
    kv.fail_writes = True
    manager.safe_save(manager.get())
    kv.fail_writes = False

    assert manager.safe_save(manager.get()).ok is True
    assert manager.in_recovery is True

    manager.clear_recovery()
    assert manager.recovery_status() == {"active": False, "reason": "", "details": None, "since": None}



def test_failed_read_blocks_saves_until_a_read_succeeds(manager, kv, stored, products):
    db = manager.get()
    db["estoque"] = products
    assert manager.safe_save(db).ok is True
    before = stored()

    kv.fail_next_reads = 1
    empty = manager.get()

    assert empty["estoque"] == []
    assert manager.read_failed is True
    assert manager.recovery_status()["reason"] == RECOVERY_STORAGE_ERROR
    res = manager.safe_save(empty)
    assert res.ok is False
    assert res.error == READ_FAILED_ERROR
    assert stored() == before

    assert [p["cod"] for p in manager.get()["estoque"]] == ["A", "X", "C"]
    assert manager.read_failed is False
    assert manager.safe_save(manager.get()).ok is True


def test_skip_normalize_save_leaves_caller_meta_alone(manager, stored):
    db = manager.get()
    db["meta"]["updatedAt"] = "2020-01-01T00:00:00.000Z"

    assert manager.safe_save(db, skip_normalize=True).ok is True

    assert db["meta"]["updatedAt"] == "2020-01-01T00:00:00.000Z"
    assert stored()["meta"]["updatedAt"] != "2020-01-01T00:00:00.000Z"

def test_managers_do_not_share_state():
    kv = FailingKeyValueStore()
    clock = FakeClock()
    a = make_manager(kv, clock, storage_key="tenant_a", policy=BackupPolicy(max_snapshots=2, cooldown_ms=0))
    b = make_manager(kv, clock, storage_key="tenant_b")
    a.init()
    b.init()

    db = a.get()
    db["estoque"] = [{"cod": "A", "nome": "Arroz", "qtd": 1}]
    a.safe_save(db)
    a.enable_recovery("manual")

    assert b.get()["estoque"] == []
    assert b.in_recovery is False
    assert len(list_snapshots(kv, "tenant_a")) == 2
    assert len(list_snapshots(kv, "tenant_b")) == 1


def test_blank_storage_key_falls_back_to_default(kv, clock):
    manager = make_manager(kv, clock, storage_key="  ")
    assert manager.storage_key == "erp_db"
    assert manager.snapshots_key == "erp_db__snapshots"
