"""
Snapshot restore, safety backups and checksummed export/import tests.
"""

import json

from pdvstore.services import backup_service
from pdvstore.services.backup_service import (
    BACKUP_CAP,
    BACKUP_TYPE,
    create_snapshot,
    export_db,
    import_db,
    list_backups,
    list_snapshots,
    preview_import,
    push_backup,
    restore_backup,
    restore_snapshot,
)
from pdvstore.services.schema_service import SCHEMA_VERSION
from pdvstore.services.kv_service import MemoryKeyValueStore


def _checksum_warnings(result):
    return [w for w in result.warnings if "checksum" in w.lower()]


def test_export_shape(seed, products):
    db = seed(estoque=products)
    payload = json.loads(export_db(db))

    meta = payload["__meta"]
    assert meta["type"] == BACKUP_TYPE
    assert meta["schemaVersion"] == SCHEMA_VERSION
    assert meta["exportedAt"]
    assert len(meta["checksum32"]) == 8
    assert payload["db"]["estoque"] == products


def test_export_then_preview_has_no_checksum_warning(seed, products):
    db = seed(estoque=products)
    for pretty in (True, False):
        result = preview_import(export_db(db, pretty=pretty))
        assert result.ok is True
        assert _checksum_warnings(result) == []



def test_browser_written_backup_with_accents_verifies():
    # Browser side: FNV-1a over charCodeAt() values; BMP text, so one code unit per char
    def browser_checksum(text):
        h = 2166136261
        for ch in text:
            h ^= ord(ch)
            h = (h * 16777619) & 0xFFFFFFFF
        return f"{h:08x}"

    payload = {
        "__meta": {"type": BACKUP_TYPE, "schemaVersion": SCHEMA_VERSION, "exportedAt": "2026-03-01T10:00:00.000Z"},
        "db": {"estoque": [{"cod": "X", "nome": "Feijão 1kg", "qtd": 3}], "vendas": []},
    }
    payload["__meta"]["checksum32"] = browser_checksum(
        json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    )

    result = preview_import(json.dumps(payload, ensure_ascii=False))

    assert result.ok is True
    assert _checksum_warnings(result) == []

def test_tampered_payload_reports_checksum_mismatch(seed, products):
    text = export_db(seed(estoque=products))
    tampered = text.replace("Arroz 5kg", "Arroz 6kg")
    assert tampered != text

    result = preview_import(tampered)

    assert result.ok is True
    assert len(_checksum_warnings(result)) == 1
    assert "mismatch" in _checksum_warnings(result)[0].lower()


def test_preview_summary(seed, products, sale):
    text = export_db(seed(estoque=products, vendas=[sale]))
    summary = preview_import(text)["summary"]
    assert summary["schemaVersion"] == SCHEMA_VERSION
    assert summary["counts"]["estoque"] == 3
    assert summary["counts"]["vendas"] == 1
    assert summary["counts"]["saleVoids"] == 0
    assert summary["exportedAt"]


def test_preview_never_persists(manager, kv, products):
    before = dict((k, kv.get(k)) for k in kv.keys())
    db = manager.get()
    db["estoque"] = products
    preview_import(export_db(db))
    assert dict((k, kv.get(k)) for k in kv.keys()) == before


def test_preview_rejects_unusable_files():
    assert preview_import("{oops").ok is False
    assert preview_import("[1, 2]").ok is False
    result = preview_import(json.dumps({"__meta": {"type": BACKUP_TYPE}}))
    assert result.ok is False
    assert "db" in result.error


def test_preview_warns_on_unknown_type_and_missing_meta():
    result = preview_import(json.dumps({"__meta": {"type": "other"}, "db": {}}))
    assert result.ok is True
    assert any("Unknown backup type" in w for w in result.warnings)

    result = preview_import(json.dumps({"db": {}}))
    assert result.ok is True
    assert any("metadata" in w for w in result.warnings)


def test_import_merge_mode_is_rejected(manager, stored):
    before = stored()
    result = import_db(manager, export_db(manager.get()), merge=True)
    assert result.ok is False
    assert "not supported" in result.error
    assert stored() == before


def test_import_replaces_database_with_safety_backup(manager, kv, stored, products):
    other = manager.get()
    other["estoque"] = products
    text = export_db(other)
    snapshots_before = len(list_snapshots(kv, "test_db"))

    result = import_db(manager, text)

    assert result.ok is True
    assert result["counts"]["estoque"] == 3
    assert stored()["estoque"] == products
    backups = list_backups(manager)
    assert backups[0]["reason"] == "before_import"
    assert backups[0]["counts"]["estoque"] == 0
    assert len(list_snapshots(kv, "test_db")) == snapshots_before + 1


def test_import_migrates_older_backups(manager, stored):
    text = json.dumps({
        "__meta": {"type": BACKUP_TYPE, "schemaVersion": 0},
        "db": {"estoque": [{"cod": "L", "nome": "Legado", "qtd": "5"}]},
    })
    result = import_db(manager, text)

    assert result.ok is True
    assert [(m["from"], m["to"]) for m in result["migrations"]] == [(0, 1), (1, 2)]
    db = stored()
    assert db["schemaVersion"] == SCHEMA_VERSION
    assert db["estoque"][0]["qtd"] == 5
    assert db["stockMovements"] == []


def test_import_storage_failure(manager, kv):
    text = export_db(manager.get())
    kv.fail_writes = True
    result = import_db(manager, text)
    assert result.ok is False
    assert manager.in_recovery is True


def test_restore_snapshot(manager, kv, clock, stored, products):
    db = manager.get()
    db["estoque"] = products
    manager.safe_save(db, force_snapshot=True)
    good_id = list_snapshots(kv, "test_db")[0]["id"]

    db = manager.get()
    db["estoque"] = []
    manager.safe_save(db, force_snapshot=True)
    assert stored()["estoque"] == []

    result = restore_snapshot(manager, good_id)

    assert result.ok is True
    assert result["snapshot_id"] == good_id
    assert stored()["estoque"] == products
    assert list_backups(manager)[0]["reason"] == f"before_restore:{good_id}"


def test_restore_unknown_snapshot_fails(manager, stored):
    before = stored()
    result = restore_snapshot(manager, "snap_nope")
    assert result.ok is False
    assert stored() == before


def test_create_snapshot_caps_and_orders():
    kv = MemoryKeyValueStore()
    db = {"schemaVersion": SCHEMA_VERSION, "estoque": [{"cod": "A"}], "vendas": []}
    for n in range(4):
        create_snapshot(kv, "k", db, max_snapshots=3, snapshot_id=f"s{n}")

    snapshots = list_snapshots(kv, "k")
    assert [s["id"] for s in snapshots] == ["s3", "s2", "s1"]
    assert snapshots[0]["counts"] == {"estoque": 1, "vendas": 0}


def test_unreadable_snapshot_list_counts_as_empty():
    kv = MemoryKeyValueStore({"k__snapshots": "{broken"})
    assert list_snapshots(kv, "k") == []
    create_snapshot(kv, "k", {}, snapshot_id="s1")
    assert [s["id"] for s in list_snapshots(kv, "k")] == ["s1"]


def test_backup_ring_is_capped(manager):
    for n in range(BACKUP_CAP + 5):
        push_backup(manager, {"n": n}, f"r{n}")
    backups = list_backups(manager)
    assert len(backups) == BACKUP_CAP
    assert backups[0]["reason"] == f"r{BACKUP_CAP + 4}"


def test_restore_backup(manager, stored, products):
    db = manager.get()
    db["estoque"] = products
    backup_id = push_backup(manager, db, "manual")

    result = restore_backup(manager, backup_id)

    assert result.ok is True
    assert stored()["estoque"] == products
    assert restore_backup(manager, "bkp_missing").ok is False


def test_merge_backup_sums_stock(seed, manager, stored, products):
    seed(estoque=products)
    incoming = manager.get()
    incoming["estoque"] = [{"cod": "A", "nome": "Arroz 5kg", "qtd": 5}]

    result = backup_service.merge_backup(manager, export_db(incoming))

    assert result.ok is True
    assert result["report"]["updated"]["estoque"] == 1
    by_code = {p["cod"]: p for p in stored()["estoque"]}
    assert by_code["A"]["qtd"] == 15
