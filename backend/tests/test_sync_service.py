"""
Remote sync tests with an in-memory remote and a mocked HTTP transport.
"""

import json

import httpx

from pdvstore.services import sync_service
from pdvstore.services.backup_service import list_backups
from pdvstore.services.sync_service import ERROR_BLOCKED, HttpRemoteStore


def _all_values(kv):
    return {k: kv.get(k) for k in kv.keys()}


def test_push_records_revision(manager, remote):
    result = sync_service.push(manager, remote, "tok")

    assert result.ok is True
    assert result["rev"] == 1
    assert sync_service.get_sync_state(manager)["rev"] == 1
    assert remote.data["tok"]["schemaVersion"] == 2


def test_status_reports_staleness(manager, remote):
    sync_service.push(manager, remote, "tok")
    assert sync_service.check_status(manager, remote, "tok")["stale"] is False

    remote.save("tok", remote.data["tok"])
    status = sync_service.check_status(manager, remote, "tok")

    assert status.ok is True
    assert status["exists"] is True
    assert status["rev"] == 2
    assert status["local_rev"] == 1
    assert status["stale"] is True


def test_pull_and_merge_sums_stock(seed, manager, stored, remote, products):
    seed(estoque=products)
    remote_db = manager.get()
    remote_db["estoque"] = [{"cod": "A", "nome": "Arroz 5kg", "qtd": 4}, {"cod": "N", "nome": "Novo", "qtd": 1}]
    remote.save("tok", remote_db)

    result = sync_service.pull_and_merge(manager, remote, "tok")

    assert result.ok is True
    assert result["changed"] is True
    assert result["rev"] == 1
    by_code = {p["cod"]: p["qtd"] for p in stored()["estoque"]}
    assert by_code["A"] == 14
    assert by_code["N"] == 1
    assert result["report"]["added"]["estoque"] == 1
    assert list_backups(manager)[0]["reason"] == "before_sync_merge"
    assert sync_service.get_sync_state(manager)["rev"] == 1


def test_pull_and_merge_with_nothing_remote(manager, kv, remote):
    before = _all_values(kv)

    result = sync_service.pull_and_merge(manager, remote, "tok")

    assert result.ok is True
    assert result["changed"] is False
    assert _all_values(kv) == before


def test_blocked_account_writes_nothing(seed, manager, kv, remote, products):
    seed(estoque=products)
    remote.save("tok", manager.get())
    remote.blocked = True
    before = _all_values(kv)

    for result in (
        sync_service.pull_and_merge(manager, remote, "tok"),
        sync_service.pull_and_replace(manager, remote, "tok"),
        sync_service.push(manager, remote, "tok"),
        sync_service.check_status(manager, remote, "tok"),
    ):
        assert result.ok is False
        assert result.error == ERROR_BLOCKED
        assert result["blocked"] is True

    assert _all_values(kv) == before


def test_pull_and_replace(seed, manager, stored, remote, products):
    seed(estoque=products)
    remote_db = manager.get()
    remote_db["estoque"] = [{"cod": "R", "nome": "Remoto", "qtd": 7}]
    remote.save("tok", remote_db)

    result = sync_service.pull_and_replace(manager, remote, "tok")

    assert result.ok is True
    assert [p["cod"] for p in stored()["estoque"]] == ["R"]
    assert list_backups(manager)[0]["reason"] == "before_sync_replace"


def test_pull_and_replace_with_nothing_remote(manager, remote):
    result = sync_service.pull_and_replace(manager, remote, "tok")
    assert result.ok is False
    assert result.error == "Nothing stored remotely"


def _http_remote(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpRemoteStore("https://sync.example.test/", client=client)


def test_http_remote_requests():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.url.params.get("token")))
        if request.method == "POST":
            body = json.loads(request.content)
            assert body["token"] == "tok"
            assert body["db"] == {"estoque": []}
            return httpx.Response(200, json={"ok": True, "rev": 3, "savedAt": "x", "bytes": 10})
        if request.url.path == "/api/sync/status":
            return httpx.Response(200, json={"ok": True, "exists": True, "rev": 3})
        return httpx.Response(404, json={"ok": False, "error": "not_found"})

    remote = _http_remote(handler)

    assert remote.save("tok", {"estoque": []})["rev"] == 3
    assert remote.status("tok")["rev"] == 3
    assert remote.load("tok") == {"ok": False, "error": "not_found"}
    assert seen == [
        ("POST", "/api/data", None),
        ("GET", "/api/sync/status", "tok"),
        ("GET", "/api/data", "tok"),
    ]


def test_http_remote_transport_error_is_returned():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    resp = _http_remote(handler).load("tok")

    assert resp["ok"] is False
    assert "connection refused" in resp["error"]


def test_http_remote_non_json_answer():
    remote = _http_remote(lambda request: httpx.Response(502, text="Bad Gateway"))
    resp = remote.status("tok")
    assert resp == {"ok": False, "error": "Unexpected response (HTTP 502)"}


def test_http_remote_blocked_answer_reaches_sync(manager, kv):
    remote = _http_remote(lambda request: httpx.Response(403, json={"ok": False, "blocked": True}))
    before = _all_values(kv)

    result = sync_service.pull_and_merge(manager, remote, "tok")

    assert result.ok is False
    assert result["blocked"] is True
    assert _all_values(kv) == before
