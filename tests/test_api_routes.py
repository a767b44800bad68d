from __future__ import annotations

from fastapi.testclient import TestClient

from tokenlock.api.app import create_app
from tokenlock.runtime.collaborators import AdministratorCapability, ManualClock
from tokenlock.runtime.executor import VestingExecutor
from tokenlock.runtime.metrics import reset as reset_metrics
from tokenlock.testing.assets import RecordingAssetBook
from tokenlock.testing.sigtools import identity, signed_tx

LEDGER_ID = "tokenlock-api-test"
ASSET = "vest-token"
CUSTODY = "tokenlock-custody"


def _client(monkeypatch, **env):
    monkeypatch.setenv("TOKENLOCK_MODE", "dev")
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    book = RecordingAssetBook()
    clock = ManualClock(1_000)
    book.mint(ASSET, identity("admin"), 10_000)
    ex = VestingExecutor(
        book=book,
        asset=ASSET,
        custody=CUSTODY,
        authority=AdministratorCapability(identity("admin")),
        ledger_id=LEDGER_ID,
        clock=clock,
    )
    app = create_app(boot_runtime=False, executor=ex)
    return TestClient(app), ex, clock


def _tx(label: str, tx_type: str, nonce: int, **payload):
    return signed_tx(label=label, ledger_id=LEDGER_ID, tx_type=tx_type, nonce=nonce, payload=payload)


def _setup_schedule(c: TestClient) -> str:
    alice = identity("alice")
    r = c.post(
        "/v1/tx/submit",
        json=_tx("admin", "VESTING_SCHEDULE_SET", 1, recipient=alice, delays=[0, 100], amounts=[40, 60]),
    )
    assert r.status_code == 200, r.text
    r = c.post("/v1/tx/submit", json=_tx("admin", "ASSET_TRANSFER", 2, asset=ASSET, to=CUSTODY, amount=100))
    assert r.status_code == 200, r.text
    return alice


def test_health_reports_ledger_phase(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)

    for path in ("/v1/health", "/healthz"):
        r = c.get(path)
        assert r.status_code == 200
        j = r.json()
        assert j["ok"] is True
        assert j["service"] == "tokenlock"
        assert j["executor_attached"] is True
        assert j["ledger_id"] == LEDGER_ID
        assert j["phase"] == "open"


def test_health_without_executor(monkeypatch):
    monkeypatch.setenv("TOKENLOCK_MODE", "dev")
    c = TestClient(create_app(boot_runtime=False))

    j = c.get("/v1/health").json()
    assert j["executor_attached"] is False
    assert j["ledger_id"] is None

    r = c.get("/v1/ledger")
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "not_ready"


def test_ledger_summary_and_recipient_views(monkeypatch):
    c, _ex, clock = _client(monkeypatch)
    alice = _setup_schedule(c)

    j = c.get("/v1/ledger").json()
    assert j["activated"] is False
    assert j["activation_ts"] is None
    assert j["total_outstanding"] == 100
    assert j["custody_balance"] == 100
    assert j["excess_custody"] == 0
    assert j["recipient_count"] == 1

    assert c.get("/v1/recipients").json()["recipients"] == [alice]

    r = c.post("/v1/tx/submit", json=_tx("admin", "VESTING_LOCKUP", 3))
    assert r.status_code == 200

    j = c.get(f"/v1/recipients/{alice}").json()
    assert j["remaining"] == 100
    assert j["unlocked"] == 40
    assert j["withdrawable"] == 40
    assert [e["matures_at"] for e in j["entries"]] == [1_000, 1_100]

    # A query-time override does not move the ledger clock.
    j = c.get(f"/v1/recipients/{alice}", params={"at": 1_100}).json()
    assert j["unlocked"] == 100
    assert clock.now() == 1_000

    j = c.get(f"/v1/recipients/{alice}/schedule/1").json()
    assert j == {"index": 1, "amount": 60, "delay_s": 100, "matures_at": 1_100}


def test_schedule_entry_out_of_range_is_404(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    alice = _setup_schedule(c)

    r = c.get(f"/v1/recipients/{alice}/schedule/2")
    assert r.status_code == 404
    err = r.json()["error"]
    assert err["code"] == "schedule_entry_not_found"
    assert err["details"]["length"] == 2

    r = c.get("/v1/recipients/nobody/schedule/0")
    assert r.status_code == 404


def test_bad_query_param_is_400(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    r = c.get("/v1/recipients/alice", params={"at": "soon"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_param"


def test_withdraw_over_http_moves_tokens(monkeypatch):
    c, ex, _clock = _client(monkeypatch)
    alice = _setup_schedule(c)
    assert c.post("/v1/tx/submit", json=_tx("admin", "VESTING_LOCKUP", 3)).status_code == 200

    r = c.post("/v1/tx/submit", json=_tx("alice", "VESTING_WITHDRAW", 1, amount=40))
    assert r.status_code == 200
    receipt = r.json()["receipt"]
    assert receipt["applied"] == "VESTING_WITHDRAW"
    assert receipt["amount"] == 40

    j = c.get(f"/v1/assets/{ASSET}/balances/{alice}").json()
    assert j["balance"] == 40
    assert c.get(f"/v1/signers/{alice}/nonce").json()["next_nonce"] == 2
    assert ex.withdrawn_total(alice) == 40


def test_ledger_errors_map_to_http_statuses(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    _setup_schedule(c)

    # Not the administrator.
    r = c.post("/v1/tx/submit", json=_tx("mallory", "VESTING_LOCKUP", 1))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "unauthorized"

    # Replayed nonce.
    r = c.post("/v1/tx/submit", json=_tx("admin", "VESTING_LOCKUP", 1))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "bad_nonce"

    # Bad signature.
    env = _tx("admin", "VESTING_LOCKUP", 3)
    env["sig"] = "00" * 64
    r = c.post("/v1/tx/submit", json=env)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "invalid_signature"

    # Unknown tx type.
    r = c.post("/v1/tx/submit", json=_tx("admin", "VESTING_MINT", 3))
    assert r.status_code == 400

    # Rule violation: withdrawal before activation.
    r = c.post("/v1/tx/submit", json=_tx("alice", "VESTING_WITHDRAW", 1, amount=1))
    assert r.status_code == 409
    j = r.json()
    assert j["ok"] is False
    assert j["error"]["code"] == "not_activated"


def test_malformed_envelope_is_rejected_by_schema(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    env = _tx("admin", "VESTING_LOCKUP", 1)
    env["extra"] = True
    assert c.post("/v1/tx/submit", json=env).status_code == 422

    env = _tx("admin", "VESTING_LOCKUP", 1)
    env["nonce"] = 0
    assert c.post("/v1/tx/submit", json=env).status_code == 422


def test_receipts_tail_is_oldest_first_and_capped(monkeypatch):
    c, _ex, _clock = _client(monkeypatch, TOKENLOCK_RECEIPTS_PAGE_MAX="1")
    _setup_schedule(c)

    j = c.get("/v1/receipts", params={"limit": 10}).json()
    assert j["count"] == 1
    assert j["receipts"][0]["applied"] == "ASSET_TRANSFER"


def test_receipts_tail_default(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    _setup_schedule(c)

    j = c.get("/v1/receipts").json()
    assert [r["applied"] for r in j["receipts"]] == ["VESTING_SCHEDULE_SET", "ASSET_TRANSFER"]
    assert [r["seq"] for r in j["receipts"]] == [1, 2]


def test_metrics_disabled_by_default(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    assert c.get("/v1/metrics").status_code == 404


def test_metrics_exposes_operation_counters(monkeypatch):
    reset_metrics()
    c, _ex, _clock = _client(monkeypatch, TOKENLOCK_METRICS_ENABLED="1")
    _setup_schedule(c)

    r = c.get("/v1/metrics")
    assert r.status_code == 200
    body = r.text
    assert "# TYPE tokenlock_ops_applied_total counter" in body
    assert "tokenlock_ops_applied_total 2" in body
    assert "tokenlock_total_outstanding 100" in body


def test_request_id_header_is_echoed(monkeypatch):
    c, _ex, _clock = _client(monkeypatch)
    r = c.get("/v1/ledger", headers={"X-Request-Id": "req-123"})
    assert r.headers.get("x-request-id") == "req-123"
