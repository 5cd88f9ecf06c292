import threading
import time

import pytest
from fastapi.testclient import TestClient

from securemint.api import create_app
from securemint.baskets import InMemoryBasketRegistry
from securemint.idempotency import InMemoryIdempotencyStore

from tests.support import BENEFICIARY, basket_payload, make_config, make_orchestrator, mint_payload


@pytest.fixture
def harness():
    registry = InMemoryBasketRegistry()
    orchestrator, ledger = make_orchestrator(registry=registry)
    client = TestClient(create_app(orchestrator, registry))
    return client, ledger


def test_health(harness):
    client, _ = harness
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "configured": True}


def test_approved_mint_returns_200(harness):
    client, ledger = harness
    r = client.post("/instructions", json=mint_payload())
    assert r.status_code == 200
    body = r.json()
    assert body["kind"] == "SUCCESS"
    assert body["mint_tx"].startswith("0x")
    assert ledger.write_count == 1


def test_malformed_returns_422(harness):
    client, ledger = harness
    r = client.post("/instructions", json={"messageType": "MINT", "transactionId": "TXN-BAD"})
    assert r.status_code == 422
    assert r.json()["transaction_id"] == "TXN-BAD"
    assert ledger.write_count == 0


def test_reserve_rejection_returns_409(harness):
    client, ledger = harness
    r = client.post("/instructions", json=mint_payload(amount="200000"))
    assert r.status_code == 409
    assert r.json()["failure_code"] == "INSUFFICIENT_RESERVES"
    assert ledger.write_count == 0


def test_policy_rejection_returns_409(harness):
    client, ledger = harness
    ledger.blacklist_address(BENEFICIARY)
    r = client.post("/instructions", json=mint_payload())
    assert r.status_code == 409
    assert r.json()["kind"] == "POLICY_REJECTED"


def test_infrastructure_failure_returns_502(harness):
    client, ledger = harness
    ledger.inject_fault("submit_report")
    r = client.post("/instructions", json=mint_payload())
    assert r.status_code == 502
    assert r.json()["stage"] == "MINTING"


def test_created_basket_listed(harness):
    client, _ = harness
    r = client.post("/instructions", json=basket_payload())
    assert r.status_code == 200
    baskets = client.get("/baskets").json()
    assert [b["symbol"] for b in baskets] == ["TBSK"]


def test_replayed_result_returns_original_status():
    orchestrator, ledger = make_orchestrator(idempotency_store=InMemoryIdempotencyStore())
    client = TestClient(create_app(orchestrator, InMemoryBasketRegistry()))

    first = client.post("/instructions", json=mint_payload())
    second = client.post("/instructions", json=mint_payload())

    assert first.status_code == second.status_code == 200
    assert second.json()["replayed"] is True
    assert ledger.write_count == 1


def test_unconfigured_returns_503(monkeypatch, tmp_path):
    monkeypatch.setattr("securemint.config.CONFIG_PATH", str(tmp_path / "absent.json"))
    client = TestClient(create_app(registry=InMemoryBasketRegistry()))

    r = client.post("/instructions", json=mint_payload())

    assert r.status_code == 503
    assert client.get("/health").json()["configured"] is False


def test_concurrent_first_requests_share_one_orchestrator(monkeypatch):
    builds = []

    def slow_build(config, registry=None):
        time.sleep(0.1)
        orchestrator, _ = make_orchestrator(config=config, registry=registry)
        builds.append(orchestrator)
        return orchestrator

    monkeypatch.setattr("securemint.api.load_workflow_config", make_config)
    monkeypatch.setattr("securemint.api.build_orchestrator", slow_build)
    app = create_app(registry=InMemoryBasketRegistry())
    statuses = []

    def submit(tid):
        r = TestClient(app).post("/instructions", json=mint_payload(transactionId=tid, amount="1000"))
        statuses.append(r.status_code)

    threads = [threading.Thread(target=submit, args=(f"TXN-CONCURRENT-{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert statuses == [200] * 4
    assert len(builds) == 1
