import random

import pytest

from adaptive_escrow.models import db, ContractJob, Escrow, User
from adaptive_escrow.seed import seed_database, stellar_address
from adaptive_escrow.services.blockchain_service import (
    format_xlm_amount,
    simulate_contract_call,
    validate_stellar_address,
)
from adaptive_escrow.tasks.blockchain_tasks import contract_call, deploy_contract

from conftest import CLIENT_WALLET


class DummyAsyncResult:
    def __init__(self, id):
        self.id = id


@pytest.fixture()
def fake_delays(monkeypatch):
    calls = []

    def _fake(name):
        def fake_delay(*args, **kwargs):
            calls.append((name, args, kwargs))
            return DummyAsyncResult(f"fake-{name}-{len(calls)}")
        return fake_delay

    monkeypatch.setattr("adaptive_escrow.tasks.blockchain_tasks.deploy_contract.delay", _fake("deploy"))
    monkeypatch.setattr("adaptive_escrow.tasks.blockchain_tasks.contract_call.delay", _fake("call"))
    return calls


def test_deploy_enqueues_job(client, escrow, fake_delays):
    rv = client.post("/api/blockchain/deploy", json={"escrowId": escrow.id})
    assert rv.status_code == 202
    js = rv.get_json()
    assert js["status"] == "queued"
    assert js["task_id"] == "fake-deploy-1"

    name, args, kwargs = fake_delays[0]
    assert args == (js["job_id"], escrow.id)
    assert kwargs == {"delay": 0.0}

    job = db.session.get(ContractJob, js["job_id"])
    assert job.kind == "deploy"
    assert job.params == {"escrowId": escrow.id}


def test_deploy_validation(client, fake_delays):
    assert client.post("/api/blockchain/deploy", json={}).status_code == 400
    assert client.post("/api/blockchain/deploy", json={"escrowId": "nope"}).status_code == 404
    assert fake_delays == []


def test_call_enqueues_job(client, fake_delays):
    body = {"contractId": "CONTRACT_1", "method": "release_funds", "params": {"amount": 10}}
    rv = client.post("/api/blockchain/call", json=body)
    assert rv.status_code == 202

    job_id = rv.get_json()["job_id"]
    rv = client.get(f"/api/blockchain/jobs/{job_id}")
    assert rv.status_code == 200
    js = rv.get_json()
    assert js["kind"] == "call"
    assert js["params"] == body


@pytest.mark.parametrize("body", [
    {"method": "release_funds"},
    {"contractId": "CONTRACT_1"},
    {"contractId": "CONTRACT_1", "method": "m", "params": [1, 2]},
])
def test_call_validation(client, fake_delays, body):
    assert client.post("/api/blockchain/call", json=body).status_code == 400


def test_job_not_found(client):
    rv = client.get("/api/blockchain/jobs/999")
    assert rv.status_code == 404
    assert rv.get_json()["code"] == "NotFound"


def test_validate_endpoint(client):
    assert client.get(f"/api/blockchain/validate/{CLIENT_WALLET}").get_json()["valid"] is True
    assert client.get("/api/blockchain/validate/abc").get_json()["valid"] is False


def test_deploy_task_runs_to_done(app, escrow):
    job = ContractJob(kind="deploy", status="queued", params={"escrowId": escrow.id})
    db.session.add(job)
    db.session.commit()

    out = deploy_contract(job.id, escrow.id, delay=0)
    assert out["status"] == "deployed"
    assert out["contract_id"] == escrow.contract_id

    job = db.session.get(ContractJob, job.id)
    assert job.status == "done"
    assert job.result["receipt"]["transactionHash"].startswith("0x")


def test_deploy_task_records_error(app):
    job = ContractJob(kind="deploy", status="queued")
    db.session.add(job)
    db.session.commit()

    with pytest.raises(LookupError):
        deploy_contract(job.id, "missing", delay=0)
    assert db.session.get(ContractJob, job.id).status == "error"


def test_call_task_and_missing_job(app):
    job = ContractJob(kind="call", status="queued")
    db.session.add(job)
    db.session.commit()

    out = contract_call(job.id, "CONTRACT_1", "release_funds", {"x": 1}, delay=0)
    assert out["status"] == "success"
    assert db.session.get(ContractJob, job.id).result["receipt"]["method"] == "release_funds"

    assert "error" in contract_call(12345, "CONTRACT_1", "m", delay=0)


def test_blockchain_helpers():
    assert validate_stellar_address(CLIENT_WALLET)
    assert not validate_stellar_address("")
    assert not validate_stellar_address(CLIENT_WALLET.lower())
    assert format_xlm_amount(1500) == "1500 XLM"

    receipt = simulate_contract_call("CONTRACT_1", "deliver", delay=0)
    assert receipt["params"] == {}
    assert 50000 <= receipt["gasUsed"] < 150000
    with pytest.raises(ValueError):
        simulate_contract_call("", "deliver", delay=0)


def test_seed_database(app):
    counts = seed_database(seed=1, escrows=8, suggestions=3)
    assert counts == {"freelancers": 10, "clients": 5, "escrows": 8, "suggestions": 3}
    assert User.query.count() == 15
    assert Escrow.query.count() == 8

    # reseeding wipes the previous data
    seed_database(seed=2, escrows=2, suggestions=0)
    assert Escrow.query.count() == 2

    assert validate_stellar_address(stellar_address(random.Random(7)))
