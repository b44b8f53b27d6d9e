# adaptive_escrow/routes/blockchain_routes.py
from flask import Blueprint, current_app, jsonify, request

from adaptive_escrow.errors import InvalidInput, NotFound
from adaptive_escrow.models import db, ContractJob
from adaptive_escrow.services.blockchain_service import validate_stellar_address
from adaptive_escrow.services.ledger_service import get_escrow
from adaptive_escrow.tasks.blockchain_tasks import contract_call, deploy_contract
from adaptive_escrow.utils import iso

bp = Blueprint("blockchain", __name__)  # prefix applied in create_app


def _enqueue(kind: str, params: dict, task, *args) -> ContractJob:
    job = ContractJob(kind=kind, status="queued", params=params)
    db.session.add(job)
    db.session.commit()

    async_res = task.delay(job.id, *args, delay=current_app.config["BLOCKCHAIN_SIMULATED_DELAY"])
    job.task_id = async_res.id
    db.session.commit()
    return job


@bp.post("/deploy")
def deploy():
    """
    Blockchain: enqueue a simulated contract deployment for an escrow
    ---
    tags: [Blockchain]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [escrowId]
          properties:
            escrowId: {type: string}
    responses:
      202: {description: Accepted}
      400: {description: Missing escrowId}
      404: {description: Escrow not found}
    """
    data = request.get_json(silent=True) or {}
    escrow_id = data.get("escrowId")
    if not escrow_id:
        raise InvalidInput("escrowId is required", {"field": "escrowId"})
    escrow = get_escrow(escrow_id)

    job = _enqueue("deploy", {"escrowId": escrow.id}, deploy_contract, escrow.id)
    return jsonify({"ok": True, "job_id": job.id, "task_id": job.task_id, "status": job.status}), 202


@bp.post("/call")
def call():
    """
    Blockchain: enqueue a simulated contract method call
    ---
    tags: [Blockchain]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [contractId, method]
          properties:
            contractId: {type: string, example: "CONTRACT_1700000000000_abc123def"}
            method: {type: string, example: "release_funds"}
            params: {type: object}
    responses:
      202: {description: Accepted}
      400: {description: Missing or invalid fields}
    """
    data = request.get_json(silent=True) or {}
    contract_id = data.get("contractId")
    method = data.get("method")
    params = data.get("params") or {}

    if not contract_id or not method:
        raise InvalidInput("contractId and method are required", {"required": ["contractId", "method"]})
    if not isinstance(params, dict):
        raise InvalidInput("params must be an object", {"field": "params"})

    job = _enqueue(
        "call", {"contractId": contract_id, "method": method, "params": params},
        contract_call, contract_id, method, params,
    )
    return jsonify({"ok": True, "job_id": job.id, "task_id": job.task_id, "status": job.status}), 202


@bp.get("/jobs/<int:job_id>")
def job_status(job_id: int):
    """
    Blockchain: status of a queued job
    ---
    tags: [Blockchain]
    parameters:
      - in: path
        name: job_id
        required: true
        type: integer
    responses:
      200: {description: OK}
      404: {description: Job not found}
    """
    job = db.session.get(ContractJob, job_id)
    if not job:
        raise NotFound("Job not found", {"job_id": job_id})
    return jsonify({
        "ok": True,
        "job_id": job.id,
        "task_id": job.task_id,
        "kind": job.kind,
        "status": job.status,
        "params": job.params,
        "result": job.result,
        "created_at": iso(job.created_at),
        "updated_at": iso(job.updated_at),
    }), 200


@bp.get("/validate/<address>")
def validate(address: str):
    """
    Blockchain: check a Stellar address format
    ---
    tags: [Blockchain]
    parameters:
      - in: path
        name: address
        required: true
        type: string
    responses:
      200: {description: OK}
    """
    return jsonify({"ok": True, "address": address, "valid": validate_stellar_address(address)}), 200
