# adaptive_escrow/tasks/blockchain_tasks.py
import logging
from typing import Any, Dict, Optional

from celery import shared_task

from adaptive_escrow.models import db, ContractJob, Escrow
from adaptive_escrow.services.blockchain_service import simulate_contract_call, simulate_contract_deployment
from adaptive_escrow.utils import utcnow

logger = logging.getLogger(__name__)


def _mark(job: ContractJob, status: str, result: Optional[Dict[str, Any]] = None):
    job.status = status
    if result is not None:
        job.result = result
    job.updated_at = utcnow()
    db.session.commit()


@shared_task(name="blockchain.deploy_contract")
def deploy_contract(job_id: int, escrow_id: str, delay: Optional[float] = None):
    """
    Simulate deploying the escrow's contract, recording the receipt on the job.
    The escrow keeps the contract id it was created with.
    """
    job = db.session.get(ContractJob, job_id)
    if not job:
        return {"error": f"ContractJob id {job_id} not found"}

    try:
        _mark(job, "running")
        escrow = db.session.get(Escrow, escrow_id)
        if escrow is None:
            raise LookupError(f"Escrow {escrow_id} not found")

        receipt = simulate_contract_deployment(
            {"contractId": escrow.contract_id, "amount": int(escrow.amount)}, delay=delay,
        )
        if not escrow.contract_id:
            escrow.contract_id = receipt["contractId"]
        _mark(job, "done", {"escrow_id": escrow_id, "receipt": receipt})

        logger.info("contract deployment simulated", extra={"context": {"job_id": job_id, "escrow_id": escrow_id}})
        return {"contract_id": receipt["contractId"], "tx_hash": receipt["transactionHash"], "status": "deployed"}

    except Exception as e:
        db.session.rollback()
        _mark(job, "error", {"error": str(e)})
        raise


@shared_task(name="blockchain.contract_call")
def contract_call(job_id: int, contract_id: str, method: str, params: Optional[Dict[str, Any]] = None,
                  delay: Optional[float] = None):
    job = db.session.get(ContractJob, job_id)
    if not job:
        return {"error": f"ContractJob id {job_id} not found"}

    try:
        _mark(job, "running")
        receipt = simulate_contract_call(contract_id, method, params, delay=delay)
        _mark(job, "done", {"receipt": receipt})
        return {"tx_hash": receipt["transactionHash"], "status": receipt["status"]}

    except Exception as e:
        db.session.rollback()
        _mark(job, "error", {"error": str(e)})
        raise
