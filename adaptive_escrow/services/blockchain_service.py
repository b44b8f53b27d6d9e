# adaptive_escrow/services/blockchain_service.py
# Simulated Soroban/Stellar integration: no network traffic, random hashes.
import os
import re
import secrets
import time
import uuid
from typing import Any, Dict, Optional

STELLAR_ADDRESS_RE = re.compile(r"^[A-Z0-9]{56}$")


def _delay(delay: Optional[float]) -> float:
    if delay is not None:
        return float(delay)
    return float(os.getenv("BLOCKCHAIN_SIMULATED_DELAY", "2"))


def _network() -> str:
    return os.getenv("BLOCKCHAIN_NETWORK", "testnet")


def generate_contract_id() -> str:
    return f"CONTRACT_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def random_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


def validate_stellar_address(address: str) -> bool:
    return bool(address) and bool(STELLAR_ADDRESS_RE.match(address))


def format_xlm_amount(amount: int) -> str:
    return f"{amount} XLM"


def simulate_contract_deployment(escrow_data: Dict[str, Any], delay: Optional[float] = None) -> Dict[str, Any]:
    """Pretend to deploy the escrow contract and return a deployment receipt."""
    time.sleep(_delay(delay))
    return {
        "contractId": escrow_data.get("contractId") or generate_contract_id(),
        "transactionHash": random_tx_hash(),
        "status": "deployed",
        "network": _network(),
    }


def simulate_contract_call(contract_id: str, method: str, params: Optional[Dict[str, Any]] = None,
                           delay: Optional[float] = None) -> Dict[str, Any]:
    """Pretend to invoke ``method`` on a deployed contract."""
    if not contract_id:
        raise ValueError("contract_id is required")
    if not method:
        raise ValueError("method is required")
    time.sleep(_delay(delay))
    return {
        "success": True,
        "contractId": contract_id,
        "method": method,
        "params": params or {},
        "transactionHash": random_tx_hash(),
        "gasUsed": 50000 + secrets.randbelow(100000),
        "status": "success",
        "network": _network(),
    }
