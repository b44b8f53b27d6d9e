# adaptive_escrow/services/escrow_service.py
"""
Escrow lifecycle engine.

State machine (terminal states marked *):

    active --deliver (freelancer)--> delivered --release (client)--> released*
    active --dispute--> disputed*
    active --cancel-->  cancelled*

Transitions load the row ``FOR UPDATE`` and commit through the model's
``version`` column, so of two conflicting writers only one succeeds; the other
gets ``InvalidState``. Every failure rolls back the whole transition.
"""
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm.exc import StaleDataError

from adaptive_escrow.errors import EscrowError, Forbidden, InvalidInput, InvalidState
from adaptive_escrow.models import db, Escrow, User
from adaptive_escrow.models.escrow import (
    DEFAULT_GRACE_PERIOD_HOURS,
    DEFAULT_PENALTY_RATE_BPS,
    ESCROW_STATUSES,
    MAX_GRACE_PERIOD_HOURS,
    MAX_PENALTY_RATE_BPS,
)
from adaptive_escrow.services import stats_service
from adaptive_escrow.services.ledger_service import get_escrow
from adaptive_escrow.utils import as_int, check_range, iso, utcnow

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000


# ---------------------------
# Validation
# ---------------------------

def validate_amount(amount) -> int:
    value = as_int(amount, "amount")
    if value <= 0:
        raise InvalidInput("Amount must be positive", {"field": "amount", "min": 1, "value": value})
    return value


def validate_grace_period(hours, field: str = "gracePeriod") -> int:
    return check_range(as_int(hours, field), field, 0, MAX_GRACE_PERIOD_HOURS)


def validate_penalty_rate(bps, field: str = "penaltyRate") -> int:
    return check_range(as_int(bps, field), field, 0, MAX_PENALTY_RATE_BPS)


def validate_deadline(deadline: datetime, now: datetime, field: str = "deadline") -> datetime:
    if not isinstance(deadline, datetime):
        raise InvalidInput(f"{field} must be a valid date", {"field": field})
    if deadline <= now:
        raise InvalidInput(f"{field} must be in the future", {"field": field, "value": iso(deadline), "now": iso(now)})
    return deadline


# ---------------------------
# Transaction helpers
# ---------------------------

@contextmanager
def transition(entity: str, entity_id: str):
    """
    Run a state transition as one unit of work.

    Domain errors roll back and propagate; a lost optimistic-version race
    becomes InvalidState.
    """
    try:
        yield
        db.session.commit()
    except EscrowError:
        db.session.rollback()
        raise
    except StaleDataError:
        db.session.rollback()
        logger.warning("concurrent transition lost", extra={"context": {"entity": entity, "id": entity_id}})
        raise InvalidState(f"{entity} was modified concurrently; reload and retry", {"id": entity_id})
    except Exception:
        db.session.rollback()
        raise


def _require_status(escrow: Escrow, expected: str, message: str):
    if escrow.status != expected:
        raise InvalidState(message, {"escrow_id": escrow.id, "status": escrow.status, "expected": expected})


def _require_transition(escrow: Escrow, target: str, message: str):
    if not escrow.can_transition_to(target):
        raise InvalidState(message, {"escrow_id": escrow.id, "status": escrow.status, "target": target})


# ---------------------------
# Pure computations
# ---------------------------

def is_overdue(escrow: Escrow, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    grace_deadline = escrow.deadline + timedelta(hours=escrow.grace_period)
    return escrow.status == "active" and now > grace_deadline


def calculate_penalty(escrow: Escrow, now: Optional[datetime] = None) -> int:
    """Penalty in currency units: floor(amount * rate / 10000) once overdue, else 0."""
    if not is_overdue(escrow, now):
        return 0
    return (int(escrow.amount) * int(escrow.penalty_rate)) // BPS_DENOMINATOR


def days_until_deadline(escrow: Escrow, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return math.ceil((escrow.deadline - now) / timedelta(days=1))


# ---------------------------
# Operations
# ---------------------------

def create_escrow(
    client: User,
    freelancer: User,
    amount,
    deadline: datetime,
    grace_period=DEFAULT_GRACE_PERIOD_HOURS,
    penalty_rate=DEFAULT_PENALTY_RATE_BPS,
    now: Optional[datetime] = None,
) -> Escrow:
    """Create an ``active`` escrow between two already-resolved participants."""
    now = now or utcnow()
    with transition("Escrow", "new"):
        amount = validate_amount(amount)
        deadline = validate_deadline(deadline, now)
        grace_period = validate_grace_period(grace_period)
        penalty_rate = validate_penalty_rate(penalty_rate)

        escrow = Escrow(
            client_id=client.id,
            freelancer_id=freelancer.id,
            amount=amount,
            deadline=deadline,
            grace_period=grace_period,
            penalty_rate=penalty_rate,
            status="active",
            ai_optimized=False,
            original_deadline=deadline,
            original_penalty_rate=penalty_rate,
        )
        db.session.add(escrow)
        db.session.flush()

        # Deployment is simulated; the id doubles as the contract reference
        escrow.contract_id = f"CONTRACT_{escrow.id.replace('-', '')}"

    logger.info(
        "escrow created",
        extra={"context": {"escrow_id": escrow.id, "amount": amount, "penalty_rate": penalty_rate}},
    )
    return escrow


def mark_delivered(escrow_id: str, acting_wallet: str, now: Optional[datetime] = None) -> Escrow:
    now = now or utcnow()
    with transition("Escrow", escrow_id):
        escrow = get_escrow(escrow_id, for_update=True)
        if escrow.freelancer.wallet_address != acting_wallet:
            raise Forbidden("Only the freelancer can mark as delivered", {"escrow_id": escrow_id})
        _require_transition(escrow, "delivered", "Escrow is not active")

        escrow.status = "delivered"
        escrow.delivered_at = now
        db.session.flush()

        stats_service.recompute_user_stats(escrow.freelancer_id, now=now, commit=False)

    logger.info("escrow delivered", extra={"context": {"escrow_id": escrow_id, "late": now > escrow.deadline}})
    return escrow


def release_funds(escrow_id: str, acting_wallet: str, now: Optional[datetime] = None) -> Escrow:
    now = now or utcnow()
    with transition("Escrow", escrow_id):
        escrow = get_escrow(escrow_id, for_update=True)
        if escrow.client.wallet_address != acting_wallet:
            raise Forbidden("Only the client can release funds", {"escrow_id": escrow_id})
        _require_transition(escrow, "released", "Work must be delivered first")

        escrow.status = "released"
        escrow.released_at = now

        freelancer = escrow.freelancer
        freelancer.total_earnings = (freelancer.total_earnings or 0) + int(escrow.amount)
        freelancer.total_jobs = (freelancer.total_jobs or 0) + 1
        db.session.flush()

        stats = stats_service.recompute_user_stats(escrow.freelancer_id, now=now, commit=False)
        stats.total_earnings = (stats.total_earnings or 0) + int(escrow.amount)

    logger.info("escrow released", extra={"context": {"escrow_id": escrow_id, "amount": int(escrow.amount)}})
    return escrow


def apply_changes(escrow: Escrow, now: datetime, deadline=None, grace_period=None, penalty_rate=None,
                  field_names=("newDeadline", "newGracePeriod", "newPenaltyRate")):
    """
    Validate and assign the provided term changes, then flag the escrow as AI-optimized.

    No actor or status checks here; callers decide who may reach this.
    """
    deadline_field, grace_field, penalty_field = field_names
    if deadline is not None:
        escrow.deadline = validate_deadline(deadline, now, deadline_field)
    if grace_period is not None:
        escrow.grace_period = validate_grace_period(grace_period, grace_field)
    if penalty_rate is not None:
        escrow.penalty_rate = validate_penalty_rate(penalty_rate, penalty_field)
    escrow.ai_optimized = True


def apply_rule_change(escrow_id: str, acting_wallet: str, deadline: Optional[datetime] = None,
                      grace_period=None, penalty_rate=None, now: Optional[datetime] = None) -> Escrow:
    now = now or utcnow()
    with transition("Escrow", escrow_id):
        escrow = get_escrow(escrow_id, for_update=True)
        if acting_wallet not in (escrow.client.wallet_address, escrow.freelancer.wallet_address):
            raise Forbidden("Not authorized to update rules", {"escrow_id": escrow_id})
        _require_status(escrow, "active", "Can only update active escrows")

        apply_changes(escrow, now, deadline=deadline, grace_period=grace_period, penalty_rate=penalty_rate)

    logger.info(
        "escrow rules updated",
        extra={"context": {"escrow_id": escrow_id, "grace_period": escrow.grace_period, "penalty_rate": escrow.penalty_rate}},
    )
    return escrow


def list_user_escrows(user: User, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Escrow]:
    q = Escrow.query.filter(or_(Escrow.client_id == user.id, Escrow.freelancer_id == user.id))
    if status:
        if status not in ESCROW_STATUSES:
            raise InvalidInput("Unknown escrow status", {"field": "status", "allowed": list(ESCROW_STATUSES)})
        q = q.filter(Escrow.status == status)
    return q.order_by(Escrow.created_at.desc()).limit(limit).offset(offset).all()


def recent_completed_escrows(user: User, limit: int = 10) -> List[Escrow]:
    """Delivered/released escrows the user took part in, newest first (context for suggestions)."""
    return (
        Escrow.query.filter(
            or_(Escrow.client_id == user.id, Escrow.freelancer_id == user.id),
            Escrow.status.in_(stats_service.COMPLETED_STATUSES),
        )
        .order_by(Escrow.created_at.desc())
        .limit(limit)
        .all()
    )


# ---------------------------
# Read model
# ---------------------------

def _party(user: User, with_rating: bool = False) -> dict:
    out = {"wallet": user.wallet_address, "name": user.name}
    if with_rating:
        out["rating"] = user.rating
    return out


def escrow_snapshot(escrow: Escrow, now: Optional[datetime] = None, detailed: bool = True) -> dict:
    now = now or utcnow()
    data = {
        "id": escrow.id,
        "contractId": escrow.contract_id,
        "client": _party(escrow.client, with_rating=detailed),
        "freelancer": _party(escrow.freelancer, with_rating=detailed),
        "amount": int(escrow.amount),
        "deadline": iso(escrow.deadline),
        "status": escrow.status,
        "isOverdue": is_overdue(escrow, now),
        "daysUntilDeadline": days_until_deadline(escrow, now),
    }
    if detailed:
        data.update({
            "gracePeriod": escrow.grace_period,
            "penaltyRate": escrow.penalty_rate,
            "deliveredAt": iso(escrow.delivered_at),
            "releasedAt": iso(escrow.released_at),
            "penaltyAmount": calculate_penalty(escrow, now),
            "aiOptimized": escrow.ai_optimized,
            "originalDeadline": iso(escrow.original_deadline),
            "originalPenaltyRate": escrow.original_penalty_rate,
            "createdAt": iso(escrow.created_at),
        })
    return data
