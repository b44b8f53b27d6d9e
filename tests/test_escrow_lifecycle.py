from datetime import timedelta

import pytest
from sqlalchemy import update

from adaptive_escrow.errors import Forbidden, InvalidInput, InvalidState
from adaptive_escrow.models import db, Escrow, User, UserStats
from adaptive_escrow.services import escrow_service, ledger_service
from adaptive_escrow.utils import utcnow

from conftest import CLIENT_WALLET, FREELANCER_WALLET, STRANGER_WALLET, wallet


def _escrow(**kw):
    now = kw.pop("now", utcnow())
    base = dict(amount=10000, penalty_rate=500, grace_period=24, status="active", deadline=now + timedelta(days=1))
    base.update(kw)
    return Escrow(**base)


# ---------------------------
# Penalty / overdue arithmetic
# ---------------------------

def test_overdue_scenario_penalty():
    now = utcnow()
    e = _escrow(deadline=now - timedelta(hours=48), now=now)
    assert escrow_service.is_overdue(e, now) is True
    assert escrow_service.calculate_penalty(e, now) == 500


def test_not_overdue_inside_grace_period():
    now = utcnow()
    e = _escrow(deadline=now - timedelta(hours=23), now=now)
    assert escrow_service.is_overdue(e, now) is False
    assert escrow_service.calculate_penalty(e, now) == 0


@pytest.mark.parametrize("status", ["delivered", "released", "disputed", "cancelled"])
def test_only_active_escrows_are_overdue(status):
    now = utcnow()
    e = _escrow(deadline=now - timedelta(days=30), status=status, now=now)
    assert escrow_service.is_overdue(e, now) is False
    assert escrow_service.calculate_penalty(e, now) == 0


@pytest.mark.parametrize("amount,rate,expected", [
    (999, 300, 29),      # 29.97 floors
    (1, 10000, 1),
    (12345, 1, 1),
    (10000, 0, 0),
])
def test_penalty_uses_integer_division(amount, rate, expected):
    now = utcnow()
    e = _escrow(amount=amount, penalty_rate=rate, deadline=now - timedelta(days=3), now=now)
    assert escrow_service.calculate_penalty(e, now) == expected


def test_penalty_monotonic_in_rate():
    now = utcnow()
    penalties = [
        escrow_service.calculate_penalty(_escrow(penalty_rate=r, deadline=now - timedelta(days=3), now=now), now)
        for r in range(0, 10001, 250)
    ]
    assert penalties == sorted(penalties)


def test_days_until_deadline_rounds_up():
    now = utcnow()
    assert escrow_service.days_until_deadline(_escrow(deadline=now + timedelta(hours=25)), now) == 2
    assert escrow_service.days_until_deadline(_escrow(deadline=now - timedelta(hours=25)), now) == -1


# ---------------------------
# State machine
# ---------------------------

def test_transition_table():
    e = _escrow()
    assert {s for s in ("delivered", "disputed", "cancelled", "released") if e.can_transition_to(s)} == {
        "delivered", "disputed", "cancelled",
    }
    e.status = "delivered"
    assert e.can_transition_to("released") and not e.can_transition_to("active")
    for terminal in ("released", "disputed", "cancelled"):
        e.status = terminal
        assert e.is_terminal
        assert not any(e.can_transition_to(s) for s in ("active", "delivered", "released"))


def test_create_round_trip(escrow):
    assert escrow.status == "active"
    assert escrow.ai_optimized is False
    assert escrow.original_penalty_rate == 300
    assert escrow.original_deadline == escrow.deadline
    assert escrow.contract_id.startswith("CONTRACT_")

    snap = escrow_service.escrow_snapshot(escrow)
    assert snap["isOverdue"] is False
    assert snap["penaltyAmount"] == 0
    assert snap["gracePeriod"] == 24
    assert snap["penaltyRate"] == 300


@pytest.mark.parametrize("field,value", [
    ("amount", 0),
    ("amount", -5),
    ("grace_period", 169),
    ("penalty_rate", 10001),
    ("penalty_rate", -1),
])
def test_create_rejects_out_of_range(client_user, freelancer_user, field, value):
    kwargs = dict(amount=1000, deadline=utcnow() + timedelta(days=1))
    kwargs[field] = value
    with pytest.raises(InvalidInput):
        escrow_service.create_escrow(client_user, freelancer_user, **kwargs)
    assert Escrow.query.count() == 0


def test_create_rejects_past_deadline(client_user, freelancer_user):
    with pytest.raises(InvalidInput) as exc:
        escrow_service.create_escrow(client_user, freelancer_user, amount=1000, deadline=utcnow() - timedelta(minutes=1))
    assert exc.value.details["field"] == "deadline"


def test_deliver_then_release(escrow):
    delivered = escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    assert delivered.status == "delivered"
    assert delivered.delivered_at is not None

    released = escrow_service.release_funds(escrow.id, CLIENT_WALLET)
    assert released.status == "released"
    assert released.released_at is not None

    freelancer = User.query.filter_by(wallet_address=FREELANCER_WALLET).one()
    assert freelancer.total_earnings == 1000
    assert freelancer.total_jobs == 1
    stats = UserStats.query.filter_by(user_id=freelancer.id).one()
    assert stats.total_earnings == 1000
    assert stats.total_jobs_completed == 1


def test_deliver_requires_freelancer(escrow):
    with pytest.raises(Forbidden):
        escrow_service.mark_delivered(escrow.id, CLIENT_WALLET)
    assert db.session.get(Escrow, escrow.id).status == "active"


def test_release_requires_client_and_delivery(escrow):
    with pytest.raises(InvalidState, match="delivered first"):
        escrow_service.release_funds(escrow.id, CLIENT_WALLET)

    escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    with pytest.raises(Forbidden):
        escrow_service.release_funds(escrow.id, FREELANCER_WALLET)


def test_terminal_escrow_admits_no_transition(escrow):
    escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    escrow_service.release_funds(escrow.id, CLIENT_WALLET)

    with pytest.raises(InvalidState):
        escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    with pytest.raises(InvalidState):
        escrow_service.release_funds(escrow.id, CLIENT_WALLET)


def test_deliver_twice_fails(escrow):
    escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    with pytest.raises(InvalidState, match="not active"):
        escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)


def test_concurrent_modification_becomes_invalid_state(escrow):
    assert escrow.version >= 1  # loads the row into the session

    # another writer bumps the version behind this session's back
    db.session.execute(
        update(Escrow.__table__)
        .where(Escrow.__table__.c.id == escrow.id)
        .values(version=Escrow.__table__.c.version + 1)
    )

    with pytest.raises(InvalidState, match="concurrently"):
        escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)

    assert db.session.get(Escrow, escrow.id).status == "active"


# ---------------------------
# Rule changes
# ---------------------------

def test_rule_change_by_either_party(escrow):
    updated = escrow_service.apply_rule_change(escrow.id, CLIENT_WALLET, penalty_rate=450)
    assert updated.penalty_rate == 450
    assert updated.ai_optimized is True
    assert updated.original_penalty_rate == 300

    updated = escrow_service.apply_rule_change(escrow.id, FREELANCER_WALLET, grace_period=48)
    assert updated.grace_period == 48


def test_rule_change_by_stranger_forbidden(escrow):
    with pytest.raises(Forbidden):
        escrow_service.apply_rule_change(escrow.id, STRANGER_WALLET, penalty_rate=450)


def test_rule_change_out_of_range_rolls_back(escrow):
    with pytest.raises(InvalidInput) as exc:
        escrow_service.apply_rule_change(escrow.id, CLIENT_WALLET, grace_period=12, penalty_rate=20000)
    assert exc.value.details == {"field": "newPenaltyRate", "min": 0, "max": 10000, "value": 20000}

    fresh = db.session.get(Escrow, escrow.id)
    assert fresh.grace_period == 24
    assert fresh.ai_optimized is False


def test_rule_change_only_on_active(escrow):
    escrow_service.mark_delivered(escrow.id, FREELANCER_WALLET)
    with pytest.raises(InvalidState):
        escrow_service.apply_rule_change(escrow.id, CLIENT_WALLET, penalty_rate=100)


# ---------------------------
# Participant resolution
# ---------------------------

def test_resolve_creates_minimal_freelancer(app):
    w = wallet("GNEWFREELANCER")
    user = ledger_service.resolve_or_register_participant(w, "freelancer")
    assert user.name == f"Freelancer {w[:8]}"
    assert user.role == "freelancer"
    assert UserStats.query.filter_by(user_id=user.id).count() == 1

    again = ledger_service.resolve_or_register_participant(w, "client")
    assert again.id == user.id


def test_resolve_rejects_malformed_wallet(app):
    with pytest.raises(InvalidInput):
        ledger_service.resolve_or_register_participant("gabc", "client")
