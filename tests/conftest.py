import os
from datetime import timedelta

import pytest

from adaptive_escrow import create_app
from adaptive_escrow.models import db as _db
from adaptive_escrow.services import escrow_service, ledger_service
from adaptive_escrow.utils import iso, utcnow


def wallet(tag: str) -> str:
    """56-char uppercase alphanumeric address derived from a short tag."""
    return (tag.upper() + "0" * 56)[:56]


CLIENT_WALLET = wallet("GCLIENT")
FREELANCER_WALLET = wallet("GFREELANCER")
STRANGER_WALLET = wallet("GSTRANGER")


@pytest.fixture(scope="session")
def app():
    os.environ["FLASK_ENV"] = "testing"
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()


@pytest.fixture(autouse=True)
def _fresh_tables(app):
    # the app (and its Prometheus registry) lives for the session; tables do not
    yield
    _db.session.remove()
    _db.drop_all()
    _db.create_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def client_user(app):
    return ledger_service.register_user(CLIENT_WALLET, "Acme Corp", role="client")


@pytest.fixture()
def freelancer_user(app):
    return ledger_service.register_user(
        FREELANCER_WALLET, "Sarah Chen", role="freelancer", skills=["React", "Python"],
    )


@pytest.fixture()
def escrow(client_user, freelancer_user):
    return escrow_service.create_escrow(
        client_user, freelancer_user, amount=1000, deadline=utcnow() + timedelta(days=10),
    )


@pytest.fixture()
def create_payload():
    def _payload(**overrides):
        body = {
            "clientWallet": CLIENT_WALLET,
            "freelancerWallet": FREELANCER_WALLET,
            "amount": 1000,
            "deadline": iso(utcnow() + timedelta(days=10)),
            "gracePeriod": 24,
            "penaltyRate": 300,
        }
        body.update(overrides)
        return body
    return _payload
