from datetime import timedelta

import pytest

from adaptive_escrow.errors import InvalidInput
from adaptive_escrow.models import db, Escrow
from adaptive_escrow.services import analytics_service, escrow_service
from adaptive_escrow.utils import utcnow

from conftest import CLIENT_WALLET, FREELANCER_WALLET


@pytest.fixture()
def history(client_user, freelancer_user):
    """One late release, one on-time delivery (AI-optimized), one overdue active escrow."""
    now = utcnow()

    late = escrow_service.create_escrow(client_user, freelancer_user, 1000, now + timedelta(days=1), now=now)
    escrow_service.mark_delivered(late.id, FREELANCER_WALLET, now=now + timedelta(days=3))
    escrow_service.release_funds(late.id, CLIENT_WALLET, now=now + timedelta(days=3))

    on_time = escrow_service.create_escrow(client_user, freelancer_user, 3000, now + timedelta(days=5), now=now)
    escrow_service.apply_rule_change(on_time.id, CLIENT_WALLET, penalty_rate=100, now=now)
    escrow_service.mark_delivered(on_time.id, FREELANCER_WALLET, now=now + timedelta(days=1))

    overdue = escrow_service.create_escrow(client_user, freelancer_user, 10000, now + timedelta(hours=1), 24, 500, now=now)
    # push the deadline into the past directly; the service refuses past deadlines
    overdue.deadline = now - timedelta(hours=48)
    db.session.commit()

    return {"late": late, "on_time": on_time, "overdue": overdue}


def test_platform_totals(history):
    a = analytics_service.platform_analytics("30d")
    assert a["totalEscrows"] == 3
    assert a["totalUsers"] == 2
    assert a["totalVolume"] == 4000
    assert a["onTimePercentage"] == 50.0
    assert a["aiOptimizationRate"] == 33.33
    assert a["statusBreakdown"]["active"] == {"count": 1, "totalAmount": 10000}
    assert a["statusBreakdown"]["released"]["count"] == 1


def test_user_analytics(history, freelancer_user):
    a = analytics_service.user_analytics(freelancer_user)
    assert a["totalEscrows"] == 3
    assert a["completedEscrows"] == 2
    assert a["lateDeliveries"] == 1
    assert a["onTimePercentage"] == 50.0
    assert a["totalEarnings"] == 1000
    assert a["totalPenalties"] == 500
    assert a["reliabilityScore"] == 2.5


def test_ai_optimization_comparison(history):
    a = analytics_service.ai_optimization_analytics()
    assert a["aiOptimizedEscrows"] == 1
    assert a["performanceComparison"]["optimized"] == {"count": 1, "onTimeRate": 100.0}
    assert a["performanceComparison"]["regular"] == {"count": 1, "onTimeRate": 0.0}
    assert a["improvement"] == 100.0


def test_top_performers(history, freelancer_user):
    (top,) = analytics_service.top_performers(metric="earnings")
    assert top["wallet"] == FREELANCER_WALLET
    assert top["totalEarnings"] == 1000
    assert top["onTimePercentage"] == 50.0


def test_trends(history):
    t = analytics_service.trends("volume", "7d")
    assert sum(p["value"] for p in t["data"]) == 4000
    t = analytics_service.trends("escrows")
    assert sum(p["value"] for p in t["data"]) == 3
    with pytest.raises(InvalidInput):
        analytics_service.trends("vibes")


def test_period_window_excludes_old_escrows(history):
    old = db.session.get(Escrow, history["late"].id)
    old.created_at = utcnow() - timedelta(days=40)
    db.session.commit()
    assert analytics_service.platform_analytics("30d")["statusBreakdown"].get("released") is None
    assert analytics_service.platform_analytics("90d")["statusBreakdown"]["released"]["count"] == 1


def test_analytics_routes(client, history):
    assert client.get("/api/analytics/platform").get_json()["analytics"]["totalEscrows"] == 3
    assert client.get(f"/api/analytics/user/{FREELANCER_WALLET}?period=7d").get_json()["analytics"]["period"] == "7d"
    assert client.get("/api/analytics/top-performers?metric=jobs").get_json()["performers"][0]["totalJobs"] == 1
    assert client.get("/api/analytics/ai-optimization").status_code == 200
    assert client.get("/api/analytics/trends?metric=users").get_json()["trends"]["metric"] == "users"
    assert client.get("/api/analytics/trends?metric=vibes").status_code == 400
    assert client.get("/api/analytics/user/NOPE").status_code == 404
