# adaptive_escrow/services/analytics_service.py
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, or_

from adaptive_escrow.errors import InvalidInput
from adaptive_escrow.models import db, Escrow, User, UserStats
from adaptive_escrow.services.escrow_service import calculate_penalty, is_overdue
from adaptive_escrow.utils import utcnow

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
COMPLETED = ("delivered", "released")


def period_start(period: str, now: Optional[datetime] = None, allow_all: bool = False) -> Optional[datetime]:
    """Start of the reporting window. Unknown periods fall back to 30 days (or everything when allowed)."""
    now = now or utcnow()
    if allow_all and period == "all":
        return None
    return now - timedelta(days=PERIOD_DAYS.get(period, 30))


def _pct(part: int, whole: int, empty: float = 0.0) -> float:
    return round(part * 100 / whole, 2) if whole else empty


def _on_time(escrows) -> int:
    return sum(1 for e in escrows if e.delivered_at is not None and e.delivered_at <= e.deadline)


def _late(escrows) -> int:
    return sum(1 for e in escrows if e.delivered_at is not None and e.delivered_at > e.deadline)


def platform_analytics(period: str = "30d", now: Optional[datetime] = None) -> Dict:
    start = period_start(period, now)

    rows = (
        db.session.query(Escrow.status, func.count(Escrow.id), func.coalesce(func.sum(Escrow.amount), 0))
        .filter(Escrow.created_at >= start)
        .group_by(Escrow.status)
        .all()
    )
    breakdown = {status: {"count": int(count), "totalAmount": int(total)} for status, count, total in rows}

    total_escrows = Escrow.query.count()
    total_users = User.query.count()
    total_volume = (
        db.session.query(func.coalesce(func.sum(Escrow.amount), 0))
        .filter(Escrow.status.in_(COMPLETED))
        .scalar()
    )

    delivered = Escrow.query.filter(Escrow.status.in_(COMPLETED), Escrow.delivered_at.isnot(None)).all()
    ai_optimized = Escrow.query.filter(Escrow.ai_optimized.is_(True)).count()

    return {
        "period": period,
        "totalEscrows": total_escrows,
        "totalUsers": total_users,
        "totalVolume": int(total_volume or 0),
        "onTimePercentage": _pct(_on_time(delivered), len(delivered), empty=100.0),
        "aiOptimizationRate": _pct(ai_optimized, total_escrows),
        "statusBreakdown": breakdown,
    }


def user_analytics(user: User, period: str = "all", now: Optional[datetime] = None) -> Dict:
    now = now or utcnow()
    start = period_start(period, now, allow_all=True)

    q = Escrow.query.filter(or_(Escrow.client_id == user.id, Escrow.freelancer_id == user.id))
    if start is not None:
        q = q.filter(Escrow.created_at >= start)
    escrows = q.all()

    completed = [e for e in escrows if e.status in COMPLETED]
    as_freelancer = [e for e in escrows if e.freelancer_id == user.id]

    breakdown: Dict[str, int] = {}
    for e in escrows:
        breakdown[e.status] = breakdown.get(e.status, 0) + 1

    stats = UserStats.query.filter_by(user_id=user.id).first()

    return {
        "period": period,
        "totalEscrows": len(escrows),
        "completedEscrows": len(completed),
        "lateDeliveries": _late(completed),
        "onTimePercentage": _pct(len(completed) - _late(completed), len(completed), empty=100.0),
        "totalEarnings": sum(int(e.amount) for e in as_freelancer if e.status == "released"),
        "totalPenalties": sum(calculate_penalty(e, now) for e in as_freelancer if is_overdue(e, now)),
        "reliabilityScore": stats.reliability_score if stats else 5.0,
        "aiOptimizationRate": _pct(sum(1 for e in escrows if e.ai_optimized), len(escrows)),
        "statusBreakdown": breakdown,
    }


_PERFORMER_ORDER = {
    "earnings": User.total_earnings,
    "jobs": User.total_jobs,
    "rating": User.rating,
    "reliability": UserStats.reliability_score,
}


def top_performers(limit: int = 10, metric: str = "reliability") -> List[Dict]:
    column = _PERFORMER_ORDER.get(metric, UserStats.reliability_score)
    rows = (
        db.session.query(User, UserStats)
        .join(UserStats, UserStats.user_id == User.id)
        .filter(User.role.in_(("freelancer", "both")))
        .order_by(column.desc(), User.created_at.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "wallet": user.wallet_address,
            "name": user.name,
            "rating": user.rating,
            "totalEarnings": int(user.total_earnings or 0),
            "totalJobs": user.total_jobs,
            "reliabilityScore": stats.reliability_score,
            "onTimePercentage": stats.on_time_percentage,
        }
        for user, stats in rows
    ]


def ai_optimization_analytics(period: str = "30d", now: Optional[datetime] = None) -> Dict:
    start = period_start(period, now)
    in_period = Escrow.query.filter(Escrow.created_at >= start)

    total = in_period.count()
    optimized_count = in_period.filter(Escrow.ai_optimized.is_(True)).count()

    completed = in_period.filter(Escrow.status.in_(COMPLETED))
    regular = completed.filter(Escrow.ai_optimized.is_(False)).all()
    optimized = completed.filter(Escrow.ai_optimized.is_(True)).all()

    regular_rate = _pct(_on_time(regular), len(regular))
    optimized_rate = _pct(_on_time(optimized), len(optimized))

    return {
        "period": period,
        "totalEscrows": total,
        "aiOptimizedEscrows": optimized_count,
        "optimizationRate": _pct(optimized_count, total),
        "performanceComparison": {
            "regular": {"count": len(regular), "onTimeRate": regular_rate},
            "optimized": {"count": len(optimized), "onTimeRate": optimized_rate},
        },
        "improvement": round(optimized_rate - regular_rate, 2) if regular and optimized else 0,
    }


TREND_METRICS = ("escrows", "volume", "users")


def trends(metric: str = "escrows", period: str = "30d", now: Optional[datetime] = None) -> Dict:
    if metric not in TREND_METRICS:
        raise InvalidInput("Unknown trend metric", {"field": "metric", "allowed": list(TREND_METRICS)})
    start = period_start(period, now)

    if metric == "users":
        day = func.date(User.created_at)
        q = db.session.query(day, func.count(User.id)).filter(User.created_at >= start)
    elif metric == "volume":
        day = func.date(Escrow.created_at)
        q = (
            db.session.query(day, func.coalesce(func.sum(Escrow.amount), 0))
            .filter(Escrow.created_at >= start, Escrow.status.in_(COMPLETED))
        )
    else:
        day = func.date(Escrow.created_at)
        q = db.session.query(day, func.count(Escrow.id)).filter(Escrow.created_at >= start)

    rows = q.group_by(day).order_by(day.asc()).all()
    return {
        "metric": metric,
        "period": period,
        "data": [{"date": str(d), "value": int(v or 0)} for d, v in rows],
    }
