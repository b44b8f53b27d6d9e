# adaptive_escrow/services/stats_service.py
import logging
from datetime import datetime
from typing import Optional

from adaptive_escrow.models import db, Escrow, UserStats
from adaptive_escrow.utils import utcnow

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = ("delivered", "released")


def default_metrics() -> dict:
    """Neutral metrics for a user without any stats row yet."""
    return {
        "totalJobs": 0,
        "lateJobs": 0,
        "onTimePercentage": 100.0,
        "reliabilityScore": 5.0,
        "totalEarnings": 0,
        "totalPenalties": 0,
        "averageDeliveryTime": None,
    }


def metrics_for(user) -> dict:
    stats = UserStats.query.filter_by(user_id=user.id).first()
    return stats.performance_metrics() if stats else default_metrics()


def get_or_create_stats(user_id: str) -> UserStats:
    stats = UserStats.query.filter_by(user_id=user_id).first()
    if stats is None:
        stats = UserStats(
            user_id=user_id,
            total_jobs_completed=0,
            total_jobs_late=0,
            total_earnings=0,
            total_penalties_paid=0,
        )
        db.session.add(stats)
    return stats


def reliability_from_on_time(on_time_percentage: float) -> float:
    return max(0.0, min(5.0, on_time_percentage * 5 / 100))


def recompute_user_stats(user_id: str, now: Optional[datetime] = None, commit: bool = True) -> UserStats:
    """
    Rebuild a freelancer's delivery metrics from their delivered/released escrows.

    Late means delivered after the deadline (the grace period does not count).
    Idempotent: with no escrow changes in between, two runs write the same values.
    Pass ``commit=False`` to run inside a caller's transaction.
    """
    now = now or utcnow()
    completed = (
        Escrow.query.filter(Escrow.freelancer_id == user_id, Escrow.status.in_(COMPLETED_STATUSES))
        .all()
    )

    total = len(completed)
    late = sum(1 for e in completed if e.delivered_at is not None and e.delivered_at > e.deadline)
    on_time_percentage = (total - late) * 100 / total if total > 0 else 100.0

    stats = get_or_create_stats(user_id)
    stats.total_jobs_completed = total
    stats.total_jobs_late = late
    stats.on_time_percentage = on_time_percentage
    stats.reliability_score = reliability_from_on_time(on_time_percentage)
    stats.last_updated = now

    if commit:
        db.session.commit()

    logger.debug(
        "stats recomputed",
        extra={"context": {"user_id": user_id, "total": total, "late": late, "on_time": on_time_percentage}},
    )
    return stats
