from adaptive_escrow.models import db
from adaptive_escrow.models.types import new_uuid
from adaptive_escrow.utils import utcnow


class UserStats(db.Model):
    __tablename__ = "user_stats"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False, index=True)

    total_jobs_completed = db.Column(db.Integer, nullable=False, default=0)
    total_jobs_late = db.Column(db.Integer, nullable=False, default=0)
    total_disputes = db.Column(db.Integer, nullable=False, default=0)
    total_disputes_won = db.Column(db.Integer, nullable=False, default=0)
    average_delivery_time = db.Column(db.Integer, nullable=True)  # hours

    on_time_percentage = db.Column(db.Float, nullable=False, default=100.0, index=True)  # 0..100
    total_earnings = db.Column(db.BigInteger, nullable=False, default=0)
    total_penalties_paid = db.Column(db.BigInteger, nullable=False, default=0)
    reliability_score = db.Column(db.Float, nullable=False, default=5.0, index=True)  # 0..5, derived

    last_updated = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="stats")

    __table_args__ = (
        db.CheckConstraint("reliability_score >= 0 AND reliability_score <= 5", name="ck_user_stats_reliability_range"),
        db.CheckConstraint("on_time_percentage >= 0 AND on_time_percentage <= 100", name="ck_user_stats_on_time_range"),
    )

    def performance_metrics(self) -> dict:
        """Summary consumed by the suggestion engine and the API."""
        return {
            "totalJobs": self.total_jobs_completed,
            "lateJobs": self.total_jobs_late,
            "onTimePercentage": self.on_time_percentage,
            "reliabilityScore": self.reliability_score,
            "totalEarnings": self.total_earnings,
            "totalPenalties": self.total_penalties_paid,
            "averageDeliveryTime": self.average_delivery_time,
        }
