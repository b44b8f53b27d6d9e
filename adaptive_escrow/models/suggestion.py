"""
AI suggestion rows and the tagged variants they carry.

A suggestion proposes exactly one kind of change to an escrow. The change is
modelled as one of four small value types; on disk it is flattened into the
``suggestion_type`` discriminator plus the matching ``suggested_*`` column.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from adaptive_escrow.models import db
from adaptive_escrow.models.types import new_uuid
from adaptive_escrow.utils import utcnow

SUGGESTION_TYPES = ("penalty_adjustment", "deadline_extension", "grace_period_change", "contract_optimization")
SUGGESTION_STATUSES = ("pending", "approved", "rejected", "expired")


@dataclass(frozen=True)
class PenaltyAdjustment:
    rate: int  # basis points
    kind = "penalty_adjustment"


@dataclass(frozen=True)
class DeadlineExtension:
    deadline: datetime
    kind = "deadline_extension"


@dataclass(frozen=True)
class GracePeriodChange:
    hours: int
    kind = "grace_period_change"


@dataclass(frozen=True)
class ContractOptimization:
    penalty_rate: Optional[int] = None
    deadline: Optional[datetime] = None
    grace_period: Optional[int] = None
    kind = "contract_optimization"

    def __post_init__(self):
        populated = [v for v in (self.penalty_rate, self.deadline, self.grace_period) if v is not None]
        if len(populated) > 1:
            raise ValueError("contract_optimization carries at most one suggested field")


SuggestionChange = Union[PenaltyAdjustment, DeadlineExtension, GracePeriodChange, ContractOptimization]


def change_fields(change: SuggestionChange) -> dict:
    """Flatten a variant into {penalty_rate, deadline, grace_period} (None when absent)."""
    if isinstance(change, PenaltyAdjustment):
        return {"penalty_rate": change.rate, "deadline": None, "grace_period": None}
    if isinstance(change, DeadlineExtension):
        return {"penalty_rate": None, "deadline": change.deadline, "grace_period": None}
    if isinstance(change, GracePeriodChange):
        return {"penalty_rate": None, "deadline": None, "grace_period": change.hours}
    if isinstance(change, ContractOptimization):
        return {"penalty_rate": change.penalty_rate, "deadline": change.deadline, "grace_period": change.grace_period}
    raise TypeError(f"unknown suggestion change: {change!r}")


class AISuggestion(db.Model):
    __tablename__ = "ai_suggestions"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    escrow_id = db.Column(db.String(36), db.ForeignKey("escrows.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)  # who decides

    suggestion_type = db.Column(db.Enum(*SUGGESTION_TYPES, name="suggestion_type"), nullable=False, index=True)
    ai_reasoning = db.Column(db.Text, nullable=False)
    suggested_penalty_rate = db.Column(db.Integer, nullable=True)
    suggested_deadline = db.Column(db.DateTime, nullable=True)
    suggested_grace_period = db.Column(db.Integer, nullable=True)
    confidence_score = db.Column(db.Float, nullable=False, index=True)  # 0..1

    status = db.Column(db.Enum(*SUGGESTION_STATUSES, name="suggestion_status"), nullable=False, default="pending", index=True)
    approved_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    applied_at = db.Column(db.DateTime, nullable=True)
    impact_score = db.Column(db.Float, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    escrow = db.relationship("Escrow", back_populates="suggestions")
    user = db.relationship("User", foreign_keys=[user_id])
    approver = db.relationship("User", foreign_keys=[approved_by])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_ai_suggestions_confidence_range"),
        db.CheckConstraint(
            "suggested_penalty_rate IS NULL OR (suggested_penalty_rate >= 0 AND suggested_penalty_rate <= 10000)",
            name="ck_ai_suggestions_penalty_range",
        ),
        db.CheckConstraint(
            "suggested_grace_period IS NULL OR (suggested_grace_period >= 0 AND suggested_grace_period <= 168)",
            name="ck_ai_suggestions_grace_range",
        ),
    )

    @property
    def change(self) -> SuggestionChange:
        if self.suggestion_type == "penalty_adjustment":
            return PenaltyAdjustment(self.suggested_penalty_rate)
        if self.suggestion_type == "deadline_extension":
            return DeadlineExtension(self.suggested_deadline)
        if self.suggestion_type == "grace_period_change":
            return GracePeriodChange(self.suggested_grace_period)
        return ContractOptimization(
            penalty_rate=self.suggested_penalty_rate,
            deadline=self.suggested_deadline,
            grace_period=self.suggested_grace_period,
        )

    @change.setter
    def change(self, value: SuggestionChange):
        fields = change_fields(value)
        self.suggestion_type = value.kind
        self.suggested_penalty_rate = fields["penalty_rate"]
        self.suggested_deadline = fields["deadline"]
        self.suggested_grace_period = fields["grace_period"]

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None

    def summary(self) -> dict:
        changes = []
        if self.suggested_penalty_rate is not None:
            changes.append(f"Penalty rate: {self.suggested_penalty_rate / 100}%")
        if self.suggested_deadline is not None:
            changes.append(f"New deadline: {self.suggested_deadline.date().isoformat()}")
        if self.suggested_grace_period is not None:
            changes.append(f"Grace period: {self.suggested_grace_period} hours")

        return {
            "type": self.suggestion_type,
            "changes": changes,
            "reasoning": self.ai_reasoning,
            "confidence": self.confidence_score,
            "status": self.status,
        }
