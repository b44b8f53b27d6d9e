from adaptive_escrow.models import db
from adaptive_escrow.models.types import new_uuid
from adaptive_escrow.utils import utcnow

ESCROW_STATUSES = ("active", "delivered", "released", "disputed", "cancelled")
TERMINAL_STATUSES = ("released", "disputed", "cancelled")

# Legal direct transitions; terminal states have none
TRANSITIONS = {
    "active": ("delivered", "disputed", "cancelled"),
    "delivered": ("released",),
    "released": (),
    "disputed": (),
    "cancelled": (),
}

MAX_GRACE_PERIOD_HOURS = 168
MAX_PENALTY_RATE_BPS = 10000
DEFAULT_GRACE_PERIOD_HOURS = 24
DEFAULT_PENALTY_RATE_BPS = 300


class Escrow(db.Model):
    __tablename__ = "escrows"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    contract_id = db.Column(db.String(64), unique=True, nullable=True, index=True)  # set once deployed

    client_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    freelancer_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.BigInteger, nullable=False)  # smallest currency unit
    deadline = db.Column(db.DateTime, nullable=False, index=True)
    grace_period = db.Column(db.Integer, nullable=False, default=DEFAULT_GRACE_PERIOD_HOURS)  # hours
    penalty_rate = db.Column(db.Integer, nullable=False, default=DEFAULT_PENALTY_RATE_BPS)  # basis points

    status = db.Column(db.Enum(*ESCROW_STATUSES, name="escrow_status"), nullable=False, default="active", index=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)
    dispute_reason = db.Column(db.Text, nullable=True)

    ai_optimized = db.Column(db.Boolean, nullable=False, default=False)
    original_deadline = db.Column(db.DateTime, nullable=True)
    original_penalty_rate = db.Column(db.Integer, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    client = db.relationship("User", foreign_keys=[client_id])
    freelancer = db.relationship("User", foreign_keys=[freelancer_id])
    suggestions = db.relationship(
        "AISuggestion",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="AISuggestion.created_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_escrows_amount_positive"),
        db.CheckConstraint("grace_period >= 0 AND grace_period <= 168", name="ck_escrows_grace_period_range"),
        db.CheckConstraint("penalty_rate >= 0 AND penalty_rate <= 10000", name="ck_escrows_penalty_rate_range"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, status: str) -> bool:
        return status in TRANSITIONS.get(self.status, ())

    def __repr__(self):
        return f"<Escrow {self.id} {self.status}>"
