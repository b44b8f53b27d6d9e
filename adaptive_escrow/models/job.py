from adaptive_escrow.models import db
from adaptive_escrow.models.types import JSONBCompat
from adaptive_escrow.utils import utcnow


class ContractJob(db.Model):
    """Bookkeeping row for a simulated on-chain job run by Celery."""

    __tablename__ = "contract_jobs"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(50), index=True, unique=True, nullable=True)
    kind = db.Column(db.String(20), nullable=False)  # deploy|call
    status = db.Column(db.String(20), default="queued", index=True)  # queued|running|done|error
    params = db.Column(JSONBCompat(), nullable=True)
    result = db.Column(JSONBCompat(), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
