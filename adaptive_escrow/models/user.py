from adaptive_escrow.models import db
from adaptive_escrow.models.types import JSONBCompat, new_uuid
from adaptive_escrow.utils import utcnow

USER_ROLES = ("client", "freelancer", "both")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    wallet_address = db.Column(db.String(56), unique=True, index=True, nullable=False)  # Stellar, 56 chars
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.Enum(*USER_ROLES, name="user_role"), nullable=False, default="freelancer", index=True)
    rating = db.Column(db.Float, nullable=False, default=5.0, index=True)  # 0..5

    total_earnings = db.Column(db.BigInteger, nullable=False, default=0)  # smallest currency unit
    total_jobs = db.Column(db.Integer, nullable=False, default=0)

    profile_image = db.Column(db.String(512), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    skills = db.Column(JSONBCompat(), nullable=False, default=list)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    last_active = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stats = db.relationship("UserStats", back_populates="user", uselist=False)

    __table_args__ = (
        db.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_users_rating_range"),
    )

    @property
    def is_freelancer(self) -> bool:
        return self.role in ("freelancer", "both")

    def __repr__(self):
        return f"<User {self.wallet_address[:8]} {self.role}>"
