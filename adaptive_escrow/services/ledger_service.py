# adaptive_escrow/services/ledger_service.py
import logging
import re
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_

from adaptive_escrow.errors import InvalidInput, NotFound
from adaptive_escrow.models import db, Escrow, User, UserStats
from adaptive_escrow.models.user import USER_ROLES
from adaptive_escrow.utils import utcnow

logger = logging.getLogger(__name__)

WALLET_RE = re.compile(r"^[A-Z0-9]{56}$")


# ---------------------------
# Validation helpers
# ---------------------------

def validate_wallet(wallet: str, field: str = "wallet") -> str:
    """Stellar-style address: 56 uppercase alphanumerics."""
    if not isinstance(wallet, str) or not WALLET_RE.match(wallet.strip()):
        raise InvalidInput(
            f"{field} must be a 56-character uppercase alphanumeric address",
            {"field": field, "value": wallet},
        )
    return wallet.strip()


def _validate_name(name) -> str:
    if not isinstance(name, str) or not 2 <= len(name.strip()) <= 100:
        raise InvalidInput("Name must be between 2 and 100 characters", {"field": "name", "min": 2, "max": 100})
    return name.strip()


def _validate_email(email) -> str:
    try:
        return validate_email(email, check_deliverability=False).normalized
    except (EmailNotValidError, TypeError) as e:
        raise InvalidInput("Email must be valid", {"field": "email", "reason": str(e)})


def _validate_bio(bio) -> Optional[str]:
    if bio is None:
        return None
    if not isinstance(bio, str) or len(bio) > 1000:
        raise InvalidInput("Bio must be less than 1000 characters", {"field": "bio", "max": 1000})
    return bio


def _validate_skills(skills) -> List[str]:
    if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
        raise InvalidInput("Skills must be a list of strings", {"field": "skills"})
    return [s.strip() for s in skills if s.strip()]


# ---------------------------
# Lookups
# ---------------------------

def get_user_by_wallet(wallet: str) -> User:
    user = User.query.filter_by(wallet_address=wallet).first()
    if not user:
        raise NotFound("User not found", {"wallet": wallet})
    return user


def find_user_by_wallet(wallet: str) -> Optional[User]:
    return User.query.filter_by(wallet_address=wallet).first()


def get_escrow(escrow_id: str, for_update: bool = False) -> Escrow:
    q = Escrow.query.filter_by(id=escrow_id)
    if for_update:
        q = q.with_for_update()
    escrow = q.first()
    if not escrow:
        raise NotFound("Escrow not found", {"escrow_id": escrow_id})
    return escrow


# ---------------------------
# Participants
# ---------------------------

def resolve_or_register_participant(wallet: str, inferred_role: str) -> User:
    """
    Return the user owning ``wallet``, creating a minimal record when absent.

    Called at the API boundary before escrow creation; flushes but does not
    commit, so the caller's transaction decides whether the user persists.
    """
    if inferred_role not in ("client", "freelancer"):
        raise ValueError(f"inferred_role must be client or freelancer, got {inferred_role!r}")

    field = "clientWallet" if inferred_role == "client" else "freelancerWallet"
    wallet = validate_wallet(wallet, field)

    user = find_user_by_wallet(wallet)
    if user:
        return user

    user = User(
        wallet_address=wallet,
        name=f"{inferred_role.capitalize()} {wallet[:8]}",
        role=inferred_role,
        skills=[],
        last_active=utcnow(),
    )
    db.session.add(user)
    db.session.flush()

    if user.is_freelancer:
        db.session.add(UserStats(user_id=user.id))
        db.session.flush()

    logger.info("registered participant on first reference", extra={"context": {"wallet": wallet, "role": inferred_role}})
    return user


def register_user(
    wallet: str,
    name: str,
    role: str = "freelancer",
    email: Optional[str] = None,
    bio: Optional[str] = None,
    skills: Optional[List[str]] = None,
) -> User:
    wallet = validate_wallet(wallet, "wallet")
    if role not in USER_ROLES:
        raise InvalidInput("Role must be one of client, freelancer, both", {"field": "role", "allowed": list(USER_ROLES)})
    if find_user_by_wallet(wallet):
        raise InvalidInput("Wallet address already registered", {"field": "wallet", "value": wallet})

    user = User(
        wallet_address=wallet,
        name=_validate_name(name),
        role=role,
        email=_validate_email(email) if email else None,
        bio=_validate_bio(bio),
        skills=_validate_skills(skills) if skills is not None else [],
        last_active=utcnow(),
    )
    db.session.add(user)
    db.session.flush()
    if user.is_freelancer:
        db.session.add(UserStats(user_id=user.id))

    db.session.commit()
    logger.info("user registered", extra={"context": {"wallet": wallet, "role": role}})
    return user


def update_profile(wallet: str, name=None, email=None, bio=None, skills=None) -> User:
    """Update editable profile fields. The wallet address itself is immutable."""
    user = get_user_by_wallet(wallet)

    # validate everything before touching the row
    changes = {}
    if name is not None:
        changes["name"] = _validate_name(name)
    if email is not None:
        changes["email"] = _validate_email(email)
    if bio is not None:
        changes["bio"] = _validate_bio(bio)
    if skills is not None:
        changes["skills"] = _validate_skills(skills)

    for field, value in changes.items():
        setattr(user, field, value)
    user.last_active = utcnow()
    db.session.commit()
    return user


# ---------------------------
# Freelancer directory
# ---------------------------

_TOP_ORDER = {
    "earnings": User.total_earnings,
    "jobs": User.total_jobs,
    "reliability": User.rating,
    "rating": User.rating,
}


def top_freelancers(limit: int = 10, sort_by: str = "rating") -> List[User]:
    column = _TOP_ORDER.get(sort_by, User.rating)
    return (
        User.query.filter(User.role.in_(("freelancer", "both")))
        .order_by(column.desc(), User.created_at.asc())
        .limit(limit)
        .all()
    )


def search_freelancers(query: str = "", skills: Optional[List[str]] = None,
                       min_rating: float = 0.0, limit: int = 20, offset: int = 0):
    """Return (page, total). Skill overlap is filtered in Python so it works on any JSON backend."""
    q = User.query.filter(User.role.in_(("freelancer", "both")), User.rating >= min_rating)
    if query:
        like = f"%{query}%"
        q = q.filter(or_(User.name.ilike(like), User.bio.ilike(like)))

    candidates = q.order_by(User.rating.desc(), User.created_at.asc()).all()

    if skills:
        wanted = {s.lower() for s in skills}
        candidates = [u for u in candidates if wanted & {s.lower() for s in (u.skills or [])}]

    total = len(candidates)
    return candidates[offset:offset + limit], total
