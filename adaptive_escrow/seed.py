# adaptive_escrow/seed.py
"""Demo data for local development: ``flask --app wsgi seed``."""
import logging
import random
import string
from datetime import timedelta

import click

from adaptive_escrow.models import db, AISuggestion, Escrow, User, UserStats
from adaptive_escrow.models.suggestion import DeadlineExtension, GracePeriodChange, PenaltyAdjustment
from adaptive_escrow.services.stats_service import reliability_from_on_time
from adaptive_escrow.utils import utcnow

logger = logging.getLogger(__name__)

SAMPLE_FREELANCERS = [
    ("Sarah Chen", ["React", "Node.js", "TypeScript"], 4.8),
    ("Marcus Johnson", ["Python", "Django", "PostgreSQL"], 4.6),
    ("Elena Rodriguez", ["Vue.js", "PHP", "MySQL"], 4.9),
    ("David Kim", ["Angular", "Java", "Spring Boot"], 4.7),
    ("Lisa Wang", ["React Native", "Flutter", "Firebase"], 4.5),
    ("Alex Thompson", ["Solidity", "Web3", "Ethereum"], 4.8),
    ("Maria Garcia", ["Python", "Machine Learning", "TensorFlow"], 4.9),
    ("James Wilson", ["Go", "Docker", "Kubernetes"], 4.6),
    ("Anna Petrov", ["Rust", "Blockchain", "Substrate"], 4.7),
    ("Tom Anderson", ["Swift", "iOS", "Xcode"], 4.8),
]

SAMPLE_CLIENTS = [
    ("TechCorp Inc.", 4.9),
    ("StartupXYZ", 4.7),
    ("Digital Agency Pro", 4.8),
    ("Blockchain Ventures", 4.9),
    ("Web Solutions Ltd", 4.6),
]

ESCROW_STATUS_WEIGHTS = {"active": 0.3, "delivered": 0.4, "released": 0.25, "disputed": 0.05}


def stellar_address(rng: random.Random) -> str:
    return "G" + "".join(rng.choice(string.ascii_uppercase + string.digits) for _ in range(55))


def _email(name: str) -> str:
    return name.lower().replace(" ", ".").replace(",", "").rstrip(".") + "@example.com"


def clear_data():
    for model in (AISuggestion, Escrow, UserStats, User):
        model.query.delete()
    db.session.commit()


def _freelancer(rng: random.Random, index: int, name: str, skills, rating: float, now) -> User:
    total_jobs = rng.randint(5, 55)
    late = int(total_jobs * rng.uniform(0.1, 0.4))
    disputes = int(total_jobs * rng.uniform(0.02, 0.1))
    on_time = round((total_jobs - late) * 100 / total_jobs, 2)

    user = User(
        wallet_address=stellar_address(rng),
        name=name,
        email=_email(name),
        role="freelancer",
        rating=rating,
        total_earnings=rng.randint(10000, 110000),
        total_jobs=total_jobs,
        profile_image=f"https://i.pravatar.cc/150?img={index + 1}",
        bio=f"{name} builds with {', '.join(skills)}.",
        skills=list(skills),
        is_verified=rng.random() > 0.3,
        last_active=now - timedelta(days=rng.randint(0, 30)),
    )
    db.session.add(user)
    db.session.flush()

    db.session.add(UserStats(
        user_id=user.id,
        total_jobs_completed=total_jobs,
        total_jobs_late=late,
        total_disputes=disputes,
        total_disputes_won=int(disputes * rng.uniform(0.6, 0.9)),
        on_time_percentage=on_time,
        reliability_score=round(max(1.0, reliability_from_on_time(on_time)), 2),
        average_delivery_time=rng.randint(24, 192),
        total_earnings=user.total_earnings,
        total_penalties_paid=int(user.total_earnings * 0.02),
        last_updated=now,
    ))
    return user


def _client(rng: random.Random, index: int, name: str, rating: float, now) -> User:
    user = User(
        wallet_address=stellar_address(rng),
        name=name,
        email=_email(name),
        role="client",
        rating=rating,
        total_earnings=0,
        total_jobs=0,
        profile_image=f"https://i.pravatar.cc/150?img={index + 20}",
        skills=[],
        is_verified=True,
        last_active=now - timedelta(days=rng.randint(0, 7)),
    )
    db.session.add(user)
    return user


def _escrow(rng: random.Random, client: User, freelancer: User, now) -> Escrow:
    status = rng.choices(list(ESCROW_STATUS_WEIGHTS), weights=list(ESCROW_STATUS_WEIGHTS.values()))[0]
    created = now - timedelta(days=rng.randint(1, 60))
    penalty_rate = rng.choice([200, 300, 400, 500])

    delivered_at = released_at = None
    if status in ("delivered", "released"):
        deadline = created + timedelta(days=rng.randint(3, 30))
        # roughly one in four deliveries lands after the deadline
        delivered_at = deadline + timedelta(hours=rng.randint(-72, 24))
        delivered_at = min(delivered_at, now)
        if status == "released":
            released_at = min(delivered_at + timedelta(hours=rng.randint(1, 72)), now)
    else:
        deadline = now + timedelta(days=rng.randint(1, 180))

    escrow = Escrow(
        client_id=client.id,
        freelancer_id=freelancer.id,
        amount=rng.randint(500, 5500),
        deadline=deadline,
        grace_period=rng.choice([12, 24, 48, 72]),
        penalty_rate=penalty_rate,
        status=status,
        delivered_at=delivered_at,
        released_at=released_at,
        ai_optimized=rng.random() > 0.6,
        original_deadline=deadline,
        original_penalty_rate=penalty_rate,
        created_at=created,
    )
    db.session.add(escrow)
    db.session.flush()
    escrow.contract_id = f"CONTRACT_{escrow.id.replace('-', '')}"
    return escrow


def _suggestion(rng: random.Random, escrow: Escrow, now) -> AISuggestion:
    user_id = escrow.client_id if rng.random() > 0.5 else escrow.freelancer_id
    change = rng.choice([
        PenaltyAdjustment(rng.randint(200, 700)),
        DeadlineExtension(max(escrow.deadline, now) + timedelta(days=rng.randint(1, 14))),
        GracePeriodChange(rng.randint(12, 72)),
    ])
    suggestion = AISuggestion(
        escrow_id=escrow.id,
        user_id=user_id,
        ai_reasoning=f"Demo suggestion: {change.kind.replace('_', ' ')} based on recent delivery history.",
        confidence_score=round(rng.uniform(0.6, 0.95), 2),
        status="pending",
        created_at=now - timedelta(hours=rng.randint(0, 12)),
    )
    suggestion.change = change
    db.session.add(suggestion)
    return suggestion


def seed_database(seed=None, escrows: int = 25, suggestions: int = 10) -> dict:
    rng = random.Random(seed)
    now = utcnow()

    clear_data()

    freelancers = [_freelancer(rng, i, *row, now=now) for i, row in enumerate(SAMPLE_FREELANCERS)]
    clients = [_client(rng, i, *row, now=now) for i, row in enumerate(SAMPLE_CLIENTS)]
    db.session.flush()

    created = [_escrow(rng, rng.choice(clients), rng.choice(freelancers), now) for _ in range(escrows)]
    active = [e for e in created if e.status == "active"] or created
    if not active:
        suggestions = 0
    for _ in range(suggestions):
        _suggestion(rng, rng.choice(active), now)

    db.session.commit()

    counts = {
        "freelancers": len(freelancers),
        "clients": len(clients),
        "escrows": len(created),
        "suggestions": suggestions,
    }
    logger.info("database seeded", extra={"context": counts})
    return counts


def register_cli(app):
    @app.cli.command("seed")
    @click.option("--seed", "seed_value", type=int, default=None, help="Random seed for reproducible data.")
    @click.option("--escrows", type=int, default=25, show_default=True)
    @click.option("--suggestions", type=int, default=10, show_default=True)
    def seed_command(seed_value, escrows, suggestions):
        """Wipe users/escrows/suggestions and load demo data."""
        counts = seed_database(seed_value, escrows=escrows, suggestions=suggestions)
        click.echo(
            f"Seeded {counts['freelancers']} freelancers, {counts['clients']} clients, "
            f"{counts['escrows']} escrows, {counts['suggestions']} suggestions"
        )
