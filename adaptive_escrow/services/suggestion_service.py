# adaptive_escrow/services/suggestion_service.py
"""
Suggestion engine: proposes, persists and resolves changes to escrow terms.

Content comes from an injected ReasoningProvider. Any provider failure
(outage, timeout, garbage output) is absorbed here and answered by the
deterministic rule table in ``fallback_suggestions``.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from adaptive_escrow.errors import Forbidden, InvalidInput, InvalidState, NotFound, ProviderUnavailable
from adaptive_escrow.models import db, AISuggestion, Escrow, User
from adaptive_escrow.models.suggestion import GracePeriodChange, PenaltyAdjustment, SUGGESTION_STATUSES, change_fields
from adaptive_escrow.services.ai_service import ReasoningProvider, SuggestionDraft
from adaptive_escrow.services.escrow_service import apply_changes, transition
from adaptive_escrow.utils import iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24
DEFAULT_REJECTION_REASON = "No reason provided"


def fallback_suggestions(metrics: Dict[str, Any]) -> List[SuggestionDraft]:
    """Rule table used whenever the reasoning provider cannot answer. Both rules may fire."""
    drafts = []
    late_jobs = metrics.get("lateJobs") or 0
    total_jobs = metrics.get("totalJobs") or 0
    on_time = metrics.get("onTimePercentage", 100)
    reliability = metrics.get("reliabilityScore", 5.0)

    if late_jobs > 0 and on_time < 80:
        drafts.append(SuggestionDraft(
            PenaltyAdjustment(min(500 + late_jobs * 100, 1000)),
            f"Freelancer has {late_jobs} late deliveries out of {total_jobs} jobs ({on_time}% on-time). "
            "Consider increasing penalty rate to encourage timely delivery.",
            0.8,
        ))

    if reliability < 3.0:
        # int() truncates toward zero: 16.5 hours becomes 16
        hours = int(max(12, 24 - (5 - reliability) * 3))
        drafts.append(SuggestionDraft(
            GracePeriodChange(hours),
            f"Low reliability score ({reliability}/5). Consider reducing grace period to maintain quality standards.",
            0.7,
        ))

    return drafts


def _escrow_brief(escrow: Escrow) -> Dict[str, Any]:
    return {
        "amount": int(escrow.amount),
        "status": escrow.status,
        "deadline": iso(escrow.deadline),
        "penaltyRate": escrow.penalty_rate,
        "gracePeriod": escrow.grace_period,
    }


def build_summary(user: User, metrics: Dict[str, Any], recent_escrows=(), target_escrow: Optional[Escrow] = None) -> dict:
    return {
        "user": {"name": user.name, "role": user.role, "rating": user.rating},
        "metrics": metrics,
        "recentEscrows": [_escrow_brief(e) for e in recent_escrows],
        "targetEscrow": _escrow_brief(target_escrow) if target_escrow is not None else None,
    }


def suggestion_to_dict(suggestion: AISuggestion, now: Optional[datetime] = None, ttl_hours: int = DEFAULT_TTL_HOURS) -> dict:
    now = now or utcnow()
    summary = suggestion.summary()
    return {
        "id": suggestion.id,
        "escrowId": suggestion.escrow_id,
        "type": summary["type"],
        "reasoning": summary["reasoning"],
        "changes": summary["changes"],
        "confidence": summary["confidence"],
        "status": suggestion.status,
        "isApplied": suggestion.is_applied,
        "isExpired": is_expired(suggestion, now, ttl_hours),
        "rejectionReason": suggestion.rejection_reason,
        "createdAt": iso(suggestion.created_at),
        "approvedAt": iso(suggestion.approved_at),
        "appliedAt": iso(suggestion.applied_at),
    }


def is_expired(suggestion: AISuggestion, now: Optional[datetime] = None, ttl_hours: int = DEFAULT_TTL_HOURS) -> bool:
    """Pending and older than the TTL. Pure: never changes the stored status."""
    now = now or utcnow()
    return suggestion.status == "pending" and now - suggestion.created_at > timedelta(hours=ttl_hours)


class SuggestionEngine:
    def __init__(self, provider: ReasoningProvider, ttl_hours: int = DEFAULT_TTL_HOURS):
        self.provider = provider
        self.ttl_hours = ttl_hours

    # ---------------------------
    # Generation
    # ---------------------------

    def _drafts(self, summary: dict, metrics: dict) -> List[SuggestionDraft]:
        try:
            drafts = self.provider.suggest(summary)
            logger.info("reasoning provider answered", extra={"context": {"provider": self.provider.name, "drafts": len(drafts)}})
            return drafts
        except ProviderUnavailable as e:
            logger.warning("reasoning provider unavailable, using rule table: %s", e,
                           extra={"context": {"provider": self.provider.name}})
            return fallback_suggestions(metrics)

    def propose(self, user: User, metrics: Dict[str, Any], recent_escrows=(),
                target_escrow: Optional[Escrow] = None) -> List[SuggestionDraft]:
        """Drafts for the caller to show or persist; nothing is written."""
        summary = build_summary(user, metrics, recent_escrows, target_escrow)
        return self._drafts(summary, metrics)

    def propose_for_escrow(self, escrow: Escrow, user: User, metrics: Dict[str, Any],
                           now: Optional[datetime] = None) -> Optional[AISuggestion]:
        """Persist at most one suggestion for ``escrow`` addressed to ``user``; None when nothing applies."""
        summary = build_summary(user, metrics, target_escrow=escrow)
        drafts = self._drafts(summary, metrics)
        if not drafts:
            return None

        draft = drafts[0]
        suggestion = AISuggestion(
            escrow_id=escrow.id,
            user_id=user.id,
            ai_reasoning=draft.reasoning,
            confidence_score=draft.confidence,
            status="pending",
            created_at=now or utcnow(),
        )
        suggestion.change = draft.change
        db.session.add(suggestion)
        db.session.commit()

        logger.info("suggestion created", extra={"context": {"suggestion_id": suggestion.id, "type": draft.kind}})
        return suggestion

    # ---------------------------
    # Resolution
    # ---------------------------

    def _load_pending(self, suggestion_id: str, acting_wallet: str, action: str) -> AISuggestion:
        suggestion = AISuggestion.query.filter_by(id=suggestion_id).with_for_update().first()
        if not suggestion:
            raise NotFound("Suggestion not found", {"suggestion_id": suggestion_id})
        if suggestion.user.wallet_address != acting_wallet:
            raise Forbidden(f"Only the suggestion recipient can {action}", {"suggestion_id": suggestion_id})
        if suggestion.status != "pending":
            raise InvalidState("Suggestion is not pending", {"suggestion_id": suggestion_id, "status": suggestion.status})
        return suggestion

    def approve(self, suggestion_id: str, acting_wallet: str, now: Optional[datetime] = None) -> AISuggestion:
        """
        Approve and apply in one transaction.

        The approval already proves authorization, so the escrow's actor and
        ``active`` checks are skipped; value bounds are still enforced.
        """
        now = now or utcnow()
        with transition("Suggestion", suggestion_id):
            suggestion = self._load_pending(suggestion_id, acting_wallet, "approve")
            suggestion.status = "approved"
            suggestion.approved_by = suggestion.user_id
            suggestion.approved_at = now

            escrow = Escrow.query.filter_by(id=suggestion.escrow_id).with_for_update().first()
            if escrow is None:
                raise NotFound("Escrow not found", {"escrow_id": suggestion.escrow_id})

            fields = change_fields(suggestion.change)
            apply_changes(
                escrow, now,
                deadline=fields["deadline"],
                grace_period=fields["grace_period"],
                penalty_rate=fields["penalty_rate"],
                field_names=("suggested_deadline", "suggested_grace_period", "suggested_penalty_rate"),
            )
            suggestion.applied_at = now

        logger.info(
            "suggestion approved and applied",
            extra={"context": {"suggestion_id": suggestion_id, "escrow_id": escrow.id, "escrow_status": escrow.status}},
        )
        return suggestion

    def reject(self, suggestion_id: str, acting_wallet: str, reason: Optional[str] = None) -> AISuggestion:
        with transition("Suggestion", suggestion_id):
            suggestion = self._load_pending(suggestion_id, acting_wallet, "reject")
            suggestion.status = "rejected"
            suggestion.rejection_reason = reason or DEFAULT_REJECTION_REASON

        logger.info("suggestion rejected", extra={"context": {"suggestion_id": suggestion_id}})
        return suggestion

    # ---------------------------
    # Queries
    # ---------------------------

    def is_expired(self, suggestion: AISuggestion, now: Optional[datetime] = None) -> bool:
        return is_expired(suggestion, now, self.ttl_hours)

    def list_for_user(self, user: User, status: str = "pending") -> List[AISuggestion]:
        q = AISuggestion.query.filter_by(user_id=user.id)
        if status != "all":
            if status not in SUGGESTION_STATUSES:
                raise InvalidInput("Unknown suggestion status", {"field": "status", "allowed": list(SUGGESTION_STATUSES) + ["all"]})
            q = q.filter(AISuggestion.status == status)
        return q.order_by(AISuggestion.created_at.desc()).all()

    def to_dict(self, suggestion: AISuggestion, now: Optional[datetime] = None) -> dict:
        return suggestion_to_dict(suggestion, now, self.ttl_hours)
