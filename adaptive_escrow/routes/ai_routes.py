# adaptive_escrow/routes/ai_routes.py
from flask import Blueprint, current_app, jsonify, request

from adaptive_escrow.errors import InvalidInput
from adaptive_escrow.services.escrow_service import recent_completed_escrows
from adaptive_escrow.services.ledger_service import get_escrow, get_user_by_wallet
from adaptive_escrow.services.stats_service import metrics_for
from adaptive_escrow.utils import iso, utcnow

bp = Blueprint("ai", __name__, url_prefix="/api/ai")


def _engine():
    return current_app.extensions["suggestion_engine"]


def _user_brief(user):
    return {"wallet": user.wallet_address, "name": user.name, "role": user.role, "rating": user.rating}


def _require_wallet(data: dict) -> str:
    wallet = data.get("userWallet")
    if not wallet:
        raise InvalidInput("userWallet is required", {"field": "userWallet"})
    return wallet


@bp.get("/suggest/<wallet>")
def suggest_for_user(wallet: str):
    """
    AI: propose optimizations for a user (nothing is stored)
    ---
    tags:
      - AI
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
      - in: query
        name: escrowId
        required: false
        type: string
        description: Focus the analysis on one escrow.
    responses:
      200:
        description: Drafts from the reasoning provider, or from the rule table when it is unavailable
      404:
        description: User or escrow not found
    """
    user = get_user_by_wallet(wallet)
    escrow_id = request.args.get("escrowId")
    target = get_escrow(escrow_id) if escrow_id else None

    metrics = metrics_for(user)
    drafts = _engine().propose(user, metrics, recent_completed_escrows(user), target_escrow=target)

    return jsonify({
        "ok": True,
        "user": _user_brief(user),
        "metrics": metrics,
        "suggestions": [d.to_dict() for d in drafts],
    }), 200


@bp.post("/suggest/<escrow_id>")
def suggest_for_escrow(escrow_id: str):
    """
    AI: create a pending suggestion for an escrow
    ---
    tags:
      - AI
    consumes:
      - application/json
    parameters:
      - in: path
        name: escrow_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [userWallet]
          properties:
            userWallet:
              type: string
              description: Recipient of the suggestion (the one who may approve it).
    responses:
      201:
        description: Suggestion stored
      200:
        description: Nothing to suggest (suggestion is null)
      404:
        description: Escrow or user not found
    """
    data = request.get_json(silent=True) or {}
    wallet = _require_wallet(data)

    escrow = get_escrow(escrow_id)
    user = get_user_by_wallet(wallet)

    engine = _engine()
    suggestion = engine.propose_for_escrow(escrow, user, metrics_for(user))
    if suggestion is None:
        return jsonify({"ok": True, "message": "No suggestions available for this escrow", "suggestion": None}), 200

    return jsonify({"ok": True, "suggestion": engine.to_dict(suggestion)}), 201


@bp.post("/suggest/<suggestion_id>/approve")
def approve(suggestion_id: str):
    """
    AI: approve a pending suggestion and apply it to the escrow
    ---
    tags:
      - AI
    consumes:
      - application/json
    parameters:
      - in: path
        name: suggestion_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [userWallet]
          properties:
            userWallet: {type: string}
    responses:
      200: {description: Approved and applied}
      400: {description: Suggestion is not pending, or suggested values are out of range}
      403: {description: Not the suggestion recipient}
      404: {description: Suggestion not found}
    """
    data = request.get_json(silent=True) or {}
    now = utcnow()
    engine = _engine()
    suggestion = engine.approve(suggestion_id, _require_wallet(data), now=now)

    escrow = suggestion.escrow
    return jsonify({
        "ok": True,
        "message": "Suggestion approved and applied",
        "suggestion": engine.to_dict(suggestion, now),
        "escrow": {
            "id": escrow.id,
            "deadline": iso(escrow.deadline),
            "gracePeriod": escrow.grace_period,
            "penaltyRate": escrow.penalty_rate,
            "aiOptimized": escrow.ai_optimized,
        },
    }), 200


@bp.post("/suggest/<suggestion_id>/reject")
def reject(suggestion_id: str):
    """
    AI: reject a pending suggestion
    ---
    tags:
      - AI
    consumes:
      - application/json
    parameters:
      - in: path
        name: suggestion_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [userWallet]
          properties:
            userWallet: {type: string}
            reason: {type: string}
    responses:
      200: {description: Rejected}
      400: {description: Suggestion is not pending}
      403: {description: Not the suggestion recipient}
      404: {description: Suggestion not found}
    """
    data = request.get_json(silent=True) or {}
    engine = _engine()
    suggestion = engine.reject(suggestion_id, _require_wallet(data), data.get("reason"))
    return jsonify({"ok": True, "message": "Suggestion rejected", "suggestion": engine.to_dict(suggestion)}), 200


@bp.get("/suggestions/<wallet>")
def list_suggestions(wallet: str):
    """
    AI: list a user's suggestions
    ---
    tags:
      - AI
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
      - in: query
        name: status
        required: false
        type: string
        default: pending
        enum: [pending, approved, rejected, expired, all]
    responses:
      200: {description: OK}
      404: {description: User not found}
    """
    user = get_user_by_wallet(wallet)
    engine = _engine()
    now = utcnow()
    suggestions = engine.list_for_user(user, request.args.get("status", "pending"))
    return jsonify({"ok": True, "suggestions": [engine.to_dict(s, now) for s in suggestions]}), 200
