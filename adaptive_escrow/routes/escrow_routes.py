# adaptive_escrow/routes/escrow_routes.py
from flask import Blueprint, jsonify, request

from adaptive_escrow.errors import InvalidInput
from adaptive_escrow.services import escrow_service
from adaptive_escrow.services.ledger_service import (
    get_escrow,
    get_user_by_wallet,
    resolve_or_register_participant,
    validate_wallet,
)
from adaptive_escrow.services.suggestion_service import suggestion_to_dict
from adaptive_escrow.utils import MAX_OFFSET, iso, parse_iso, query_int, utcnow

bp = Blueprint("escrow", __name__)  # prefix applied in create_app

REQUIRED_CREATE_FIELDS = ("clientWallet", "freelancerWallet", "amount", "deadline")


@bp.post("/create")
def create():
    """
    Escrow: create
    ---
    tags:
      - Escrow
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [clientWallet, freelancerWallet, amount, deadline]
          properties:
            clientWallet:
              type: string
              example: "GCLIENTAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
            freelancerWallet:
              type: string
              example: "GFREELANCERAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
            amount:
              type: integer
              description: Amount in the smallest currency unit.
              example: 1000
            deadline:
              type: string
              format: date-time
              example: "2030-01-01T00:00:00Z"
            gracePeriod:
              type: integer
              description: Hours after the deadline before the escrow is overdue (0-168).
              default: 24
            penaltyRate:
              type: integer
              description: Penalty in basis points (0-10000).
              default: 300
    responses:
      201:
        description: Created
      400:
        description: Invalid input
    """
    data = request.get_json(silent=True) or {}
    missing = [f for f in REQUIRED_CREATE_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise InvalidInput("Missing required fields", {"required": list(REQUIRED_CREATE_FIELDS), "missing": missing})

    deadline = parse_iso(data["deadline"], "deadline")
    validate_wallet(data["clientWallet"], "clientWallet")
    validate_wallet(data["freelancerWallet"], "freelancerWallet")

    client = resolve_or_register_participant(data["clientWallet"], "client")
    freelancer = resolve_or_register_participant(data["freelancerWallet"], "freelancer")

    escrow = escrow_service.create_escrow(
        client,
        freelancer,
        amount=data["amount"],
        deadline=deadline,
        grace_period=data.get("gracePeriod", 24),
        penalty_rate=data.get("penaltyRate", 300),
    )

    return jsonify({"ok": True, "escrow": escrow_service.escrow_snapshot(escrow)}), 201


@bp.post("/<escrow_id>/deliver")
def deliver(escrow_id: str):
    """
    Escrow: mark work as delivered (freelancer only)
    ---
    tags:
      - Escrow
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
          required: [freelancerWallet]
          properties:
            freelancerWallet: {type: string}
    responses:
      200: {description: OK}
      400: {description: Escrow is not active}
      403: {description: Not the freelancer}
      404: {description: Escrow not found}
    """
    data = request.get_json(silent=True) or {}
    escrow = escrow_service.mark_delivered(escrow_id, data.get("freelancerWallet"))
    return jsonify({
        "ok": True,
        "message": "Work marked as delivered",
        "escrow": {"id": escrow.id, "status": escrow.status, "deliveredAt": iso(escrow.delivered_at)},
    }), 200


@bp.post("/<escrow_id>/release")
def release(escrow_id: str):
    """
    Escrow: release funds (client only)
    ---
    tags:
      - Escrow
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
          required: [clientWallet]
          properties:
            clientWallet: {type: string}
    responses:
      200: {description: OK}
      400: {description: Work must be delivered first}
      403: {description: Not the client}
      404: {description: Escrow not found}
    """
    data = request.get_json(silent=True) or {}
    escrow = escrow_service.release_funds(escrow_id, data.get("clientWallet"))
    return jsonify({
        "ok": True,
        "message": "Funds released successfully",
        "escrow": {"id": escrow.id, "status": escrow.status, "releasedAt": iso(escrow.released_at)},
    }), 200


@bp.get("/<escrow_id>")
def detail(escrow_id: str):
    """
    Escrow: detail with overdue/penalty figures and AI suggestions
    ---
    tags:
      - Escrow
    parameters:
      - in: path
        name: escrow_id
        required: true
        type: string
    responses:
      200: {description: OK}
      404: {description: Escrow not found}
    """
    now = utcnow()
    escrow = get_escrow(escrow_id)
    body = escrow_service.escrow_snapshot(escrow, now)
    body["aiSuggestions"] = [suggestion_to_dict(s, now) for s in escrow.suggestions]
    return jsonify({"ok": True, "escrow": body}), 200


@bp.get("/user/<wallet>")
def list_for_user(wallet: str):
    """
    Escrow: list a user's escrows (as client or freelancer)
    ---
    tags:
      - Escrow
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
      - in: query
        name: status
        required: false
        type: string
        enum: [active, delivered, released, disputed, cancelled]
      - in: query
        name: limit
        type: integer
        default: 20
      - in: query
        name: offset
        type: integer
        default: 0
    responses:
      200: {description: OK}
      404: {description: User not found}
    """
    user = get_user_by_wallet(wallet)
    limit = query_int(request.args, "limit", 20, lo=1)
    offset = query_int(request.args, "offset", 0, hi=MAX_OFFSET)
    escrows = escrow_service.list_user_escrows(user, request.args.get("status"), limit=limit, offset=offset)

    now = utcnow()
    return jsonify({
        "ok": True,
        "escrows": [escrow_service.escrow_snapshot(e, now, detailed=False) for e in escrows],
    }), 200


@bp.put("/<escrow_id>/rules")
def update_rules(escrow_id: str):
    """
    Escrow: update deadline / grace period / penalty rate (either party, active only)
    ---
    tags:
      - Escrow
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
            userWallet: {type: string}
            newDeadline: {type: string, format: date-time}
            newGracePeriod: {type: integer}
            newPenaltyRate: {type: integer}
    responses:
      200: {description: OK}
      400: {description: Invalid input or escrow not active}
      403: {description: Not a party to the escrow}
      404: {description: Escrow not found}
    """
    data = request.get_json(silent=True) or {}
    new_deadline = data.get("newDeadline")

    escrow = escrow_service.apply_rule_change(
        escrow_id,
        data.get("userWallet"),
        deadline=parse_iso(new_deadline, "newDeadline") if new_deadline else None,
        grace_period=data.get("newGracePeriod"),
        penalty_rate=data.get("newPenaltyRate"),
    )
    return jsonify({
        "ok": True,
        "message": "Escrow rules updated successfully",
        "escrow": {
            "id": escrow.id,
            "deadline": iso(escrow.deadline),
            "gracePeriod": escrow.grace_period,
            "penaltyRate": escrow.penalty_rate,
            "aiOptimized": escrow.ai_optimized,
        },
    }), 200
