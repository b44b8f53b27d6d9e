# adaptive_escrow/routes/user_routes.py
from flask import Blueprint, jsonify, request

from adaptive_escrow.services import ledger_service
from adaptive_escrow.services.analytics_service import user_analytics
from adaptive_escrow.services.stats_service import metrics_for, recompute_user_stats
from adaptive_escrow.utils import MAX_OFFSET, iso, query_int

bp = Blueprint("users", __name__)  # prefix applied in create_app


def _user_dict(user, with_stats: bool = False):
    data = {
        "id": user.id,
        "wallet": user.wallet_address,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "rating": user.rating,
        "totalEarnings": int(user.total_earnings or 0),
        "totalJobs": user.total_jobs,
        "profileImage": user.profile_image,
        "bio": user.bio,
        "skills": user.skills or [],
        "isVerified": user.is_verified,
        "lastActive": iso(user.last_active),
        "createdAt": iso(user.created_at),
    }
    if with_stats:
        data["stats"] = metrics_for(user)
    return data


@bp.post("/register")
def register():
    """
    Users: register a wallet
    ---
    tags:
      - Users
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [wallet, name]
          properties:
            wallet: {type: string}
            name: {type: string, example: "Alice Johnson"}
            role: {type: string, enum: [client, freelancer, both], default: freelancer}
            email: {type: string}
            bio: {type: string}
            skills:
              type: array
              items: {type: string}
    responses:
      201: {description: Created}
      400: {description: Invalid input or wallet already registered}
    """
    data = request.get_json(silent=True) or {}
    user = ledger_service.register_user(
        data.get("wallet"),
        data.get("name"),
        role=data.get("role", "freelancer"),
        email=data.get("email"),
        bio=data.get("bio"),
        skills=data.get("skills"),
    )
    return jsonify({"ok": True, "user": _user_dict(user, with_stats=True)}), 201


@bp.get("/<wallet>")
def profile(wallet: str):
    """
    Users: profile with performance metrics
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
    responses:
      200: {description: OK}
      404: {description: User not found}
    """
    user = ledger_service.get_user_by_wallet(wallet)
    return jsonify({"ok": True, "user": _user_dict(user, with_stats=True)}), 200


@bp.put("/<wallet>")
def update(wallet: str):
    """
    Users: update profile (the wallet address itself cannot change)
    ---
    tags:
      - Users
    consumes:
      - application/json
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            name: {type: string}
            email: {type: string}
            bio: {type: string}
            skills:
              type: array
              items: {type: string}
    responses:
      200: {description: OK}
      400: {description: Invalid input}
      404: {description: User not found}
    """
    data = request.get_json(silent=True) or {}
    user = ledger_service.update_profile(
        wallet,
        name=data.get("name"),
        email=data.get("email"),
        bio=data.get("bio"),
        skills=data.get("skills"),
    )
    return jsonify({"ok": True, "user": _user_dict(user)}), 200


@bp.get("/<wallet>/performance")
def performance(wallet: str):
    """
    Users: performance over a period
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
      - in: query
        name: period
        type: string
        enum: [7d, 30d, 90d, all]
        default: all
    responses:
      200: {description: OK}
      404: {description: User not found}
    """
    user = ledger_service.get_user_by_wallet(wallet)
    return jsonify({"ok": True, "performance": user_analytics(user, request.args.get("period", "all"))}), 200


@bp.post("/<wallet>/update-stats")
def update_stats(wallet: str):
    """
    Users: recompute delivery statistics from escrow history
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: wallet
        required: true
        type: string
    responses:
      200: {description: OK}
      404: {description: User not found}
    """
    user = ledger_service.get_user_by_wallet(wallet)
    stats = recompute_user_stats(user.id)
    return jsonify({"ok": True, "message": "User stats updated", "stats": stats.performance_metrics()}), 200


@bp.get("/top/freelancers")
def top_freelancers():
    """
    Users: top freelancers
    ---
    tags:
      - Users
    parameters:
      - in: query
        name: limit
        type: integer
        default: 10
      - in: query
        name: sortBy
        type: string
        enum: [rating, earnings, jobs, reliability]
        default: rating
    responses:
      200: {description: OK}
    """
    limit = query_int(request.args, "limit", 10, lo=1)
    users = ledger_service.top_freelancers(limit=limit, sort_by=request.args.get("sortBy", "rating"))
    return jsonify({"ok": True, "freelancers": [_user_dict(u, with_stats=True) for u in users]}), 200


@bp.get("/search/freelancers")
def search_freelancers():
    """
    Users: search freelancers by text, skills and minimum rating
    ---
    tags:
      - Users
    parameters:
      - in: query
        name: query
        type: string
      - in: query
        name: skills
        type: string
        description: Comma-separated skill names; any overlap matches.
      - in: query
        name: minRating
        type: number
        default: 0
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
      400: {description: Invalid paging or rating}
    """
    skills = [s.strip() for s in request.args.get("skills", "").split(",") if s.strip()]
    try:
        min_rating = float(request.args.get("minRating", 0))
    except ValueError:
        min_rating = 0.0
    limit = query_int(request.args, "limit", 20, lo=1)
    offset = query_int(request.args, "offset", 0, hi=MAX_OFFSET)

    page, total = ledger_service.search_freelancers(
        query=request.args.get("query", "").strip(),
        skills=skills,
        min_rating=min_rating,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "ok": True,
        "freelancers": [_user_dict(u) for u in page],
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total},
    }), 200
