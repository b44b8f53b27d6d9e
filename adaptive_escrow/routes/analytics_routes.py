# adaptive_escrow/routes/analytics_routes.py
from flask import Blueprint, jsonify, request

from adaptive_escrow.services import analytics_service
from adaptive_escrow.services.ledger_service import get_user_by_wallet
from adaptive_escrow.utils import query_int

bp = Blueprint("analytics", __name__)  # prefix applied in create_app


@bp.get("/platform")
def platform():
    """
    Analytics: platform-wide totals
    ---
    tags:
      - Analytics
    parameters:
      - in: query
        name: period
        type: string
        enum: [7d, 30d, 90d]
        default: 30d
    responses:
      200: {description: OK}
    """
    return jsonify({"ok": True, "analytics": analytics_service.platform_analytics(request.args.get("period", "30d"))}), 200


@bp.get("/user/<wallet>")
def user(wallet: str):
    """
    Analytics: one user's delivery and earnings figures
    ---
    tags:
      - Analytics
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
    u = get_user_by_wallet(wallet)
    return jsonify({"ok": True, "analytics": analytics_service.user_analytics(u, request.args.get("period", "all"))}), 200


@bp.get("/top-performers")
def top_performers():
    """
    Analytics: best freelancers by a metric
    ---
    tags:
      - Analytics
    parameters:
      - in: query
        name: limit
        type: integer
        default: 10
      - in: query
        name: metric
        type: string
        enum: [reliability, earnings, jobs, rating]
        default: reliability
    responses:
      200: {description: OK}
    """
    limit = query_int(request.args, "limit", 10, lo=1)
    metric = request.args.get("metric", "reliability")
    return jsonify({
        "ok": True,
        "metric": metric,
        "performers": analytics_service.top_performers(limit=limit, metric=metric),
    }), 200


@bp.get("/ai-optimization")
def ai_optimization():
    """
    Analytics: on-time rate of AI-optimized vs regular escrows
    ---
    tags:
      - Analytics
    parameters:
      - in: query
        name: period
        type: string
        enum: [7d, 30d, 90d]
        default: 30d
    responses:
      200: {description: OK}
    """
    return jsonify({
        "ok": True,
        "analytics": analytics_service.ai_optimization_analytics(request.args.get("period", "30d")),
    }), 200


@bp.get("/trends")
def trends():
    """
    Analytics: daily series
    ---
    tags:
      - Analytics
    parameters:
      - in: query
        name: metric
        type: string
        enum: [escrows, volume, users]
        default: escrows
      - in: query
        name: period
        type: string
        enum: [7d, 30d, 90d]
        default: 30d
    responses:
      200: {description: OK}
      400: {description: Unknown metric}
    """
    out = analytics_service.trends(request.args.get("metric", "escrows"), request.args.get("period", "30d"))
    return jsonify({"ok": True, "trends": out}), 200
