import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from adaptive_escrow.models import db

bp = Blueprint("health", __name__)
logger = logging.getLogger(__name__)


@bp.get("/healthz")
def healthz():
    """
    Healthcheck (process up and ledger store reachable)
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
      503:
        description: Database unreachable
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("healthcheck database error: %s", e)
        return jsonify({"ok": False, "database": "unreachable"}), 503
    return jsonify({"ok": True, "database": "ok"}), 200
